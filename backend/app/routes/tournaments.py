from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.tournament import Tournament, TournamentStatus
from app.services.lifecycle_state import derive_state, time_until_start
from app.utils.clock import as_naive_utc, utc_now

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    host_id: Optional[str] = None
    start_time: datetime

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("start_time")
    @classmethod
    def normalize_start_time(cls, v):
        return as_naive_utc(v)


class TournamentStatusUpdate(BaseModel):
    status: TournamentStatus


class TournamentResponse(BaseModel):
    id: int
    name: str
    host_id: Optional[str]
    status: str
    start_time: datetime
    ttl: Optional[datetime]
    notification_sent: bool
    notification_sent_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LifecycleResponse(BaseModel):
    tournament_id: int
    phase: str
    time_remaining_seconds: Optional[int]
    warning_message: Optional[str]
    formatted_time: str
    start_countdown: dict


def _get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(
    status: Optional[TournamentStatus] = None,
    session: Session = Depends(get_session),
):
    """List tournaments, optionally filtered by status"""
    statement = select(Tournament).order_by(Tournament.start_time)
    if status is not None:
        statement = statement.where(Tournament.status == status.value)
    return session.exec(statement).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create an active tournament with no ttl and no notification sent"""
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    return _get_tournament_or_404(session, tournament_id)


@router.patch("/tournaments/{tournament_id}/status", response_model=TournamentResponse)
def update_tournament_status(
    tournament_id: int,
    payload: TournamentStatusUpdate,
    session: Session = Depends(get_session),
):
    """Complete or cancel a tournament. Non-active tournaments are ignored by the scheduler."""
    tournament = _get_tournament_or_404(session, tournament_id)
    if tournament.status != TournamentStatus.ACTIVE.value and payload.status == TournamentStatus.ACTIVE:
        raise HTTPException(status_code=400, detail=f"Cannot reactivate a {tournament.status} tournament")

    tournament.status = payload.status.value
    tournament.updated_at = utc_now()
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}/lifecycle", response_model=LifecycleResponse)
def get_tournament_lifecycle(
    tournament_id: int,
    at: Optional[datetime] = Query(None, description="Evaluate at this instant instead of now"),
    session: Session = Depends(get_session),
):
    """Derived lifecycle phase and deletion countdown. Read-only."""
    tournament = _get_tournament_or_404(session, tournament_id)
    now = as_naive_utc(at) if at is not None else utc_now()
    state = derive_state(tournament, now)
    return LifecycleResponse(
        tournament_id=tournament.id,
        start_countdown=time_until_start(tournament, now),
        **state.to_dict(),
    )
