"""
Tournament Store - the shared record of every tournament's lifecycle fields.

The notification trigger, the expiry-tagging trigger and any number of
cleanup agents read and write this store with no coordination between
them. Correctness rests entirely on the write contract below, which every
method honors by filtering on the field it is about to set:

- notification_sent is write-once: the flag update only matches rows where
  it is still false.
- ttl is monotonic: tagging only matches rows where ttl is still null, so a
  deadline is never overwritten or lowered.
- deletion is idempotent: deletes re-check their eligibility filter and a
  missing row is reported, not raised.

Each method opens its own short-lived Session so concurrent workers never
share one.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.tournament import Tournament, TournamentStatus

logger = logging.getLogger(__name__)

ACTIVE = TournamentStatus.ACTIVE.value


class LifecycleStoreError(Exception):
    """Raised when the store cannot complete a lifecycle read or write."""


class ExpiryBatchError(LifecycleStoreError):
    """Raised when a ttl batch fails to commit; nothing from the batch was applied."""


class TournamentStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Basic access
    # ------------------------------------------------------------------

    def add(self, tournament: Tournament) -> Tournament:
        with Session(self.engine) as session:
            session.add(tournament)
            session.commit()
            session.refresh(tournament)
            return tournament

    def get(self, tournament_id: int) -> Optional[Tournament]:
        with Session(self.engine) as session:
            return session.get(Tournament, tournament_id)

    def _fetch(self, statement) -> List[Tournament]:
        try:
            with Session(self.engine) as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise LifecycleStoreError(f"Tournament query failed: {e}") from e

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def find_notification_candidates(
        self, window_start: datetime, window_end: datetime, limit: int = 50
    ) -> List[Tournament]:
        """Active, not yet notified tournaments starting inside [window_start, window_end]."""
        statement = (
            select(Tournament)
            .where(
                Tournament.status == ACTIVE,
                Tournament.notification_sent == False,  # noqa: E712
                Tournament.start_time >= window_start,
                Tournament.start_time <= window_end,
            )
            .order_by(Tournament.start_time, Tournament.id)
            .limit(limit)
        )
        return self._fetch(statement)

    def mark_notification_sent(self, tournament_id: int, sent_at: datetime) -> bool:
        """
        Flip notification_sent to true.

        Returns False when the row is already flagged or no longer exists;
        neither case is an error.
        """
        statement = (
            update(Tournament)
            .where(
                Tournament.id == tournament_id,
                Tournament.notification_sent == False,  # noqa: E712
            )
            .values(notification_sent=True, notification_sent_at=sent_at)
        )
        with Session(self.engine) as session:
            result = session.execute(statement)
            session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Expiry tagging
    # ------------------------------------------------------------------

    def find_untagged_started(self, now: datetime, limit: int = 100) -> List[Tournament]:
        """Active tournaments whose start has passed and that have no ttl yet."""
        statement = (
            select(Tournament)
            .where(
                Tournament.status == ACTIVE,
                Tournament.start_time <= now,
                Tournament.ttl.is_(None),  # type: ignore
            )
            .order_by(Tournament.start_time, Tournament.id)
            .limit(limit)
        )
        return self._fetch(statement)

    def assign_ttls(self, deadlines: Dict[int, datetime]) -> int:
        """
        Apply a batch of ttl values in one transaction.

        Each row is only touched while its ttl is still null. Either the
        whole batch commits or none of it does.

        Returns:
            Number of rows whose ttl was set.

        Raises:
            ExpiryBatchError: the commit failed and was rolled back.
        """
        if not deadlines:
            return 0

        with Session(self.engine) as session:
            try:
                updated = 0
                for tournament_id, ttl in deadlines.items():
                    result = session.execute(
                        update(Tournament)
                        .where(
                            Tournament.id == tournament_id,
                            Tournament.ttl.is_(None),  # type: ignore
                        )
                        .values(ttl=ttl)
                    )
                    updated += result.rowcount
                session.commit()
                return updated
            except SQLAlchemyError as e:
                session.rollback()
                raise ExpiryBatchError(
                    f"ttl batch of {len(deadlines)} tournaments was not applied: {e}"
                ) from e

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def find_expired(self, now: datetime, limit: int = 50) -> List[Tournament]:
        """Tournaments with a ttl at or before now."""
        statement = (
            select(Tournament)
            .where(
                Tournament.ttl.is_not(None),  # type: ignore
                Tournament.ttl <= now,
            )
            .order_by(Tournament.ttl, Tournament.id)
            .limit(limit)
        )
        return self._fetch(statement)

    def count_expired(self, now: datetime, limit: int = 10) -> int:
        """Count expired tournaments, looking at no more than `limit` rows."""
        capped = (
            select(Tournament.id)
            .where(
                Tournament.ttl.is_not(None),  # type: ignore
                Tournament.ttl <= now,
            )
            .limit(limit)
            .subquery()
        )
        try:
            with Session(self.engine) as session:
                return session.execute(select(func.count()).select_from(capped)).scalar_one()
        except SQLAlchemyError as e:
            raise LifecycleStoreError(f"Expired count failed: {e}") from e

    def delete_expired(self, tournament_id: int, now: datetime) -> bool:
        """
        Delete a tournament if its ttl has passed.

        Returns False when the row is already gone (another agent got there
        first) or is no longer eligible. Never raises for a missing row.
        """
        statement = delete(Tournament).where(
            Tournament.id == tournament_id,
            Tournament.ttl.is_not(None),  # type: ignore
            Tournament.ttl <= now,
        )
        return self._delete(statement, tournament_id)

    def find_untagged_stale(self, cutoff: datetime, limit: int = 50) -> List[Tournament]:
        """Active tournaments that started at or before `cutoff` but were never tagged."""
        statement = (
            select(Tournament)
            .where(
                Tournament.status == ACTIVE,
                Tournament.start_time <= cutoff,
                Tournament.ttl.is_(None),  # type: ignore
            )
            .order_by(Tournament.start_time, Tournament.id)
            .limit(limit)
        )
        return self._fetch(statement)

    def delete_untagged_stale(self, tournament_id: int, cutoff: datetime) -> bool:
        statement = delete(Tournament).where(
            Tournament.id == tournament_id,
            Tournament.status == ACTIVE,
            Tournament.start_time <= cutoff,
            Tournament.ttl.is_(None),  # type: ignore
        )
        return self._delete(statement, tournament_id)

    def _delete(self, statement, tournament_id: int) -> bool:
        try:
            with Session(self.engine) as session:
                result = session.execute(statement)
                session.commit()
        except SQLAlchemyError as e:
            raise LifecycleStoreError(f"Delete of tournament {tournament_id} failed: {e}") from e
        if result.rowcount == 0:
            logger.debug(f"Tournament {tournament_id} already gone or no longer eligible")
            return False
        return True
