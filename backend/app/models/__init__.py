from app.models.host_profile import HostProfile
from app.models.notification_log import NotificationLog
from app.models.tournament import Tournament, TournamentStatus

__all__ = [
    "Tournament",
    "TournamentStatus",
    "HostProfile",
    "NotificationLog",
]
