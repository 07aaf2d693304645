"""Login session observation (reports only)"""

from collections import Counter
from typing import Callable, Dict, List

import psutil
from pydantic import BaseModel, Field

from ..utils.logger import get_logger

logger = get_logger(__name__)

IGNORED_USERS = {"root"}


class SessionReport(BaseModel):
    session_count: int = 0
    active_users: List[str] = Field(default_factory=list)
    sessions_per_user: Dict[str, int] = Field(default_factory=dict)
    suspicious_users: Dict[str, int] = Field(default_factory=dict)

    def suspicious_summary(self) -> str:
        return "\n".join(f"- {user}: {count} sessions" for user, count in self.suspicious_users.items())


class SessionMonitor:
    def __init__(
        self,
        max_sessions_per_user: int = 3,
        list_sessions: Callable[[], List] = psutil.users,
    ):
        self.max_sessions_per_user = max_sessions_per_user
        self.list_sessions = list_sessions

    def observe(self) -> SessionReport:
        names = [s.name for s in self.list_sessions() if s.name and s.name not in IGNORED_USERS]
        counts = Counter(names)
        report = SessionReport(
            session_count=len(names),
            active_users=sorted(counts),
            sessions_per_user=dict(counts),
            suspicious_users={u: c for u, c in sorted(counts.items()) if c > self.max_sessions_per_user},
        )
        logger.info(
            "Active SSH sessions",
            session_count=report.session_count,
            users=report.active_users,
        )
        if report.suspicious_users:
            logger.warning("Users with multiple sessions detected", users=report.suspicious_users)
        return report
