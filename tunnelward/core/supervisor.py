"""
Supervisor: one exclusive, scheduled monitoring cycle.

Order of a full run:
    health check -> session observation -> expiring accounts ->
    expiration sweep (via LifecycleController.cleanup) -> log housekeeping
    [-> usage report]

Everything except the sweep and log housekeeping only reports. The run lock
is acquired before anything happens; a second concurrent run raises
AlreadyRunning without doing any work.
"""

import os
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from ..integrations.notifier import Notifier
from ..integrations.transport import ServiceController
from ..models.account import AccountRecord
from ..services.lifecycle import LifecycleController
from ..utils.clock import utc_now
from ..utils.config import MonitorSettings
from ..utils.exceptions import CleanupIncomplete, TunnelwardError
from ..utils.logger import get_logger
from .health_monitor import HealthCheckResult, HealthMonitor, format_issues
from .locks import RunLock
from .session_monitor import SessionMonitor, SessionReport

logger = get_logger(__name__)

SUBJECT_PREFIX = "SSH User Manager"


class MonitorRun(BaseModel):
    """Summary of one supervisor cycle"""
    started_at: datetime
    health_status: Optional[str] = None
    health_issues: List[str] = Field(default_factory=list)
    session_count: int = 0
    suspicious_users: List[str] = Field(default_factory=list)
    expiring: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    cleanup_error: Optional[str] = None
    rotated_logs: List[str] = Field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.cleanup_error is None


class Supervisor:
    def __init__(
        self,
        controller: LifecycleController,
        health: HealthMonitor,
        sessions: SessionMonitor,
        services: ServiceController,
        notifier: Notifier,
        settings: MonitorSettings,
        now: Callable[[], datetime] = utc_now,
    ):
        self.controller = controller
        self.health = health
        self.sessions = sessions
        self.services = services
        self.notifier = notifier
        self.settings = settings
        self.now = now

    def _notify(self, title: str, body: str) -> None:
        self.notifier.notify(f"{SUBJECT_PREFIX} - {title}", body)

    def run_lock(self) -> RunLock:
        return RunLock(Path(self.settings.lock_file))

    def run_monitor(self, include_report: bool = False) -> MonitorRun:
        """Full cycle under the run lock"""
        with self.run_lock():
            logger.info("Starting monitoring cycle")
            run = MonitorRun(started_at=self.now())

            health = self.check_health()
            run.health_status = health.status.value
            run.health_issues = health.issues

            sessions = self.monitor_sessions()
            run.session_count = sessions.session_count
            run.suspicious_users = list(sessions.suspicious_users)

            run.expiring = [r.username for r in self.check_expiring()]

            try:
                run.removed = self.cleanup_expired()
            except TunnelwardError as e:
                if isinstance(e, CleanupIncomplete):
                    run.removed = list(e.removed)
                run.cleanup_error = f"{e.category}: {e}"

            run.rotated_logs = self.rotate_logs()

            if include_report:
                run.report_path = str(self.generate_report())

            logger.info(
                "Monitoring cycle completed",
                removed=len(run.removed),
                cleanup_failed=run.cleanup_error is not None,
            )
            return run

    def run_cleanup(self) -> List[str]:
        """Expiration sweep only, under the run lock"""
        with self.run_lock():
            return self.cleanup_expired()

    def check_health(self) -> HealthCheckResult:
        result = self.health.check()
        body = format_issues(result.issues)
        if body:
            for issue in result.issues:
                logger.warning("System health issue", issue=issue)
            self._notify("System Health Alert", body)
        else:
            logger.info("System health check passed")
        return result

    def monitor_sessions(self) -> SessionReport:
        report = self.sessions.observe()
        if report.suspicious_users:
            self._notify(
                "Suspicious Activity",
                "Multiple sessions detected for users:\n" + report.suspicious_summary(),
            )
        return report

    def check_expiring(self) -> List[AccountRecord]:
        days = self.settings.expiry_warning_days
        expiring = self.controller.expiring(within_days=days)
        if expiring:
            lines = [f"- {r.username} expires on {r.expires_at.isoformat()}" for r in expiring]
            for r in expiring:
                logger.warning("User expiring soon", username=r.username, expires_at=r.expires_at.isoformat())
            self._notify(
                "User Expiration Warning",
                f"The following users will expire within {days} days:\n\n" + "\n".join(lines),
            )
        return expiring

    def cleanup_expired(self) -> List[str]:
        """Delegate to the controller; notify on removals and on failure"""
        logger.info("Running expired user cleanup")
        try:
            removed = self.controller.cleanup()
        except TunnelwardError as e:
            logger.error("Expired user cleanup failed", category=e.category, error=str(e))
            body = f"Expired user cleanup failed:\n\n{e.category}: {e}"
            if isinstance(e, CleanupIncomplete) and e.removed:
                body += "\n\nRemoved before the failure:\n" + "\n".join(f"- {u}" for u in e.removed)
            self._notify("Cleanup Failed", body)
            raise

        logger.info("Expired user cleanup completed", removed=removed)
        if removed:
            self._notify(
                "Expired Users Removed",
                "Expired users have been automatically removed:\n\n" + "\n".join(f"- {u}" for u in removed),
            )
        return removed

    def rotate_logs(self) -> List[str]:
        """Move oversized logs to <log>.old and prune old rotations"""
        rotated: List[str] = []
        max_age_seconds = self.settings.rotated_log_max_age_days * 86400
        for log in self.settings.log_files:
            path = Path(log)
            try:
                if path.is_file() and path.stat().st_size > self.settings.max_log_bytes:
                    size_mb = path.stat().st_size // (1024 * 1024)
                    os.replace(path, path.with_name(path.name + ".old"))
                    path.touch()
                    rotated.append(str(path))
                    logger.info("Rotated large log file", path=str(path), size_mb=size_mb)
                if path.parent.is_dir():
                    cutoff = time.time() - max_age_seconds
                    for old in path.parent.glob(path.name + ".old*"):
                        if old.stat().st_mtime < cutoff:
                            old.unlink()
                            logger.info("Deleted old rotated log", path=str(old))
            except OSError as e:
                logger.warning("Log rotation skipped", path=str(path), error=str(e))
        return rotated

    def render_report(self) -> str:
        now = self.now()
        summary = self.controller.summary()
        lines = [
            f"SSH User Manager Report - {now.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "======================================",
            "",
            "System Status:",
            "--------------",
            f"Stunnel: {'Running' if self.services.transport_running() else 'Not Running'}",
            f"SSH: {'Running' if self.services.ssh_running() else 'Not Running'}",
            "",
            "User Statistics:",
            "----------------",
            f"Total Users: {summary.total}",
            f"Active Users: {summary.active}",
            f"Expired Users: {summary.expired}",
            "",
        ]
        if summary.active_usernames:
            lines += ["Active Users:", "-------------", *summary.active_usernames, ""]
        lines.append(f"Report generated: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC")
        return "\n".join(lines) + "\n"

    def generate_report(self) -> Path:
        report_dir = Path(self.settings.report_dir)
        report_dir.mkdir(parents=True, exist_ok=True)
        path = report_dir / f"tunnelward_report_{self.now().strftime('%Y%m%d')}.txt"
        content = self.render_report()
        path.write_text(content, encoding="utf-8")
        logger.info("Usage report generated", path=str(path))
        if self.settings.email_alerts:
            self._notify("Daily Report", content)
        return path
