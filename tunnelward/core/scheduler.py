"""
Scheduling for unattended supervisor runs.

Two ways to run the monitor periodically:
- a crontab entry managed by CronScheduler, the default deployment
- a foreground loop driven by `schedule` (run_forever), for hosts without cron

Either way every tick is an ordinary locked Supervisor.run_monitor, so
overlapping ticks end in AlreadyRunning rather than concurrent work.
"""

import os
import shlex
import shutil
import sys
import threading
from typing import Callable, List, Optional

import schedule

from ..integrations.commands import run_command
from ..utils.exceptions import AlreadyRunning, TunnelwardError
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CRON_SCHEDULE = "0 */6 * * *"
POLL_SECONDS = 60


def default_monitor_command() -> str:
    """Command cron should invoke, carrying TUNNELWARD_DATA_DIR when it is set"""
    exe = shutil.which("tunnelward-monitor")
    command = exe if exe else f"{shlex.quote(sys.executable)} -m tunnelward.ui.monitor_cli"
    data_dir = os.getenv("TUNNELWARD_DATA_DIR")
    if data_dir:
        command = f"TUNNELWARD_DATA_DIR={shlex.quote(data_dir)} {command}"
    return command


class CronScheduler:
    """Manage the monitor line in the invoking user's crontab"""

    def __init__(self, command: Optional[str] = None, runner: Callable = run_command):
        self.command = command or default_monitor_command()
        self.run = runner

    @property
    def marker(self) -> str:
        return f"{self.command} monitor"

    def _read(self) -> List[str]:
        # crontab -l exits 1 when the user has no crontab yet
        result = self.run(["crontab", "-l"], ok_returncodes=(0, 1))
        if result.returncode != 0:
            return []
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def _write(self, lines: List[str]) -> None:
        content = "\n".join(lines) + "\n" if lines else ""
        self.run(["crontab", "-"], input_text=content)

    def is_installed(self) -> bool:
        return any(self.marker in line for line in self._read())

    def install(self, cron_schedule: str = DEFAULT_CRON_SCHEDULE) -> bool:
        """Add the monitor line; False when it was already present"""
        if len(cron_schedule.split()) != 5:
            raise ValueError(f"Invalid cron schedule: {cron_schedule!r}")
        lines = self._read()
        if any(self.marker in line for line in lines):
            logger.info("Cron job already exists", command=self.marker)
            return False
        lines.append(f"{cron_schedule} {self.marker} >/dev/null 2>&1")
        self._write(lines)
        logger.info("Cron job installed", schedule=cron_schedule, command=self.marker)
        return True

    def remove(self) -> bool:
        """Drop the monitor line; False when nothing matched"""
        lines = self._read()
        kept = [line for line in lines if self.marker not in line]
        if len(kept) == len(lines):
            logger.info("No cron job to remove", command=self.marker)
            return False
        self._write(kept)
        logger.info("Cron job removed", command=self.marker)
        return True


def run_forever(
    job: Callable[[], object],
    interval_hours: int,
    stop_event: Optional[threading.Event] = None,
    poll_seconds: float = POLL_SECONDS,
    run_now: bool = True,
) -> None:
    """Run job every interval_hours until stop_event is set"""
    stop_event = stop_event or threading.Event()
    scheduler = schedule.Scheduler()

    def tick():
        try:
            job()
        except AlreadyRunning as e:
            logger.warning("Skipping scheduled run, monitor already running", pid=e.pid)
        except TunnelwardError as e:
            logger.error("Scheduled run failed", category=e.category, error=str(e))

    scheduler.every(interval_hours).hours.do(tick)
    logger.info("Starting scheduler loop", interval_hours=interval_hours)

    if run_now:
        tick()
    while not stop_event.is_set():
        scheduler.run_pending()
        stop_event.wait(poll_seconds)

    scheduler.clear()
    logger.info("Scheduler loop stopped")
