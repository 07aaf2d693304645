"""Fire-and-forget notifications"""

import shutil
from abc import ABC, abstractmethod
from typing import Callable

from .commands import run_command
from ..utils.exceptions import CommandError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, subject: str, body: str) -> None:
        """Deliver one message; must not raise"""


class NullNotifier(Notifier):
    """Used when email alerts are disabled"""

    def notify(self, subject: str, body: str) -> None:
        logger.debug("Notification suppressed", subject=subject)


class MailNotifier(Notifier):
    """Pipes the body to the local `mail` command"""

    def __init__(self, admin_email: str, runner: Callable = run_command):
        self.admin_email = admin_email
        self.run = runner

    def notify(self, subject: str, body: str) -> None:
        if shutil.which("mail") is None:
            logger.warning("mail command not available, notification dropped", subject=subject)
            return
        try:
            self.run(["mail", "-s", subject, self.admin_email], input_text=body)
            logger.info("Email notification sent", to=self.admin_email, subject=subject)
        except CommandError as e:
            # delivery never fails the run that triggered it
            logger.error("Email notification failed", subject=subject, error=str(e))
