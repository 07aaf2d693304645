"""Transport (stunnel) and SSH daemon status via systemctl and psutil"""

from typing import Callable, List, Optional, Sequence

import psutil

from .commands import command_succeeds, run_command
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ServiceController:
    """Running/stopped checks, port listening and restart for named services"""

    def __init__(
        self,
        service_names: Sequence[str],
        ssh_service_names: Sequence[str],
        port: int,
        probe: Callable[[Sequence[str]], bool] = command_succeeds,
        runner: Callable = run_command,
    ):
        self.service_names = list(service_names)
        self.ssh_service_names = list(ssh_service_names)
        self.port = port
        self.probe = probe
        self.run = runner

    def _any_active(self, names: List[str]) -> Optional[str]:
        for name in names:
            if self.probe(["systemctl", "is-active", "--quiet", name]):
                return name
        return None

    def transport_running(self) -> bool:
        return self._any_active(self.service_names) is not None

    def ssh_running(self) -> bool:
        return self._any_active(self.ssh_service_names) is not None

    def port_listening(self, port: Optional[int] = None) -> bool:
        port = self.port if port is None else port
        try:
            connections = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, OSError) as e:
            logger.warning("Cannot inspect listening sockets", error=str(e))
            return False
        return any(
            c.status == psutil.CONN_LISTEN and c.laddr and c.laddr.port == port
            for c in connections
        )

    def restart_transport(self) -> str:
        """Restart the first known transport unit that is active, else the first configured"""
        name = self._any_active(self.service_names) or self.service_names[0]
        self.run(["systemctl", "restart", name])
        logger.info("Restarted transport service", service=name)
        return name
