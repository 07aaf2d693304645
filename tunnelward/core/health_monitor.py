"""Host health checks for the tunnel: services, port, certificate, resources"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import psutil

from ..integrations.certificates import certificate_not_after, expires_within, load_certificate
from ..integrations.transport import ServiceController
from ..utils.clock import utc_now
from ..utils.config import MonitorSettings, TransportSettings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Overall host health"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


CRITICAL_CHECKS = ("transport", "ssh", "port")


class HealthCheckResult:
    """Result of a health check"""

    def __init__(
        self,
        status: HealthStatus,
        checks: Dict[str, Dict[str, Any]],
        timestamp: datetime,
    ):
        self.status = status
        self.checks = checks
        self.timestamp = timestamp

    @property
    def issues(self) -> List[str]:
        return [c["error"] for c in self.checks.values() if c.get("status") == "failed"]

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "checks": self.checks,
            "timestamp": self.timestamp.isoformat(),
        }


def _ok(**extra) -> Dict[str, Any]:
    return {"status": "ok", **extra}


def _failed(error: str, **extra) -> Dict[str, Any]:
    return {"status": "failed", "error": error, **extra}


class HealthMonitor:
    """
    Runs every check and reports. Never mutates anything.

    Checks:
    - transport service running
    - SSH service running
    - transport port listening
    - certificate present and not expiring within the warning window
    - disk and memory usage under thresholds
    """

    def __init__(
        self,
        services: ServiceController,
        transport: TransportSettings,
        monitor: MonitorSettings,
        disk_usage: Callable[[], float] = lambda: psutil.disk_usage("/").percent,
        memory_usage: Callable[[], float] = lambda: psutil.virtual_memory().percent,
        now: Callable[[], datetime] = utc_now,
    ):
        self.services = services
        self.transport = transport
        self.monitor = monitor
        self.disk_usage = disk_usage
        self.memory_usage = memory_usage
        self.now = now

    def check(self) -> HealthCheckResult:
        checks = {
            "transport": self._check_transport(),
            "ssh": self._check_ssh(),
            "port": self._check_port(),
            "certificate": self._check_certificate(),
            "disk": self._check_usage("Disk", self.disk_usage, self.monitor.disk_usage_threshold),
            "memory": self._check_usage("Memory", self.memory_usage, self.monitor.memory_usage_threshold),
        }

        failed = [name for name, c in checks.items() if c.get("status") == "failed"]
        if any(name in CRITICAL_CHECKS for name in failed):
            status = HealthStatus.CRITICAL
        elif failed:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY

        result = HealthCheckResult(status=status, checks=checks, timestamp=self.now().replace(microsecond=0))
        logger.info("Health check completed", status=status.value, failed=failed)
        return result

    def _check_transport(self) -> Dict[str, Any]:
        if self.services.transport_running():
            return _ok()
        return _failed("Stunnel service is not running")

    def _check_ssh(self) -> Dict[str, Any]:
        if self.services.ssh_running():
            return _ok()
        return _failed("SSH service is not running")

    def _check_port(self) -> Dict[str, Any]:
        port = self.services.port
        if self.services.port_listening(port):
            return _ok(port=port)
        return _failed(f"Port {port} is not listening", port=port)

    def _check_certificate(self) -> Dict[str, Any]:
        try:
            cert = load_certificate(self.transport.certificate_path)
        except (OSError, ValueError) as e:
            return _failed(f"SSL certificate unreadable: {e}")
        if cert is None:
            return _failed("SSL certificate not found")
        days = self.monitor.certificate_warning_days
        not_after = certificate_not_after(cert).isoformat()
        if expires_within(cert, days):
            return _failed(f"SSL certificate expires within {days} days", not_after=not_after)
        return _ok(not_after=not_after)

    def _check_usage(self, label: str, probe: Callable[[], float], threshold: float) -> Dict[str, Any]:
        try:
            usage = float(probe())
        except (OSError, psutil.Error) as e:
            return _failed(f"{label} usage unavailable: {e}")
        if usage > threshold:
            return _failed(f"{label} usage is above {threshold:.0f}% ({usage:.0f}%)", percent=usage)
        return _ok(percent=usage)


def format_issues(issues: List[str]) -> Optional[str]:
    if not issues:
        return None
    return "The following issues were detected:\n\n" + "\n".join(f"- {issue}" for issue in issues)
