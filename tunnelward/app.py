"""Application wiring: one instance per invocation"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .core.health_monitor import HealthMonitor
from .core.locks import lock_path
from .core.session_monitor import SessionMonitor
from .core.supervisor import Supervisor
from .integrations.notifier import MailNotifier, Notifier, NullNotifier
from .integrations.transport import ServiceController
from .services.credential_provisioner import CredentialProvider, SystemCredentialProvisioner
from .services.lifecycle import LifecycleController
from .services.record_store import RecordStore
from .utils.clock import utc_now
from .utils.config import ConfigManager, ManagerConfig, Settings
from .utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


class TunnelwardApp:
    """Builds configuration once and hands it to every component"""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        provider: Optional[CredentialProvider] = None,
        services: Optional[ServiceController] = None,
        notifier: Optional[Notifier] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config_manager = ConfigManager(data_dir)
        self.now = now
        self._provider = provider
        self._services = services
        self._notifier = notifier
        self.config: Optional[ManagerConfig] = None
        self.settings: Optional[Settings] = None
        self.store: Optional[RecordStore] = None
        self.provider: Optional[CredentialProvider] = None
        self.controller: Optional[LifecycleController] = None
        self.services: Optional[ServiceController] = None
        self.notifier: Optional[Notifier] = None
        self.supervisor: Optional[Supervisor] = None

    def initialize(self, configure_logging: bool = True) -> "TunnelwardApp":
        cm = self.config_manager
        self.config = cm.load_manager_config()
        self.settings = cm.load_settings()

        if configure_logging:
            log = self.settings.logging
            setup_logger(
                log_level=log.level,
                log_format=log.format,
                file_path=log.file_path,
                max_bytes=log.max_bytes,
                backup_count=log.backup_count,
            )

        self.store = RecordStore(cm.user_db_path)
        self.provider = self._provider or SystemCredentialProvisioner(
            min_password_length=self.config.min_password_length,
        )
        self.controller = LifecycleController(
            config=self.config,
            store=self.store,
            provider=self.provider,
            lock_file=lock_path(cm.locks_dir, "store"),
            now=self.now,
        )

        transport = self.settings.transport
        self.services = self._services or ServiceController(
            service_names=transport.service_names,
            ssh_service_names=transport.ssh_service_names,
            port=self.config.stunnel_port,
        )

        monitor = self.settings.monitor
        if self._notifier is not None:
            self.notifier = self._notifier
        elif monitor.email_alerts:
            self.notifier = MailNotifier(monitor.admin_email)
        else:
            self.notifier = NullNotifier()

        self.supervisor = Supervisor(
            controller=self.controller,
            health=HealthMonitor(self.services, transport, monitor),
            sessions=SessionMonitor(max_sessions_per_user=monitor.max_sessions_per_user),
            services=self.services,
            notifier=self.notifier,
            settings=monitor,
            now=self.now,
        )

        logger.debug(
            "Configuration loaded",
            data_dir=str(cm.data_dir),
            max_users=self.config.max_users,
            email_alerts=monitor.email_alerts,
        )
        return self
