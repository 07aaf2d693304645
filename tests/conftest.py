"""Shared fakes: in-memory credential provider, fixed clock, service probes"""

from datetime import date, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

from tunnelward.models.account import AuthMode, IdentityInfo, ProvisionedCredentials
from tunnelward.services.credential_provisioner import CredentialProvider
from tunnelward.utils.exceptions import CommandError, IdentityExists, ProvisionFailed


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, days: int = 0, **kwargs) -> None:
        self.current = self.current + timedelta(days=days, **kwargs)


class FakeCredentialProvider(CredentialProvider):
    """Keeps identities in a set and records every call"""

    def __init__(self):
        self.identities = set()
        self.expiry = {}
        self.calls = []
        self.fail_provision = False
        self.fail_set_expiry = False
        self.fail_deprovision = False

    def identity_exists(self, username: str) -> bool:
        return username in self.identities

    def provision(self, username: str, mode: AuthMode) -> ProvisionedCredentials:
        self.calls.append(("provision", username, mode))
        if username in self.identities:
            raise IdentityExists(username)
        if self.fail_provision:
            raise ProvisionFailed(f"useradd failed for {username}", identifier=username)
        self.identities.add(username)
        if mode == AuthMode.PASSWORD:
            return ProvisionedCredentials(username=username, auth_mode=mode, password="p" * 12)
        return ProvisionedCredentials(
            username=username,
            auth_mode=mode,
            private_key_path=f"/home/{username}/.ssh/id_rsa",
            public_key=f"ssh-rsa AAAAfake {username}@stunnel",
        )

    def deprovision(self, username: str) -> bool:
        self.calls.append(("deprovision", username))
        if self.fail_deprovision:
            raise CommandError("userdel", "userdel exited with code 1", returncode=1)
        if username not in self.identities:
            return False
        self.identities.discard(username)
        self.expiry.pop(username, None)
        return True

    def set_expiry(self, username: str, expires_at: date) -> None:
        self.calls.append(("set_expiry", username, expires_at))
        if self.fail_set_expiry:
            raise CommandError("chage", "chage exited with code 1", returncode=1)
        self.expiry[username] = expires_at

    def inspect(self, username: str) -> IdentityInfo:
        exists = username in self.identities
        return IdentityInfo(
            username=username,
            exists=exists,
            home_dir=f"/home/{username}" if exists else None,
            credential_dir_exists=exists,
            authorized_keys_configured=exists,
            private_key_available=exists,
        )


class FakeServices:
    """Stand-in for ServiceController"""

    def __init__(self, transport=True, ssh=True, listening=True, port=443):
        self.transport = transport
        self.ssh = ssh
        self.listening = listening
        self.port = port
        self.restarted = []

    def transport_running(self) -> bool:
        return self.transport

    def ssh_running(self) -> bool:
        return self.ssh

    def port_listening(self, port=None) -> bool:
        return self.listening

    def restart_transport(self) -> str:
        self.restarted.append("stunnel4")
        return "stunnel4"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, subject: str, body: str) -> None:
        self.sent.append((subject, body))

    @property
    def subjects(self):
        return [subject for subject, _ in self.sent]


def session(name: str):
    return SimpleNamespace(name=name, terminal="pts/0", host="10.0.0.1")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 10, 30, 0))


@pytest.fixture
def provider():
    return FakeCredentialProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_controller(tmp_path, provider, clock):
    """Factory for a LifecycleController over a temp store"""
    from tunnelward.core.locks import lock_path
    from tunnelward.services.lifecycle import LifecycleController
    from tunnelward.services.record_store import RecordStore
    from tunnelward.utils.config import ManagerConfig

    def _make(**config_values):
        config = ManagerConfig(**config_values)
        return LifecycleController(
            config=config,
            store=RecordStore(tmp_path / "users.db"),
            provider=provider,
            lock_file=lock_path(tmp_path / "locks", "store"),
            now=clock,
            lock_timeout_seconds=0.5,
        )

    return _make


@pytest.fixture
def data_dir(tmp_path) -> Path:
    """Data directory with settings that keep every path inside tmp_path"""
    path = tmp_path / "data"
    path.mkdir()
    (path / "settings.yaml").write_text(
        "logging:\n"
        "  level: DEBUG\n"
        "  format: console\n"
        f"  file_path: {tmp_path / 'logs' / 'tunnelward.log'}\n"
        "transport:\n"
        f"  certificate_path: {tmp_path / 'missing.pem'}\n"
        "monitor:\n"
        f"  lock_file: {tmp_path / 'monitor.lock'}\n"
        f"  report_dir: {tmp_path / 'reports'}\n"
        "  log_files: []\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def app(data_dir, provider, clock, notifier):
    from tunnelward.app import TunnelwardApp

    return TunnelwardApp(
        data_dir=data_dir,
        provider=provider,
        services=FakeServices(),
        notifier=notifier,
        now=clock,
    ).initialize(configure_logging=False)
