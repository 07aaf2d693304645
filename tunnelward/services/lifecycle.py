"""
Account lifecycle controller.

The only component allowed to mutate the record store or call the
credential provider. create/delete/cleanup run inside the store lock so the
quota and uniqueness checks cannot race another invocation.
"""

from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..core.locks import store_lock
from ..models.account import (
    AccountDetails,
    AccountRecord,
    AccountStatus,
    AccountSummary,
    AccountView,
    AuthMode,
    CreatedAccount,
    is_valid_username,
)
from ..utils.clock import utc_now
from ..utils.config import ManagerConfig
from ..utils.exceptions import (
    AuthModeNotAllowed,
    CleanupIncomplete,
    CommandError,
    DuplicateKey,
    InvalidExpiry,
    InvalidUsername,
    NotFound,
    ProvisionFailed,
    QuotaExceeded,
    TunnelwardError,
)
from ..utils.logger import get_logger
from .credential_provisioner import CredentialProvider
from .record_store import RecordStore

logger = get_logger(__name__)


class LifecycleController:
    """create / delete / list / show / cleanup over the store and provider"""

    def __init__(
        self,
        config: ManagerConfig,
        store: RecordStore,
        provider: CredentialProvider,
        lock_file: Path,
        now: Callable[[], datetime] = utc_now,
        lock_timeout_seconds: float = 30,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.lock_file = Path(lock_file)
        self.now = now
        self.lock_timeout_seconds = lock_timeout_seconds

    def today(self) -> date:
        return self.now().date()

    def _lock(self):
        return store_lock(self.lock_file, timeout_seconds=self.lock_timeout_seconds)

    def _validate_mode(self, mode: AuthMode) -> None:
        if mode != AuthMode.PASSWORD:
            return
        if not self.config.allow_password_auth:
            raise AuthModeNotAllowed(mode.value, "ALLOW_PASSWORD_AUTH is false")
        if self.config.require_key_auth:
            raise AuthModeNotAllowed(mode.value, "REQUIRE_KEY_AUTH is true")

    def create(self, username: str, days: Optional[int] = None, mode: AuthMode = AuthMode.KEY) -> CreatedAccount:
        """
        Create a platform identity and its record.

        Returns:
            CreatedAccount carrying the secret material; it is not stored anywhere

        Raises:
            InvalidUsername, InvalidExpiry, AuthModeNotAllowed, QuotaExceeded,
            DuplicateKey, IdentityExists, ProvisionFailed, StoreIOError
        """
        if not is_valid_username(username):
            raise InvalidUsername(username)
        if days is None:
            days = self.config.default_expire_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise InvalidExpiry(days)
        mode = AuthMode(mode)
        self._validate_mode(mode)

        with self._lock():
            current = self.store.count()
            if current >= self.config.max_users:
                raise QuotaExceeded(username, self.config.max_users)
            if self.store.contains(username):
                raise DuplicateKey(username, where="database")
            if self.provider.identity_exists(username):
                raise DuplicateKey(username, where="system")

            created_at = self.now().replace(microsecond=0)
            expires_at = created_at.date() + timedelta(days=days)

            credentials = self.provider.provision(username, mode)
            try:
                self.provider.set_expiry(username, expires_at)
            except CommandError as e:
                self._rollback_identity(username)
                raise ProvisionFailed(f"Failed to set expiration for {username}: {e}", identifier=username)

            record = AccountRecord(
                username=username,
                created_at=created_at,
                expires_at=expires_at,
                auth_mode=mode,
            )
            try:
                self.store.insert(record)
            except Exception:
                self._rollback_identity(username)
                raise

        logger.info(
            "Created user",
            username=username,
            auth_mode=mode.value,
            expires_at=expires_at.isoformat(),
            user_count=current + 1,
        )
        return CreatedAccount(record=record, credentials=credentials)

    def _rollback_identity(self, username: str) -> None:
        try:
            self.provider.deprovision(username)
        except CommandError as e:
            logger.error("Rollback of system user failed", username=username, error=str(e))

    def delete(self, username: str) -> AccountRecord:
        """Deprovision, then remove the record. A failed removal that leaves the identity keeps the record."""
        with self._lock():
            return self._delete_locked(username)

    def _delete_locked(self, username: str) -> AccountRecord:
        record = self.store.get(username)
        if record is None:
            raise NotFound(username)

        try:
            self.provider.deprovision(username)
        except CommandError as e:
            if self.provider.identity_exists(username):
                logger.error("Failed to remove system user, keeping record", username=username, error=str(e))
                raise ProvisionFailed(
                    f"Failed to remove system user {username}: {e}",
                    identifier=username,
                )
            logger.warning("System user already gone after failed removal", username=username, error=str(e))

        self.store.remove(username)
        logger.info("Deleted user", username=username)
        return record

    def cleanup(self) -> List[str]:
        """
        Delete every record whose expires_at is strictly before today.

        Raises:
            CleanupIncomplete: a delete failed; carries the usernames removed before it
        """
        removed: List[str] = []
        with self._lock():
            today = self.today()
            expired = [r.username for r in self.store.scan() if r.is_expired(today)]
            if not expired:
                logger.info("No expired users found")
                return removed
            logger.info("Found expired users", count=len(expired))
            for username in expired:
                logger.info("Removing expired user", username=username)
                try:
                    self._delete_locked(username)
                except TunnelwardError as e:
                    logger.error("Cleanup stopped", username=username, removed=removed, error=str(e))
                    raise CleanupIncomplete(username, removed, e) from e
                removed.append(username)
        return removed

    def list_accounts(self) -> List[AccountView]:
        today = self.today()
        return [
            AccountView(
                record=record,
                status=record.derive_status(today, self.provider.identity_exists(record.username)),
            )
            for record in self.store.scan()
        ]

    def show(self, username: str) -> AccountDetails:
        record = self.store.get(username)
        if record is None:
            raise NotFound(username)
        identity = self.provider.inspect(username)
        return AccountDetails(
            record=record,
            status=record.derive_status(self.today(), identity.exists),
            identity=identity,
        )

    def expiring(self, within_days: int = 7) -> List[AccountRecord]:
        """Records expiring after today and no later than today + within_days"""
        today = self.today()
        horizon = today + timedelta(days=within_days)
        return [r for r in self.store.scan() if today < r.expires_at <= horizon]

    def summary(self) -> AccountSummary:
        today = self.today()
        summary = AccountSummary()
        for record in self.store.scan():
            summary.total += 1
            if record.is_expired(today):
                summary.expired += 1
            else:
                summary.active += 1
                summary.active_usernames.append(f"{record.username} (expires: {record.expires_at.isoformat()})")
        return summary

    def usage(self) -> Tuple[int, int]:
        return self.store.count(), self.config.max_users
