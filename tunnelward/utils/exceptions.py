"""Custom exceptions for the tunnel account manager"""

from typing import List, Optional


class TunnelwardError(Exception):
    """Base exception for Tunnelward"""

    category = "Error"
    exit_code = 1

    def __init__(self, message: str, identifier: Optional[str] = None):
        self.identifier = identifier
        super().__init__(message)


class ValidationError(TunnelwardError):
    """Input rejected before any side effect"""
    exit_code = 2


class InvalidUsername(ValidationError):
    category = "InvalidUsername"

    def __init__(self, username: str):
        super().__init__(
            f"Invalid username '{username}'. Use only alphanumeric characters, hyphens, and underscores.",
            identifier=username,
        )


class InvalidExpiry(ValidationError):
    category = "InvalidExpiry"

    def __init__(self, days):
        super().__init__(f"Expiration must be a positive number of days, got '{days}'", identifier=str(days))


class AuthModeNotAllowed(ValidationError):
    category = "AuthModeNotAllowed"

    def __init__(self, mode: str, reason: str):
        super().__init__(f"Authentication mode '{mode}' is not allowed: {reason}", identifier=mode)


class DuplicateKey(TunnelwardError):
    category = "DuplicateKey"
    exit_code = 3

    def __init__(self, username: str, where: str = "database"):
        self.where = where
        super().__init__(f"User {username} already exists ({where})", identifier=username)


class QuotaExceeded(TunnelwardError):
    category = "QuotaExceeded"
    exit_code = 4

    def __init__(self, username: str, max_users: int):
        self.max_users = max_users
        super().__init__(f"Maximum user limit ({max_users}) reached", identifier=username)


class NotFound(TunnelwardError):
    category = "NotFound"
    exit_code = 5

    def __init__(self, username: str):
        super().__init__(f"User {username} not found in database", identifier=username)


class IdentityExists(TunnelwardError):
    category = "IdentityExists"
    exit_code = 6

    def __init__(self, username: str):
        super().__init__(f"System user {username} already exists", identifier=username)


class ProvisionFailed(TunnelwardError):
    category = "ProvisionFailed"
    exit_code = 7


class CleanupIncomplete(TunnelwardError):
    """Expiration sweep stopped partway; `removed` lists what was already deleted"""
    category = "CleanupIncomplete"
    exit_code = 13

    def __init__(self, username: str, removed: List[str], cause: TunnelwardError):
        self.removed = list(removed)
        self.cause = cause
        done = ", ".join(self.removed) if self.removed else "none"
        super().__init__(
            f"Cleanup stopped at {username} ({cause.category}: {cause}); already removed: {done}",
            identifier=username,
        )


class AlreadyRunning(TunnelwardError):
    category = "AlreadyRunning"
    exit_code = 8

    def __init__(self, lock_path: str, pid: Optional[int] = None):
        self.pid = pid
        super().__init__(f"Monitor is already running (PID: {pid})", identifier=lock_path)


class LockTimeout(TunnelwardError):
    category = "LockTimeout"
    exit_code = 9

    def __init__(self, key: str, timeout_seconds: float):
        super().__init__(f"Could not acquire lock {key} within {timeout_seconds}s", identifier=key)


class StoreIOError(TunnelwardError):
    category = "StoreIOError"
    exit_code = 10


class ConfigError(TunnelwardError):
    """Configuration error"""
    category = "ConfigError"
    exit_code = 11


class CommandError(TunnelwardError):
    """External platform command failed or timed out"""
    category = "CommandError"
    exit_code = 12

    def __init__(self, command: str, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message, identifier=command)
