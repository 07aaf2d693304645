"""Account data models"""

import re
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
CREATED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"
EXPIRES_AT_FORMAT = "%Y-%m-%d"


class AuthMode(str, Enum):
    """How an account authenticates over the tunnel"""
    KEY = "key"
    PASSWORD = "password"


class AccountStatus(str, Enum):
    """Derived account status; never persisted"""
    ACTIVE = "active"
    EXPIRED = "expired"
    DELETED = "deleted"


def is_valid_username(username: str) -> bool:
    return bool(username) and USERNAME_PATTERN.match(username) is not None


class AccountRecord(BaseModel):
    """One row of the record store"""
    username: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    created_at: datetime
    expires_at: date
    stored_status: str = "active"  # written once, kept only for a verbatim round trip
    auth_mode: Optional[AuthMode] = None  # None for legacy lines written without it

    class Config:
        frozen = True

    def is_expired(self, today: date) -> bool:
        return self.expires_at < today

    def derive_status(self, today: date, identity_exists: bool = True) -> AccountStatus:
        if not identity_exists:
            return AccountStatus.DELETED
        if self.is_expired(today):
            return AccountStatus.EXPIRED
        return AccountStatus.ACTIVE


class ProvisionedCredentials(BaseModel):
    """Secret material returned once by provisioning"""
    username: str
    auth_mode: AuthMode
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    public_key: Optional[str] = None


class IdentityInfo(BaseModel):
    """Platform-level view of an identity"""
    username: str
    exists: bool = False
    home_dir: Optional[str] = None
    credential_dir_exists: bool = False
    authorized_keys_configured: bool = False
    private_key_available: bool = False


class CreatedAccount(BaseModel):
    record: AccountRecord
    credentials: ProvisionedCredentials


class AccountView(BaseModel):
    """Row of the `list` projection"""
    record: AccountRecord
    status: AccountStatus


class AccountDetails(BaseModel):
    record: AccountRecord
    status: AccountStatus
    identity: IdentityInfo


class AccountSummary(BaseModel):
    """Counts used by status and reports"""
    total: int = 0
    active: int = 0
    expired: int = 0
    active_usernames: List[str] = Field(default_factory=list)
