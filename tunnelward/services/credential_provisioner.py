"""
Platform identity provisioning.

CredentialProvider is the seam the lifecycle controller talks to;
SystemCredentialProvisioner implements it with the standard shadow-utils
tools. Keypairs are generated in-process with cryptography and written in
OpenSSH format.
"""

import os
import pwd
import secrets
import string
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Callable, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..integrations.commands import run_command
from ..models.account import AuthMode, IdentityInfo, ProvisionedCredentials
from ..utils.clock import utc_today
from ..utils.exceptions import CommandError, IdentityExists, ProvisionFailed
from ..utils.logger import get_logger

logger = get_logger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits
RSA_KEY_SIZE = 4096
CREDENTIAL_DIR_NAME = ".ssh"
PRIVATE_KEY_NAME = "id_rsa"
AUTHORIZED_KEYS_NAME = "authorized_keys"

# pkill: 1 = no process matched. userdel: 12 = home directory could not be removed
PKILL_OK = (0, 1)
USERDEL_OK = (0, 12)


def generate_password(length: int) -> str:
    """Random alphanumeric password of exactly `length` characters"""
    if length < 1:
        raise ValueError("password length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_keypair(comment: str, key_size: int = RSA_KEY_SIZE) -> Tuple[bytes, str]:
    """Return (private key in OpenSSH PEM, public key line with comment)"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_line = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    return private_bytes, f"{public_line} {comment}"


class CredentialProvider(ABC):
    """Creates and removes platform identities and their authentication material"""

    @abstractmethod
    def identity_exists(self, username: str) -> bool:
        ...

    @abstractmethod
    def provision(self, username: str, mode: AuthMode) -> ProvisionedCredentials:
        """
        Raises:
            IdentityExists: the platform identity is already present
            ProvisionFailed: anything else went wrong; partial state is removed
        """

    @abstractmethod
    def deprovision(self, username: str) -> bool:
        """End sessions and remove the identity; False if it was already absent"""

    @abstractmethod
    def set_expiry(self, username: str, expires_at: date) -> None:
        ...

    @abstractmethod
    def inspect(self, username: str) -> IdentityInfo:
        ...


class SystemCredentialProvisioner(CredentialProvider):
    """Local accounts via useradd/chpasswd/chage/userdel"""

    def __init__(
        self,
        min_password_length: int = 12,
        key_size: int = RSA_KEY_SIZE,
        runner: Callable = run_command,
    ):
        self.min_password_length = min_password_length
        self.key_size = key_size
        self.run = runner

    def _lookup(self, username: str) -> Optional[pwd.struct_passwd]:
        try:
            return pwd.getpwnam(username)
        except KeyError:
            return None

    def identity_exists(self, username: str) -> bool:
        return self._lookup(username) is not None

    def provision(self, username: str, mode: AuthMode) -> ProvisionedCredentials:
        if self.identity_exists(username):
            raise IdentityExists(username)

        try:
            self.run(["useradd", "-m", "-s", "/bin/bash", username])
        except CommandError as e:
            self._rollback(username)
            raise ProvisionFailed(f"Failed to create system user {username}: {e}", identifier=username)

        try:
            entry = self._lookup(username)
            if entry is None:
                raise ProvisionFailed(f"System user {username} missing after useradd", identifier=username)
            credential_dir = Path(entry.pw_dir) / CREDENTIAL_DIR_NAME
            credential_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(credential_dir, 0o700)
            os.chown(credential_dir, entry.pw_uid, entry.pw_gid)

            if mode == AuthMode.PASSWORD:
                credentials = self._apply_password(username)
            else:
                credentials = self._install_keypair(username, credential_dir, entry.pw_uid, entry.pw_gid)
        except (CommandError, OSError) as e:
            self._rollback(username)
            raise ProvisionFailed(f"Failed to provision credentials for {username}: {e}", identifier=username)
        except ProvisionFailed:
            self._rollback(username)
            raise

        logger.info("Provisioned system user", username=username, auth_mode=mode.value)
        return credentials

    def _apply_password(self, username: str) -> ProvisionedCredentials:
        password = generate_password(self.min_password_length)
        self.run(["chpasswd"], input_text=f"{username}:{password}\n")
        return ProvisionedCredentials(username=username, auth_mode=AuthMode.PASSWORD, password=password)

    def _install_keypair(self, username: str, credential_dir: Path, uid: int, gid: int) -> ProvisionedCredentials:
        comment = f"{username}@stunnel-{utc_today().strftime('%Y%m%d')}"
        private_bytes, public_line = generate_keypair(comment, key_size=self.key_size)

        key_file = credential_dir / PRIVATE_KEY_NAME
        pub_file = credential_dir / f"{PRIVATE_KEY_NAME}.pub"
        authorized_keys = credential_dir / AUTHORIZED_KEYS_NAME

        fd = os.open(str(key_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(private_bytes)
        pub_file.write_text(public_line + "\n", encoding="ascii")
        # the generated key is the only accepted credential
        authorized_keys.write_text(public_line + "\n", encoding="ascii")

        os.chmod(key_file, 0o600)
        os.chmod(authorized_keys, 0o600)
        for path in (key_file, pub_file, authorized_keys):
            os.chown(path, uid, gid)

        return ProvisionedCredentials(
            username=username,
            auth_mode=AuthMode.KEY,
            private_key_path=str(key_file),
            public_key=public_line,
        )

    def _rollback(self, username: str) -> None:
        if not self.identity_exists(username):
            return
        try:
            self.run(["userdel", "-r", username], ok_returncodes=USERDEL_OK)
            logger.warning("Rolled back partially created user", username=username)
        except CommandError as e:
            logger.error("Rollback of partially created user failed", username=username, error=str(e))

    def deprovision(self, username: str) -> bool:
        if not self.identity_exists(username):
            logger.warning("System user already absent", username=username)
            return False
        self.run(["pkill", "-u", username], ok_returncodes=PKILL_OK)
        self.run(["userdel", "-r", username], ok_returncodes=USERDEL_OK)
        logger.info("Removed system user", username=username)
        return True

    def set_expiry(self, username: str, expires_at: date) -> None:
        self.run(["chage", "-E", expires_at.isoformat(), username])
        logger.info("Set account expiration", username=username, expires_at=expires_at.isoformat())

    def inspect(self, username: str) -> IdentityInfo:
        entry = self._lookup(username)
        if entry is None:
            return IdentityInfo(username=username, exists=False)
        credential_dir = Path(entry.pw_dir) / CREDENTIAL_DIR_NAME
        return IdentityInfo(
            username=username,
            exists=True,
            home_dir=entry.pw_dir,
            credential_dir_exists=credential_dir.is_dir(),
            authorized_keys_configured=(credential_dir / AUTHORIZED_KEYS_NAME).is_file(),
            private_key_available=(credential_dir / PRIVATE_KEY_NAME).is_file(),
        )
