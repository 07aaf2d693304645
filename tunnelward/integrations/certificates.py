"""Read-only certificate expiry checks for the transport certificate"""

import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509

_CERT_BLOCK = re.compile(
    rb"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----",
    re.DOTALL,
)


def load_certificate(path: Path) -> Optional[x509.Certificate]:
    """First certificate in a PEM bundle (stunnel.pem also carries the key); None if absent"""
    path = Path(path)
    if not path.is_file():
        return None
    match = _CERT_BLOCK.search(path.read_bytes())
    if match is None:
        return None
    return x509.load_pem_x509_certificate(match.group(0))


def certificate_not_after(cert: x509.Certificate) -> datetime:
    if hasattr(cert, "not_valid_after_utc"):
        return cert.not_valid_after_utc
    return cert.not_valid_after.replace(tzinfo=timezone.utc)


def expires_within(cert: x509.Certificate, days: int, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return certificate_not_after(cert) <= now + timedelta(days=days)
