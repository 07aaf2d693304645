"""
Record store: one account per line in users.db.

Line format: username:created_at:expires_at:status[:auth_mode]
created_at is "YYYY-MM-DD HH:MM:SS" and therefore contains two colons of its
own; parsing anchors on that fixed shape. Blank and '#' lines are skipped on
read and preserved on rewrite. No locking here: callers serialize access.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from ..models.account import (
    CREATED_AT_FORMAT,
    EXPIRES_AT_FORMAT,
    AccountRecord,
    AuthMode,
)
from ..utils.exceptions import DuplicateKey, NotFound, StoreIOError
from ..utils.logger import get_logger

logger = get_logger(__name__)


def format_record(record: AccountRecord) -> str:
    fields = [
        record.username,
        record.created_at.strftime(CREATED_AT_FORMAT),
        record.expires_at.strftime(EXPIRES_AT_FORMAT),
        record.stored_status,
    ]
    if record.auth_mode is not None:
        fields.append(record.auth_mode.value)
    return ":".join(fields)


def parse_record(line: str) -> AccountRecord:
    """Parse one data line; raises ValueError on anything malformed"""
    parts = line.rstrip("\n").split(":")
    if len(parts) not in (6, 7):
        raise ValueError(f"expected 4 or 5 fields, got {len(parts)} colon-separated parts")
    username = parts[0]
    created_at = datetime.strptime(":".join(parts[1:4]), CREATED_AT_FORMAT)
    expires_at = datetime.strptime(parts[4], EXPIRES_AT_FORMAT).date()
    auth_mode = AuthMode(parts[6]) if len(parts) == 7 else None
    return AccountRecord(
        username=username,
        created_at=created_at,
        expires_at=expires_at,
        stored_status=parts[5],
        auth_mode=auth_mode,
    )


def _is_data_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


class RecordStore:
    """Append/delete log of account records"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return f.readlines()
        except OSError as e:
            raise StoreIOError(f"Failed to read {self.path}: {e}", identifier=str(self.path))

    def scan(self) -> Iterator[AccountRecord]:
        """Yield every record in file order; re-reads the file on each call"""
        if not self.path.exists():
            return
        try:
            f = open(self.path, "r", encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Failed to read {self.path}: {e}", identifier=str(self.path))
        with f:
            for lineno, line in enumerate(f, start=1):
                if not _is_data_line(line):
                    continue
                try:
                    yield parse_record(line)
                except ValueError as e:
                    raise StoreIOError(
                        f"Malformed record at {self.path}:{lineno}: {e}",
                        identifier=f"{self.path}:{lineno}",
                    )

    def get(self, username: str) -> Optional[AccountRecord]:
        return next((r for r in self.scan() if r.username == username), None)

    def contains(self, username: str) -> bool:
        return self.get(username) is not None

    def count(self) -> int:
        return sum(1 for _ in self.scan())

    def insert(self, record: AccountRecord) -> None:
        if self.contains(record.username):
            raise DuplicateKey(record.username)

        line = format_record(record) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            needs_newline = self.path.exists() and self.path.stat().st_size > 0 and not self._ends_with_newline()
            with open(self.path, "a", encoding="utf-8") as f:
                if needs_newline:
                    f.write("\n")
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreIOError(f"Failed to write {self.path}: {e}", identifier=str(self.path))

        logger.info(
            "Added user to database",
            username=record.username,
            expires_at=record.expires_at.isoformat(),
        )

    def remove(self, username: str) -> int:
        """Remove every line for username; returns how many were dropped"""
        lines = self._read_lines()
        kept = []
        removed = 0
        for line in lines:
            if _is_data_line(line) and line.split(":", 1)[0] == username:
                removed += 1
                continue
            kept.append(line)

        if removed == 0:
            raise NotFound(username)

        self._atomic_write("".join(kept))
        logger.info("Removed user from database", username=username, lines=removed)
        return removed

    def _ends_with_newline(self) -> bool:
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"

    def _atomic_write(self, content: str) -> None:
        """Replace the store file atomically"""
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", dir=self.path.parent, delete=False, encoding="utf-8", prefix=".users."
            ) as tf:
                temp_path = Path(tf.name)
                tf.write(content)
                tf.flush()
                os.fsync(tf.fileno())
            if self.path.exists():
                os.chmod(temp_path, self.path.stat().st_mode & 0o777)
            os.replace(temp_path, self.path)
        except OSError as e:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()
            raise StoreIOError(f"Failed to save {self.path}: {e}", identifier=str(self.path))
