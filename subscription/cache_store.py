"""
Snapshot Cache - single-slot local store for the last good snapshot

Holds one record, the JSON-serialised subscriptionData of the last
successful reconciliation. Only the ReconciliationEngine writes or clears
it. When an encryption key is configured the record is encrypted with
Fernet (AES-128-CBC + HMAC-SHA256) and prefixed with "v2:".
"""

import os
import json
import stat
import base64
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from subscription.exceptions import IntegrityError
from subscription.models import SubscriptionSnapshot
from utils.logger import logger


class SnapshotCache:
    """
    Persisted copy of the last fetched SubscriptionSnapshot.

    Read failures (missing file, unreadable, tampered or corrupt content)
    all load as "no cache"; the cache is a fallback and never a reason to
    fail a refresh.
    """

    ENCRYPTED_PREFIX = "v2:"

    def __init__(self, path: Path, encryption_key: Optional[str] = None):
        """
        Args:
            path: Location of the cache file
            encryption_key: Optional Fernet key (urlsafe base64, 32 bytes)
        """
        self.path = Path(path)
        self._fernet = Fernet(encryption_key.encode()) if encryption_key else None

    @property
    def is_encrypted(self) -> bool:
        return self._fernet is not None

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[SubscriptionSnapshot]:
        """Load the cached snapshot, or None when there is no usable record"""
        if not self.path.exists():
            return None

        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(self._decode(raw))
            return SubscriptionSnapshot.from_dict(data)
        except (OSError, ValueError, InvalidToken, IntegrityError) as e:
            logger.warning(f"Ignoring unusable subscription cache at {self.path}: {e}")
            return None

    def save(self, snapshot: SubscriptionSnapshot) -> bool:
        """
        Persist the snapshot, replacing any previous record.

        Returns:
            True if the record was written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = self._encode(json.dumps(snapshot.to_dict()))

            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            self._set_secure_file_permissions(tmp_path)
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Could not save subscription cache: {e}")
            return False

    def clear(self) -> None:
        """Delete the cached record"""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not delete subscription cache: {e}")

    def _encode(self, text: str) -> str:
        if not self._fernet:
            return text
        token = self._fernet.encrypt(text.encode("utf-8"))
        return self.ENCRYPTED_PREFIX + base64.b64encode(token).decode()

    def _decode(self, raw: str) -> str:
        if raw.startswith(self.ENCRYPTED_PREFIX):
            if not self._fernet:
                raise ValueError("cache is encrypted but no encryption key is configured")
            token = base64.b64decode(raw[len(self.ENCRYPTED_PREFIX):])
            return self._fernet.decrypt(token).decode("utf-8")

        if self._fernet:
            # Plain records written before a key was configured are not trusted
            raise ValueError("cache is not encrypted but an encryption key is configured")
        return raw

    def _set_secure_file_permissions(self, file_path: Path) -> None:
        """Owner read/write only on POSIX systems"""
        if os.name == 'nt':
            return
        try:
            os.chmod(file_path, stat.S_IRUSR | stat.S_IWUSR)  # 600
        except OSError as e:
            logger.warning(f"Could not set secure file permissions: {e}")
