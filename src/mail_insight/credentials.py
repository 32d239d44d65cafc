"""Durable per-provider credential store with refresh-before-use."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from mail_insight.exceptions import AuthRequiredError, PersistenceError
from mail_insight.models import CredentialRecord

if TYPE_CHECKING:
    from mail_insight.providers.base import EmailProvider

logger = logging.getLogger(__name__)

REFRESH_MARGIN_SECONDS = 5 * 60


class TokenStore:
    """Owns the provider -> :class:`CredentialRecord` mapping.

    Records are immutable and swapped under a lock, so readers see either a
    complete record or none. Every write is flushed to one JSON file per
    provider (written to a temp file, then renamed) and all files are
    reloaded on construction.

    Args:
        credentials_dir: Directory holding ``token_<provider>.json`` files.
    """

    def __init__(self, credentials_dir: Path):
        self._dir = Path(credentials_dir)
        self._lock = threading.RLock()
        self._refresh_locks: dict[str, threading.Lock] = {}
        self._records: dict[str, CredentialRecord] = {}
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create credentials dir {self._dir}: {e}") from e
        self._load()

    def _token_path(self, provider: str) -> Path:
        return self._dir / f"token_{provider}.json"

    def _load(self) -> None:
        for path in sorted(self._dir.glob("token_*.json")):
            try:
                record = CredentialRecord.from_dict(json.loads(path.read_text()))
            except (json.JSONDecodeError, KeyError, ValueError, OSError) as e:
                logger.warning(f"Skipping unreadable credential file {path.name}: {e}")
                continue
            self._records[record.provider] = record
        if self._records:
            logger.info(f"Loaded credentials for {sorted(self._records)}")

    def _write(self, record: CredentialRecord) -> None:
        target = self._token_path(record.provider)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=".token_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record.to_dict(), f)
            os.replace(tmp, target)
        except OSError as e:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise PersistenceError(f"Failed to persist credential for {record.provider}: {e}") from e

    # ---- Basic operations ----

    def store(
        self,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> CredentialRecord:
        """Unconditionally replace the record for ``provider``."""
        record = CredentialRecord(
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
        with self._lock:
            self._write(record)
            self._records[provider] = record
        logger.info(f"Token stored for {provider}")
        return record

    def get(self, provider: str) -> CredentialRecord | None:
        with self._lock:
            record = self._records.get(provider)
        if record is None:
            logger.warning(f"Token not found for {provider}")
        return record

    def remove(self, provider: str) -> bool:
        """Delete the record and its file. Returns True if one existed."""
        with self._lock:
            existed = self._records.pop(provider, None) is not None
            path = self._token_path(provider)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise PersistenceError(f"Failed to remove credential for {provider}: {e}") from e
        if existed:
            logger.info(f"Tokens removed for {provider}")
        return existed

    def list_all(self) -> dict[str, CredentialRecord]:
        """Snapshot of every record. Diagnostic use only."""
        with self._lock:
            return dict(self._records)

    # ---- Lifecycle ----

    def _refresh_lock(self, provider: str) -> threading.Lock:
        with self._lock:
            return self._refresh_locks.setdefault(provider, threading.Lock())

    def ensure_fresh(self, provider: EmailProvider) -> CredentialRecord:
        """Return a credential valid for at least five more minutes.

        Refreshes through ``provider`` when the stored record is close to
        expiry. Raises :class:`AuthRequiredError` when there is no record or
        the refresh fails; a near-expired token is never handed out.
        """
        name = provider.name
        record = self.get(name)
        if record is None:
            raise AuthRequiredError(f"No token found for {name}. Please authenticate first.")
        if not record.expires_within(REFRESH_MARGIN_SECONDS):
            return record

        with self._refresh_lock(name):
            # Another caller may have refreshed while we waited.
            current = self.get(name)
            if current is None:
                raise AuthRequiredError(f"Token for {name} was revoked. Please authenticate again.")
            if current is not record and not current.expires_within(REFRESH_MARGIN_SECONDS):
                return current

            logger.info(f"Token for {name} expires at {current.expires_at.isoformat()}, refreshing")
            try:
                refreshed = provider.refresh(current)
            except Exception as e:
                logger.error(f"Token refresh for {name} raised: {e}")
                refreshed = False
            if not refreshed:
                raise AuthRequiredError(f"Token for {name} expired and could not be refreshed. Please re-authenticate.")

            updated = self.get(name)
            if updated is None or updated.expires_within(REFRESH_MARGIN_SECONDS):
                raise AuthRequiredError(f"Refresh for {name} did not yield a usable token. Please re-authenticate.")
            return updated
