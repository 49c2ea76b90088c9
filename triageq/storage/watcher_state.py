"""
Encrypted persistence for mailbox watchers.

One row per watcher id holds a Fernet-encrypted JSON document
{config, stats, matches, activity}. Saves are upserts keyed by id, so writes
for different watchers never touch each other's rows.

Key resolution: explicit key, TRIAGEQ_ENCRYPTION_KEY, then a key file in the
data directory that is generated on first use.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from triageq.config import DATA_DIR
from triageq.errors import WatcherStateEncryptionError
from triageq.infrastructure.database import init_database
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter
from triageq.storage import BaseRepository
from triageq.storage.models import PersistedWatcherState, utcnow

logger = get_logger(__name__)


def load_or_create_key(data_dir: Path | None = None) -> bytes:
    """
    Resolve the state encryption key.

    Side Effects:
        - Creates <data_dir>/state.key (mode 0600) when no key exists yet
    """
    env_key = os.getenv("TRIAGEQ_ENCRYPTION_KEY")
    if env_key:
        return env_key.encode()

    key_path = Path(data_dir or os.getenv("TRIAGEQ_DATA_DIR", str(DATA_DIR))) / "state.key"
    if key_path.exists():
        return key_path.read_bytes().strip()

    key_path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    key_path.write_bytes(key)
    key_path.chmod(0o600)
    logger.info("Generated new state encryption key at %s", key_path)
    return key


class WatcherStateRepository(BaseRepository):
    """Per-watcher encrypted state rows."""

    def __init__(self, db_path: Path | None = None, encryption_key: bytes | None = None) -> None:
        super().__init__("mail_watchers", db_path)
        self.db_path = init_database(db_path)
        try:
            self._cipher = Fernet(encryption_key or load_or_create_key())
        except (ValueError, TypeError) as e:
            raise WatcherStateEncryptionError(f"Invalid encryption key format: {e}") from e

    def _encrypt(self, state: PersistedWatcherState) -> bytes:
        payload = json.dumps(state.model_dump(mode="json")).encode("utf-8")
        return self._cipher.encrypt(payload)

    def _decrypt(self, blob: bytes) -> PersistedWatcherState:
        try:
            raw = self._cipher.decrypt(bytes(blob))
        except InvalidToken as e:
            raise WatcherStateEncryptionError("Failed to decrypt watcher state") from e
        return PersistedWatcherState.model_validate(json.loads(raw))

    def save(self, state: PersistedWatcherState) -> None:
        """
        Upsert one watcher's state.

        Side Effects:
            - Writes the encrypted row for state.config.id
        """
        self.execute(
            f"INSERT INTO {self.table_name} (watcher_id, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(watcher_id) DO UPDATE SET payload = excluded.payload, "
            "updated_at = excluded.updated_at",
            (state.config.id, self._encrypt(state), utcnow().isoformat()),
        )
        counter("watcher_state.saved")

    def get(self, watcher_id: str) -> PersistedWatcherState | None:
        row = self.query_one(
            f"SELECT payload FROM {self.table_name} WHERE watcher_id = ?", (watcher_id,)
        )
        if row is None:
            return None
        return self._decrypt(row["payload"])

    def load_all(self) -> list[PersistedWatcherState]:
        """Every decryptable watcher, oldest first. Unreadable rows are logged and skipped."""
        states: list[PersistedWatcherState] = []
        for row in self.query_all(
            f"SELECT watcher_id, payload FROM {self.table_name} ORDER BY rowid"
        ):
            try:
                states.append(self._decrypt(row["payload"]))
            except (WatcherStateEncryptionError, ValidationError, ValueError) as e:
                counter("watcher_state.load_failed")
                logger.error("Skipping unreadable watcher state %s: %s", row["watcher_id"], e)
        return states

    def delete(self, watcher_id: str) -> bool:
        """
        Remove a watcher's row.

        Side Effects:
            - Deletes from mail_watchers
        """
        return (
            self.execute(f"DELETE FROM {self.table_name} WHERE watcher_id = ?", (watcher_id,)) > 0
        )
