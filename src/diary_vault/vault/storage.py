# Vault - Record Storage
#
# File-backed home of the single persisted record.
# Writes replace the whole file atomically (temp file + os.replace),
# so a reader never sees a half-written record.

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from .codec import encode_text
from .exceptions import PersistFailed, StorageReadFailed
from .store_format import PersistedRecord

logger = logging.getLogger(__name__)


class RecordStorage:
    """Reads and atomically replaces the vault record file.

    Args:
        path: Location of the record file. Parent directories are created
              on first write.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        """True when a non-empty record file is present (0-byte files are not vaults)."""
        try:
            return self.path.is_file() and self.path.stat().st_size > 0
        except OSError as e:
            raise StorageReadFailed(f"Cannot access vault record: {e}") from e

    def read_raw(self) -> Optional[bytes]:
        """
        Return the stored bytes, or None if no record exists.

        Raises:
            StorageReadFailed: The file is present but unreadable
        """
        if not self.exists():
            return None
        try:
            return self.path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read vault record from {self.path}: {e}")
            raise StorageReadFailed(f"Failed to read vault record: {e}") from e

    def read(self) -> Optional[PersistedRecord]:
        """
        Load and validate the stored record.

        Returns:
            The record, or None if no record exists

        Raises:
            MalformedRecordError: File content is not a valid record
            StorageReadFailed: The file is present but unreadable
        """
        raw = self.read_raw()
        if raw is None:
            return None
        return PersistedRecord.from_json(raw)

    def write(self, record: PersistedRecord) -> None:
        """
        Replace the stored record with ``record``.

        Raises:
            PersistFailed: The file could not be written
        """
        data = encode_text(record.to_json())
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # Owner read/write only
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logger.error(f"Failed to write vault record to {self.path}: {e}")
            raise PersistFailed(f"Failed to write vault record: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
