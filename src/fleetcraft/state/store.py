"""On-disk persistence for state snapshots.

Writes are atomic: the document goes to a temporary file in the target
directory, is fsynced, then renamed over the old file. The first write of a
store session keeps a ``.backup`` copy of the previous file.
"""
import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Union

from ..errors import StateCorruptionError
from .snapshot import StateSnapshot, migrate_document

logger = logging.getLogger(__name__)

STATE_FILE_MODE = 0o600


class StateStore:
    """Loads and saves one state file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._backed_up = False

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".backup")

    def load(self) -> StateSnapshot:
        """Load the snapshot. A missing file is an empty snapshot.

        Raises:
            StateCorruptionError: content cannot be decoded or has an
                unknown version
        """
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting empty")
            return StateSnapshot(lineage=str(uuid.uuid4()))

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateCorruptionError(str(self.path), f"cannot decode: {e}")
        if not isinstance(data, dict):
            raise StateCorruptionError(str(self.path), "top level is not an object")

        version = data.get("version", 0)
        try:
            document = migrate_document(data)
            snapshot = StateSnapshot.from_dict(document)
        except (ValueError, KeyError, TypeError) as e:
            raise StateCorruptionError(str(self.path), str(e))

        if version != document["version"]:
            logger.info(f"Migrated state {self.path} from version {version} to {document['version']}")
        if not snapshot.lineage:
            snapshot = replace(snapshot, lineage=str(uuid.uuid4()))
        logger.debug(f"Loaded state serial={snapshot.serial} with {len(snapshot)} resources")
        return snapshot

    def save(self, snapshot: StateSnapshot) -> StateSnapshot:
        """Atomically write the snapshot with its serial bumped.

        Returns:
            The snapshot as written
        """
        written = replace(
            snapshot,
            serial=snapshot.serial + 1,
            lineage=snapshot.lineage or str(uuid.uuid4()),
        )
        payload = json.dumps(written.to_dict(), indent=2) + "\n"

        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self._backed_up and self.path.exists():
            shutil.copy2(self.path, self.backup_path)
            os.chmod(self.backup_path, STATE_FILE_MODE)
            self._backed_up = True

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, STATE_FILE_MODE)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug(f"Saved state serial={written.serial} to {self.path}")
        return written
