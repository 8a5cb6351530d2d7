"""Resume checkpoint persistence."""

import os
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from cvesync.models.sync import ResumeState


class ResumeStateStore:
    """Stores the resume checkpoint as a single JSON document.

    Writes replace the whole file atomically. A missing or unreadable file
    means there is nothing to resume.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> ResumeState | None:
        """Read the checkpoint, or None if there is none usable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read resume state {self.path}: {e}")
            return None

        try:
            return ResumeState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt resume state {self.path}: {e.error_count()} errors")
            return None

    def save(self, state: ResumeState) -> bool:
        """Write the checkpoint.

        Failures are logged, never raised.

        Returns:
            True if the file was written.
        """
        payload = state.model_dump_json(by_alias=True, indent=2)
        directory = self.path.parent if str(self.path.parent) else Path(".")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error(f"Failed to save resume state to {self.path}: {e}")
            return False

        logger.debug(f"Saved resume state ({len(state.processed_cve_ids)} processed)")
        return True

    def clear(self) -> None:
        """Delete the checkpoint if present."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete resume state {self.path}: {e}")

    def exists(self) -> bool:
        return self.path.exists()
