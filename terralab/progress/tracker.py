"""Progress tracker - persists a user's exercise progress as JSON."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from terralab.exceptions import PersistenceCorruptionError, PersistenceWriteError
from terralab.models import ExerciseStatus, ProgressRecord, ProgressStore

logger = logging.getLogger(__name__)


@dataclass
class LoadOutcome:
    """What ``ProgressTracker.load`` found on disk."""

    store: ProgressStore
    warning: Optional[str] = None
    quarantined_to: Optional[Path] = None

    @property
    def recovered(self) -> bool:
        """True when an unreadable file was replaced by an empty store."""
        return self.warning is not None


def _parse_timestamp(value: Any, field_name: str, exercise_id: str) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field_name} of '{exercise_id}' is not a string")
    # fromisoformat only accepts a trailing Z from Python 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def _parse_record(exercise_id: str, data: Any) -> ProgressRecord:
    if not isinstance(data, dict):
        raise ValueError(f"record '{exercise_id}' is not an object")
    status = ExerciseStatus.from_string(str(data.get("status", ExerciseStatus.NOT_STARTED.value)))
    record = ProgressRecord(
        exercise_id=exercise_id,
        status=status,
        started_at=_parse_timestamp(data.get("startedAt"), "startedAt", exercise_id),
        completed_at=_parse_timestamp(data.get("completedAt"), "completedAt", exercise_id),
    )
    if record.is_completed and record.completed_at is None:
        raise ValueError(f"record '{exercise_id}' is Completed without completedAt")
    return record


def parse_store(text: str, source: Optional[str] = None) -> ProgressStore:
    """
    Parse the progress file JSON.

    Unknown fields are ignored; ``totalScore`` is ignored because it is
    derived from the records.

    Raises:
        PersistenceCorruptionError: If the text is not a valid progress document.
    """
    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("top level is not an object")

        user_name = data.get("userName", "")
        if not isinstance(user_name, str):
            raise ValueError("userName is not a string")

        raw_records = data.get("records", {}) or {}
        if not isinstance(raw_records, dict):
            raise ValueError("records is not an object")

        records = {
            str(exercise_id): _parse_record(str(exercise_id), raw)
            for exercise_id, raw in raw_records.items()
        }
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        raise PersistenceCorruptionError(
            f"Progress file is unreadable: {e}",
            file_path=source,
            cause=e,
        )

    store = ProgressStore(user_name=user_name, records=records)
    cached = data.get("totalScore")
    if cached is not None and cached != store.total_score:
        logger.debug(f"Ignoring stale totalScore {cached!r}; derived score is {store.total_score}")
    return store


class ProgressTracker:
    """Load and save one user's ProgressStore.

    Single writer, single process: concurrent runs against the same file
    are not supported. Saves are atomic (temporary file + ``os.replace``) so
    a reader sees either the old or the new document, never a partial one.
    """

    def __init__(self, progress_file: Path):
        """
        Initialize the progress tracker.

        Args:
            progress_file: Location of the JSON progress file.
        """
        self.progress_file = Path(progress_file)
        self._write_blocked: Optional[str] = None

    def load(self) -> LoadOutcome:
        """
        Load progress from storage.

        A missing file yields an empty store. An unreadable file is moved
        aside (never deleted) and an empty store is returned with a warning.
        """
        if not self.progress_file.exists():
            logger.info(f"No progress file at {self.progress_file}; starting fresh")
            return LoadOutcome(store=ProgressStore())

        try:
            text = self.progress_file.read_text(encoding="utf-8")
            return LoadOutcome(store=parse_store(text, str(self.progress_file)))
        except UnicodeDecodeError as e:
            error = PersistenceCorruptionError(
                f"Progress file is not UTF-8 text: {e}",
                file_path=str(self.progress_file),
                cause=e,
            )
        except PersistenceCorruptionError as e:
            error = e
        except OSError as e:
            self._write_blocked = f"the existing progress file could not be read ({e})"
            warning = (
                f"Could not read progress file {self.progress_file}: {e}. "
                "Continuing with empty progress; it will not be saved until the file is readable."
            )
            logger.warning(warning)
            return LoadOutcome(store=ProgressStore(), warning=warning)

        return self._recover(error)

    def _recover(self, error: PersistenceCorruptionError) -> LoadOutcome:
        """Quarantine the unreadable file and start from an empty store."""
        quarantined = self._quarantine()
        if quarantined is not None:
            warning = (
                f"{error.message}. The file was moved to {quarantined} and progress starts fresh. "
                "Restore it by hand if it can be repaired."
            )
        else:
            self._write_blocked = "the unreadable progress file could not be preserved"
            warning = (
                f"{error.message}. The file could not be moved aside, so progress will not be "
                f"saved over it. Move {self.progress_file} away and restart to save progress."
            )
        logger.warning(warning)
        return LoadOutcome(store=ProgressStore(), warning=warning, quarantined_to=quarantined)

    def _quarantine(self) -> Optional[Path]:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.progress_file.with_name(f"{self.progress_file.name}.corrupt-{stamp}")
        try:
            self.progress_file.rename(target)
            return target
        except OSError as e:
            logger.warning(f"Could not rename {self.progress_file}: {e}; trying to copy it")
        try:
            shutil.copy2(self.progress_file, target)
        except OSError as e:
            logger.error(f"Could not copy {self.progress_file}: {e}")
            return None
        self._write_blocked = None
        return target

    def save(self, store: ProgressStore) -> None:
        """
        Persist progress to storage atomically.

        Args:
            store: The ProgressStore to save.

        Raises:
            PersistenceWriteError: If the file cannot be written. The file on
                disk is left as it was.
        """
        if self._write_blocked:
            raise PersistenceWriteError(
                f"Refusing to save progress: {self._write_blocked}.",
                file_path=str(self.progress_file),
            )

        payload = json.dumps(store.to_dict(), indent=2) + "\n"
        directory = self.progress_file.parent
        tmp_name: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.progress_file.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.progress_file)
            tmp_name = None
        except OSError as e:
            logger.error(f"Saving progress to {self.progress_file} failed: {e}")
            raise PersistenceWriteError(
                f"Could not save progress to {self.progress_file}: {e}",
                file_path=str(self.progress_file),
                cause=e,
            )
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_name}")

        logger.debug(f"Saved progress to {self.progress_file}")

    def reset(self, store: ProgressStore) -> None:
        """
        Clear every record (keeping the user name) and save.

        The in-memory store is only cleared once the save succeeded.
        """
        cleared = ProgressStore(user_name=store.user_name)
        self.save(cleared)
        store.clear()
