"""JSON-backed store for current appointment counts and availability history."""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import DEFAULT_DATA_FILE, MAX_HISTORY
from .models import UNKNOWN, Observation, Target, Transition

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The state file could not be read or written."""


class AppointmentStore:
    """
    Latest count per target plus a capped, newest-first history of
    "became available" events.

    Every mutation rewrites the whole state file atomically. A failed write is
    logged and the in-memory state stays authoritative.
    """

    def __init__(self, data_file: Path | str = DEFAULT_DATA_FILE, max_history: int = MAX_HISTORY):
        self.data_file = Path(data_file)
        self.max_history = max_history
        self.current: dict[Target, Optional[Observation]] = {t: None for t in Target}
        self.history: dict[Target, list[Observation]] = {t: [] for t in Target}
        self.load()

    def load(self) -> None:
        """Load state from disk; on any failure start empty and say so."""
        if not self.data_file.exists():
            logger.info("No existing appointment data found")
            return
        try:
            current, history = self._read()
        except StorageError as e:
            logger.error(f"{e}. Starting with empty appointment state")
            return
        self.current = current
        self.history = history
        logger.info(f"Appointment data loaded from {self.data_file}")

    def _read(self) -> tuple[dict, dict]:
        try:
            data = json.loads(self.data_file.read_text(encoding="utf-8"))
            current = {t: None for t in Target}
            history = {t: [] for t in Target}
            for target in Target:
                raw = (data.get("current") or {}).get(target.value)
                current[target] = Observation.from_dict(raw) if raw else None
                items = (data.get("history") or {}).get(target.value) or []
                history[target] = [Observation.from_dict(item) for item in items][: self.max_history]
            return current, history
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StorageError(f"Error loading appointment data from {self.data_file}: {e}") from e

    def to_dict(self) -> dict:
        return {
            "current": {
                t.value: obs.to_dict() if obs else None for t, obs in self.current.items()
            },
            "history": {
                t.value: [obs.to_dict() for obs in items] for t, items in self.history.items()
            },
        }

    def save(self) -> bool:
        """Write state via temp file + rename. Returns False on failure."""
        try:
            self._write(self.to_dict())
        except StorageError as e:
            logger.error(str(e))
            return False
        logger.debug("Appointment data saved to storage")
        return True

    def _write(self, data: dict) -> None:
        tmp_path = None
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.data_file.parent, prefix=f".{self.data_file.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.data_file)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"Error saving appointment data to {self.data_file}: {e}") from e

    def update(self, target: Target | str, count: int) -> Transition:
        """
        Record a count for target and report how it compares to the last one.

        UNKNOWN (or any negative count) leaves the state untouched.
        """
        target = Target.parse(target)
        now = datetime.now()
        previous = self.current[target]
        previous_count = previous.count if previous else 0

        if count is None or count < 0:
            logger.debug(f"Ignoring unknown count for {target.value}")
            return Transition(
                target=target,
                count=UNKNOWN,
                previous_count=previous_count,
                changed=False,
                became_available=False,
                timestamp=now,
            )

        changed = count != previous_count
        became_available = previous_count == 0 and count > 0
        observation = Observation(target=target, count=count, timestamp=now, label=target.label)

        if changed:
            logger.info(f"Appointment state changed for {target.value}: {previous_count} -> {count}")

        if became_available:
            self.history[target].insert(0, observation)
            del self.history[target][self.max_history:]

        self.current[target] = observation
        self.save()

        return Transition(
            target=target,
            count=count,
            previous_count=previous_count,
            changed=changed,
            became_available=became_available,
            timestamp=now,
        )

    def get_current(self, target: Target | str | None = None):
        """Observation for one target, or a dict of all targets."""
        if target is not None:
            return self.current[Target.parse(target)]
        return dict(self.current)

    def get_history(self, target: Target | str | None = None, limit: Optional[int] = None) -> list[Observation]:
        """History newest first; without a target both are merged by time."""
        if target is not None:
            items = list(self.history[Target.parse(target)])
        else:
            items = sorted(
                (obs for entries in self.history.values() for obs in entries),
                key=lambda obs: obs.timestamp,
                reverse=True,
            )
        return items if limit is None else items[:max(limit, 0)]

    def clear_history(self, target: Target | str | None = None) -> None:
        """The only way history entries are ever deleted."""
        if target is not None:
            self.history[Target.parse(target)] = []
        else:
            self.history = {t: [] for t in Target}
        self.save()
        suffix = f" for {Target.parse(target).value}" if target is not None else ""
        logger.info(f"Appointment history cleared{suffix}")
