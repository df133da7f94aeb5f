"""Progress reporting for an audit run.

Each scan unit (one technology in one working directory) is tracked as a
``UnitProgress`` record keyed ``<technology>:<working dir>``. Builders and the
scan client only touch the headline, a one-line "what is happening now" message.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class UnitProgress:
    technology: str
    working_directory: str
    status: str = "running"  # "running" | "completed" | "failed"
    started: float = field(default_factory=time.monotonic)
    finished: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def key(self) -> str:
        return f"{self.technology}:{self.working_directory}"

    @property
    def duration(self) -> float | None:
        if self.finished is None:
            return None
        return round(self.finished - self.started, 2)


class ProgressTracker:
    """Collects unit progress and fans updates out to listeners."""

    def __init__(self) -> None:
        self.units: list[UnitProgress] = []
        self.headline: str = ""
        self.unit_listeners: list[Callable[[UnitProgress], None]] = []
        self.headline_listeners: list[Callable[[str], None]] = []

    def set_headline_msg(self, msg: str) -> None:
        self.headline = msg
        self._emit(self.headline_listeners, msg)

    def start_unit(self, technology: str, working_directory: str) -> UnitProgress:
        unit = UnitProgress(technology=technology, working_directory=working_directory)
        self.units.append(unit)
        self._emit(self.unit_listeners, unit)
        return unit

    def finish_unit(self, unit: UnitProgress, detail: str = "") -> None:
        self._close(unit, "completed", detail=detail)

    def fail_unit(self, unit: UnitProgress, error: str) -> None:
        self._close(unit, "failed", error=error)

    def get_summary(self) -> dict[str, Any]:
        counts = Counter(u.status for u in self.units)
        return {
            "units": [
                {
                    "unit": u.key,
                    "status": u.status,
                    "duration": u.duration,
                    "detail": u.detail,
                    "error": u.error,
                }
                for u in self.units
            ],
            "completed": counts["completed"],
            "failed": counts["failed"],
            "total_duration": round(sum(u.duration or 0 for u in self.units), 2),
        }

    def _close(self, unit: UnitProgress, status: str, detail: str = "", error: str | None = None) -> None:
        unit.status = status
        unit.finished = time.monotonic()
        unit.detail = detail
        unit.error = error
        self._emit(self.unit_listeners, unit)

    @staticmethod
    def _emit(listeners: list[Callable[[Any], None]], payload: Any) -> None:
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.debug("Progress listener failed", exc_info=True)
