from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SyncPhase(str, enum.Enum):
    LOADING_CONFIG = "loading_config"
    LOADING_STUDENTS = "loading_students"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class CurrentStudent:
    id: int
    name: str


@dataclass(frozen=True)
class SyncProgress:
    phase: SyncPhase
    processed: float
    total: int
    message: str
    current_level: str | None = None
    current_student: CurrentStudent | None = None

    def as_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "processed": self.processed,
            "total": self.total,
            "message": self.message,
            "current_level": self.current_level,
            "current_student": (
                {"id": self.current_student.id, "name": self.current_student.name}
                if self.current_student
                else None
            ),
        }


ProgressCallback = Callable[[SyncProgress], None]


def emit(callback: Optional[ProgressCallback], event: SyncProgress) -> None:
    """Entrega el evento al observador; sus errores se registran y se ignoran."""
    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        logger.exception("phidias_sync.progress_callback_failed", extra={"phase": event.phase.value})
