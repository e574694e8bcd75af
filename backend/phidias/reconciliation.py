from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import DatabaseError, transaction

from discipline.models import Infraction

from .mapping import InfractionData

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    def __init__(self, hash: str, message: str):
        super().__init__(f"{hash}: {message}")
        self.hash = hash


@dataclass(frozen=True)
class ReconcileOutcome:
    created: bool = False
    updated: bool = False


def _is_newer(incoming, stored) -> bool:
    if incoming is None:
        return False
    if stored is None:
        return True
    return incoming > stored


def reconcile(data: InfractionData) -> ReconcileOutcome:
    """Crea o actualiza la falta identificada por `data.hash`.

    Solo actualiza si la última edición en origen es estrictamente más
    reciente que la guardada. El estado local (atendida) nunca se toca.
    """

    try:
        with transaction.atomic():
            infraction = Infraction.objects.select_for_update().filter(hash=data.hash).first()
            if infraction is None:
                Infraction.objects.create(hash=data.hash, source=Infraction.Source.PHIDIAS, **data.model_fields())
                return ReconcileOutcome(created=True)

            if not _is_newer(data.external_edited_at, infraction.external_edited_at):
                return ReconcileOutcome()

            fields = data.model_fields()
            for name, value in fields.items():
                setattr(infraction, name, value)
            infraction.save(update_fields=[*fields.keys(), "updated_at"])
            return ReconcileOutcome(updated=True)
    except DatabaseError as exc:
        logger.exception("phidias_reconcile.failed", extra={"hash": data.hash})
        raise ReconciliationError(data.hash, str(exc)) from exc
