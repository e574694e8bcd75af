"""Cliente HTTP de la API REST de Phidias (encuestas de seguimiento).

Una sola instancia por proceso, construida con ``PhidiasClient.from_settings()``
y pasada a quien la necesite. El cliente espacia las peticiones (intervalo
mínimo adaptativo), reintenta ante 429 y errores de red con backoff
exponencial y procesa estudiantes en lotes pequeños.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

POLLS_PATH = "/rest/1/polls"


class PhidiasAPIError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        rate_limited: bool = False,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.rate_limited = rate_limited
        self.retry_after = retry_after


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PollItem:
    name: str
    value: Any
    description: str = ""

    @classmethod
    def from_payload(cls, payload: dict) -> "PollItem":
        return cls(
            name=str(payload.get("itemName") or ""),
            value=payload.get("itemvalue"),
            description=str(payload.get("itemDescription") or ""),
        )


@dataclass(frozen=True)
class ExternalRecord:
    id: int
    person_id: int | None = None
    author_first_name: str = ""
    author_last_name: str = ""
    timestamp: int | None = None
    last_edit: int | None = None
    items: tuple[PollItem, ...] = ()

    @property
    def author(self) -> str:
        return f"{self.author_first_name} {self.author_last_name}".strip()

    @classmethod
    def from_payload(cls, payload: dict) -> "ExternalRecord":
        record_id = _to_int(payload.get("id"))
        if record_id is None:
            raise PhidiasAPIError(f"Registro sin id válido: {payload.get('id')!r}")
        return cls(
            id=record_id,
            person_id=_to_int(payload.get("person")),
            author_first_name=str(payload.get("authorFirstname") or "").strip(),
            author_last_name=str(payload.get("authorLastname") or "").strip(),
            timestamp=_to_int(payload.get("timestamp")),
            last_edit=_to_int(payload.get("last_edit")),
            items=tuple(PollItem.from_payload(item) for item in payload.get("items") or [] if isinstance(item, dict)),
        )


@dataclass(frozen=True)
class PollResponse:
    id: int | None
    name: str = ""
    year_name: str = ""
    records: tuple[ExternalRecord, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "PollResponse":
        if not isinstance(payload, dict):
            raise PhidiasAPIError("Respuesta inesperada de Phidias: se esperaba un objeto JSON.")
        year = payload.get("year") if isinstance(payload.get("year"), dict) else {}
        return cls(
            id=_to_int(payload.get("id")),
            name=str(payload.get("name") or ""),
            year_name=str(year.get("name") or ""),
            records=tuple(
                ExternalRecord.from_payload(record)
                for record in payload.get("records") or []
                if isinstance(record, dict)
            ),
        )


@dataclass(frozen=True)
class PollResult:
    success: bool
    data: PollResponse | None = None
    error: str | None = None
    rate_limited: bool = False
    retry_after: int | None = None


@dataclass(frozen=True)
class StudentRef:
    id: int
    external_id: str
    name: str = ""


@dataclass(frozen=True)
class BatchItemResult:
    student_id: int
    poll_id: int
    result: PollResult


@dataclass
class PhidiasClient:
    base_url: str
    api_token: str
    timeout: float = 30
    min_interval: float = 1.0
    max_interval: float = 5.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    batch_size: int = 5
    session: requests.Session = field(default_factory=requests.Session)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self):
        self.base_url = (self.base_url or "").rstrip("/")
        self.batch_size = max(1, int(self.batch_size))
        self._interval = self.min_interval
        self._last_request_at: float | None = None

    @classmethod
    def from_settings(cls, **overrides) -> "PhidiasClient":
        options = {
            "base_url": getattr(settings, "PHIDIAS_BASE_URL", ""),
            "api_token": getattr(settings, "PHIDIAS_API_TOKEN", ""),
            "timeout": getattr(settings, "PHIDIAS_TIMEOUT_SECONDS", 30),
            "min_interval": getattr(settings, "PHIDIAS_MIN_REQUEST_INTERVAL", 1.0),
            "max_interval": getattr(settings, "PHIDIAS_MAX_REQUEST_INTERVAL", 5.0),
            "max_retries": getattr(settings, "PHIDIAS_MAX_RETRIES", 3),
            "batch_size": getattr(settings, "PHIDIAS_BATCH_SIZE", 5),
        }
        options.update(overrides)
        return cls(**options)

    @property
    def current_interval(self) -> float:
        return self._interval

    def validate_configuration(self) -> list[str]:
        errors: list[str] = []
        if not self.base_url:
            errors.append("PHIDIAS_BASE_URL no está configurado")
        if not (self.api_token or "").strip():
            errors.append("PHIDIAS_API_TOKEN no está configurado")
        return errors

    def _wait_for_slot(self) -> None:
        if self._last_request_at is not None:
            elapsed = self.clock() - self._last_request_at
            if elapsed < self._interval:
                self.sleep(self._interval - elapsed)
        self._last_request_at = self.clock()

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)

    def _get(self, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}{POLLS_PATH}"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }

        attempt = 0
        while True:
            self._wait_for_slot()
            try:
                response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt < self.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "phidias_client.network_retry",
                        extra={"params": params, "attempt": attempt + 1, "delay": delay, "error": str(exc)},
                    )
                    self.sleep(delay)
                    attempt += 1
                    continue
                raise PhidiasAPIError(f"Error de red: {exc}") from exc
            except requests.RequestException as exc:
                raise PhidiasAPIError(f"Error de red: {exc}") from exc

            if response.status_code == 429:
                retry_after = _to_int(response.headers.get("Retry-After")) or 60
                if attempt < self.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "phidias_client.rate_limited",
                        extra={"params": params, "attempt": attempt + 1, "delay": delay},
                    )
                    self.sleep(delay)
                    attempt += 1
                    continue
                self._interval = min(self._interval * 2, self.max_interval)
                raise PhidiasAPIError(
                    "Límite de peticiones excedido en Phidias",
                    status_code=429,
                    rate_limited=True,
                    retry_after=retry_after,
                )

            if not response.ok:
                raise PhidiasAPIError(
                    f"HTTP {response.status_code}: {response.reason}",
                    status_code=response.status_code,
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise PhidiasAPIError(f"JSON inválido recibido desde Phidias: {exc}") from exc

            self._interval = max(self._interval * 0.9, self.min_interval)
            return payload

    def fetch_records(self, student_external_id: str | int, poll_id: int) -> PollResponse:
        payload = self._get({"poll": poll_id, "person": student_external_id})
        return PollResponse.from_payload(payload)

    def fetch(self, student_external_id: str | int, poll_id: int) -> PollResult:
        try:
            return PollResult(success=True, data=self.fetch_records(student_external_id, poll_id))
        except PhidiasAPIError as exc:
            return PollResult(
                success=False,
                error=str(exc),
                rate_limited=exc.rate_limited,
                retry_after=exc.retry_after,
            )

    def process_batch(
        self,
        students: Sequence[StudentRef],
        poll_ids: Iterable[int],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[BatchItemResult]:
        """Consulta cada par (estudiante, encuesta) en grupos de `batch_size`.

        Un fallo queda registrado en su resultado y no detiene el lote. El
        callback de progreso se invoca al terminar cada grupo y sus errores
        se ignoran.
        """

        poll_ids = list(poll_ids)
        total = len(students) * len(poll_ids)
        results: list[BatchItemResult] = []

        for start in range(0, len(students), self.batch_size):
            group = students[start:start + self.batch_size]
            for student in group:
                for poll_id in poll_ids:
                    try:
                        result = self.fetch(student.external_id, poll_id)
                    except Exception as exc:
                        logger.exception(
                            "phidias_client.fetch_failed",
                            extra={"student_id": student.id, "poll_id": poll_id},
                        )
                        result = PollResult(success=False, error=str(exc) or exc.__class__.__name__)
                    results.append(BatchItemResult(student_id=student.id, poll_id=poll_id, result=result))

            if on_progress is not None:
                try:
                    on_progress(len(results), total)
                except Exception:
                    logger.exception("phidias_client.progress_callback_failed")

        return results

    def test_connection(self, poll_id: int | None = None, person_id: int | None = None) -> PollResult:
        errors = self.validate_configuration()
        if errors:
            return PollResult(success=False, error="; ".join(errors))
        return self.fetch(
            person_id if person_id is not None else getattr(settings, "PHIDIAS_TEST_PERSON_ID", 4021),
            poll_id if poll_id is not None else getattr(settings, "PHIDIAS_TEST_POLL_ID", 651),
        )
