"""
Schemas del registro de auditoría: entrada validada, filtros,
página de resultados y resultado de verificación de la cadena.
"""

import enum
from datetime import date, datetime, time, timezone

from pydantic import BaseModel, Field, field_validator

from app.core.exceptions import ChainIntegrityError
from app.core.hashing import normalize_timestamp

ACTION_MAX_LENGTH = 50
# Rango de las columnas BigInteger
ID_MAX = 2**63 - 1


# ── Entrada ──────────────────────────────────────────

class AuditAppend(BaseModel):
    """Datos que el llamador entrega para registrar una acción."""
    actor_id: int = Field(..., ge=0, le=ID_MAX, strict=True)
    action: str = Field(..., min_length=1, max_length=ACTION_MAX_LENGTH)
    subject_id: int | None = Field(None, ge=0, le=ID_MAX, strict=True)

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        if v != v.strip():
            raise ValueError("La acción no puede tener espacios al inicio o al final")
        if any(not ch.isprintable() for ch in v):
            raise ValueError("La acción contiene caracteres de control")
        return v


# ── Filtros ──────────────────────────────────────────

class AuditFilter(BaseModel):
    """
    Filtros combinados con AND. Las fechas (date) cubren el día completo en UTC:
    date_from desde 00:00:00 y date_to hasta 23:59:59.999999, ambos inclusive.
    """
    actor_id: int | None = Field(None, ge=0, le=ID_MAX)
    action: str | None = Field(None, max_length=ACTION_MAX_LENGTH)
    subject_id: int | None = Field(None, ge=0, le=ID_MAX)
    date_from: datetime | date | None = None
    date_to: datetime | date | None = None

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def parse_plain_date(cls, v):
        # "2026-03-02" es un día completo, no la medianoche
        if isinstance(v, str):
            try:
                return date.fromisoformat(v.strip())
            except ValueError:
                return v
        return v

    @field_validator("date_from")
    @classmethod
    def start_of_day(cls, v: datetime | date | None) -> datetime | None:
        if v is None:
            return None
        if isinstance(v, datetime):
            return normalize_timestamp(v)
        return datetime.combine(v, time.min, tzinfo=timezone.utc)

    @field_validator("date_to")
    @classmethod
    def end_of_day(cls, v: datetime | date | None) -> datetime | None:
        if v is None:
            return None
        if isinstance(v, datetime):
            return normalize_timestamp(v)
        return datetime.combine(v, time.max, tzinfo=timezone.utc)


# ── Salidas ──────────────────────────────────────────

class AuditEntryResponse(BaseModel):
    sequence_id: int
    actor_id: int
    action: str
    subject_id: int | None = None
    timestamp: datetime
    previous_digest: str
    digest: str
    signature: str

    model_config = {"from_attributes": True}

    @field_validator("timestamp")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return normalize_timestamp(v)


class AuditPage(BaseModel):
    """Respuesta paginada del registro de auditoría."""
    entries: list[AuditEntryResponse]
    total: int
    page: int
    page_size: int
    pages: int


class BreakReason(str, enum.Enum):
    DIGEST_MISMATCH = "digest_mismatch"
    CHAIN_LINK_MISMATCH = "chain_link_mismatch"
    SIGNATURE_MALFORMED = "signature_malformed"
    SIGNATURE_INVALID = "signature_invalid"
    SEQUENCE_GAP = "sequence_gap"
    DUPLICATE_DIGEST = "duplicate_digest"


class ChainBreak(BaseModel):
    sequence_id: int
    reason: BreakReason
    detail: str


class ChainVerification(BaseModel):
    """Resultado de recorrer la cadena completa."""
    valid: bool
    entries_checked: int
    breaks: list[ChainBreak] = Field(default_factory=list)

    @property
    def first_break(self) -> ChainBreak | None:
        return self.breaks[0] if self.breaks else None

    @property
    def broken_at(self) -> int | None:
        first = self.first_break
        return first.sequence_id if first else None

    @property
    def reason(self) -> BreakReason | None:
        first = self.first_break
        return first.reason if first else None

    @property
    def message(self) -> str:
        first = self.first_break
        if first is None:
            return f"Cadena de auditoría íntegra ({self.entries_checked} entradas verificadas)"
        return f"Cadena rota en la entrada #{first.sequence_id}: {first.detail}"

    def raise_for_break(self) -> None:
        first = self.first_break
        if first is not None:
            raise ChainIntegrityError(
                self.message, sequence_id=first.sequence_id, reason=first.reason.value
            )
