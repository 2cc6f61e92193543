"""
Modelo AuditEntry — Registro de auditoría INMUTABLE, encadenado y firmado.
INSERT-only, sin UPDATE/DELETE (guardas ORM + trigger en PostgreSQL).
"""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from app.core.exceptions import AuditImmutableError
from app.database import Base


class AuditAction(str, enum.Enum):
    """Acciones conocidas. El registro acepta cualquier otra cadena corta."""
    CREATE_RECORD = "CREATE_RECORD"
    UPDATE_RECORD = "UPDATE_RECORD"
    DELETE_RECORD = "DELETE_RECORD"
    READ_RECORDS = "READ_RECORDS"
    VIEW_ALL_RECORDS = "VIEW_ALL_RECORDS"
    SEARCH_PATIENT_RECORDS = "SEARCH_PATIENT_RECORDS"
    EMERGENCY_ACCESS = "EMERGENCY_ACCESS"


class AuditEntry(Base):
    __tablename__ = "audit_log"

    # Asignado por el coordinador (cola + 1), nunca por una secuencia de la BD
    sequence_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )

    # ── Datos del evento ─────────────────────────────
    actor_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True,
        comment="Usuario que ejecuta la acción"
    )
    action: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        comment="CREATE_RECORD, READ_RECORDS, EMERGENCY_ACCESS, etc."
    )
    subject_id: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True,
        comment="Registro clínico afectado (NULL en lecturas masivas)"
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
        comment="Instante UTC asignado al agregar"
    )

    # ── Cadena ───────────────────────────────────────
    previous_digest: Mapped[str] = mapped_column(
        String(64), nullable=False,
        comment="Digest de la entrada anterior ('' en la primera)"
    )
    digest: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 de la serialización canónica"
    )
    signature: Mapped[str] = mapped_column(
        String(128), nullable=False,
        comment="Firma Ed25519 del digest (hex)"
    )

    __table_args__ = (
        Index("idx_audit_log_actor_action", "actor_id", "action"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.sequence_id} {self.action} by {self.actor_id}>"


# ── Inmutabilidad a nivel ORM ────────────────────────

@event.listens_for(AuditEntry, "before_update")
def _forbid_update(mapper, connection, target: AuditEntry) -> None:
    raise AuditImmutableError(
        f"La entrada de auditoría #{target.sequence_id} no puede modificarse"
    )


@event.listens_for(AuditEntry, "before_delete")
def _forbid_delete(mapper, connection, target: AuditEntry) -> None:
    raise AuditImmutableError(
        f"La entrada de auditoría #{target.sequence_id} no puede eliminarse"
    )
