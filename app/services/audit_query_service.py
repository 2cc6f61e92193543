"""
Consulta y verificación del registro de auditoría.
Solo lectura: expone metadatos, nunca descifra ni interpreta el contenido
del registro clínico referenciado por subject_id.
"""

import logging
from math import ceil

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SignatureFormatError, SignatureMismatchError
from app.core.hashing import GENESIS_DIGEST, compute_digest
from app.core.security import AuditVerifier
from app.models.audit_log import AuditAction, AuditEntry
from app.schemas.audit_log import (
    AuditEntryResponse,
    AuditFilter,
    AuditPage,
    BreakReason,
    ChainBreak,
    ChainVerification,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_VERIFY_BATCH_SIZE = 500

_CHAIN_COLUMNS = (
    AuditEntry.sequence_id,
    AuditEntry.actor_id,
    AuditEntry.action,
    AuditEntry.subject_id,
    AuditEntry.timestamp,
    AuditEntry.previous_digest,
    AuditEntry.digest,
    AuditEntry.signature,
)


def clamp_pagination(page: int | None, page_size: int | None) -> tuple[int, int]:
    """Valores fuera de rango se ajustan en lugar de fallar."""
    if page is None or page < 1:
        page = DEFAULT_PAGE
    if page_size is None or page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    elif page_size > MAX_PAGE_SIZE:
        page_size = MAX_PAGE_SIZE
    return page, page_size


def _filter_conditions(filters: AuditFilter | None) -> list:
    if filters is None:
        return []
    conditions = []
    if filters.actor_id is not None:
        conditions.append(AuditEntry.actor_id == filters.actor_id)
    if filters.action:
        action = filters.action
        if isinstance(action, AuditAction):
            action = action.value
        conditions.append(AuditEntry.action == action)
    if filters.subject_id is not None:
        conditions.append(AuditEntry.subject_id == filters.subject_id)
    if filters.date_from is not None:
        conditions.append(AuditEntry.timestamp >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(AuditEntry.timestamp <= filters.date_to)
    return conditions


async def list_entries(
    db: AsyncSession,
    filters: AuditFilter | None = None,
    page: int = DEFAULT_PAGE,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    newest_first: bool = False,
) -> AuditPage:
    """Consulta paginada y filtrada. Orden cronológico (sequence_id) por defecto."""
    page, page_size = clamp_pagination(page, page_size)
    conditions = _filter_conditions(filters)

    count_query = select(func.count(AuditEntry.sequence_id)).where(*conditions)
    total = (await db.execute(count_query)).scalar() or 0

    order = AuditEntry.sequence_id.desc() if newest_first else AuditEntry.sequence_id.asc()
    query = (
        select(AuditEntry)
        .where(*conditions)
        .order_by(order)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    entries = [AuditEntryResponse.model_validate(e) for e in result.scalars().all()]

    return AuditPage(
        entries=entries,
        total=total,
        page=page,
        page_size=page_size,
        pages=ceil(total / page_size),
    )


# ── Verificación de la cadena ────────────────────────

def _check_entry(
    row,
    expected_sequence: int,
    expected_previous: str,
    seen_digests: set[str],
    verifier: AuditVerifier,
) -> list[ChainBreak]:
    breaks: list[ChainBreak] = []
    seq = row.sequence_id

    recomputed = compute_digest(
        row.actor_id, row.action, row.subject_id, row.timestamp, row.previous_digest
    )
    if recomputed != row.digest:
        breaks.append(ChainBreak(
            sequence_id=seq,
            reason=BreakReason.DIGEST_MISMATCH,
            detail="el digest almacenado no coincide con los campos de la entrada",
        ))

    if row.previous_digest != expected_previous:
        breaks.append(ChainBreak(
            sequence_id=seq,
            reason=BreakReason.CHAIN_LINK_MISMATCH,
            detail="previous_digest no coincide con el digest de la entrada anterior",
        ))

    try:
        verifier.verify(row.digest, row.signature)
    except SignatureFormatError as exc:
        breaks.append(ChainBreak(
            sequence_id=seq, reason=BreakReason.SIGNATURE_MALFORMED, detail=exc.detail,
        ))
    except SignatureMismatchError:
        breaks.append(ChainBreak(
            sequence_id=seq,
            reason=BreakReason.SIGNATURE_INVALID,
            detail="la firma Ed25519 no corresponde al digest",
        ))

    if seq != expected_sequence:
        breaks.append(ChainBreak(
            sequence_id=seq,
            reason=BreakReason.SEQUENCE_GAP,
            detail=f"se esperaba la secuencia {expected_sequence}",
        ))

    if row.digest in seen_digests:
        breaks.append(ChainBreak(
            sequence_id=seq,
            reason=BreakReason.DUPLICATE_DIGEST,
            detail="digest repetido en otra entrada",
        ))

    return breaks


async def verify_chain(
    db: AsyncSession,
    verifier: AuditVerifier,
    *,
    collect_all: bool = False,
    batch_size: int = DEFAULT_VERIFY_BATCH_SIZE,
) -> ChainVerification:
    """
    Recorre la cadena en orden ascendente y re-deriva cada digest.

    La cola se fija al inicio: las entradas agregadas durante la verificación
    quedan fuera, así que el resultado corresponde a un prefijo válido del log.
    Se detiene en la primera ruptura salvo collect_all=True.
    """
    tail_id = (await db.execute(select(func.max(AuditEntry.sequence_id)))).scalar()
    if tail_id is None:
        return ChainVerification(valid=True, entries_checked=0)

    checked = 0
    breaks: list[ChainBreak] = []
    seen_digests: set[str] = set()
    expected_previous = GENESIS_DIGEST
    last_seen = 0

    while True:
        result = await db.execute(
            select(*_CHAIN_COLUMNS)
            .where(AuditEntry.sequence_id > last_seen, AuditEntry.sequence_id <= tail_id)
            .order_by(AuditEntry.sequence_id.asc())
            .limit(batch_size)
        )
        rows = result.all()
        if not rows:
            break

        for row in rows:
            checked += 1
            entry_breaks = _check_entry(
                row, last_seen + 1, expected_previous, seen_digests, verifier
            )
            if entry_breaks:
                for brk in entry_breaks:
                    logger.warning(
                        "Cadena de auditoría rota en #%s: %s", brk.sequence_id, brk.reason.value
                    )
                if not collect_all:
                    return ChainVerification(
                        valid=False, entries_checked=checked, breaks=entry_breaks[:1]
                    )
                breaks.extend(entry_breaks)

            seen_digests.add(row.digest)
            expected_previous = row.digest
            last_seen = row.sequence_id

    return ChainVerification(valid=not breaks, entries_checked=checked, breaks=breaks)
