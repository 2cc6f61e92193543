"""
Servicio de Audit Log — cadena de hashes SHA-256 firmada con Ed25519.
INSERT-only, nunca se modifica ni elimina.

Todas las escrituras pasan por un único punto de orden: el lock de escritura
del proceso y, en PostgreSQL, un advisory lock de transacción más
SELECT FOR UPDATE sobre la última entrada. Dentro del lock: leer la cola,
calcular el digest, firmar, insertar y hacer commit.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator

from pydantic import ValidationError
from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    AuditError,
    AuditInputError,
    AuditLockTimeout,
    AuditStorageError,
)
from app.core.hashing import GENESIS_DIGEST, compute_digest, normalize_timestamp
from app.core.security import AuditSigner, AuditVerifier
from app.models.audit_log import AuditAction, AuditEntry
from app.schemas.audit_log import AuditAppend, AuditFilter, AuditPage, ChainVerification
from app.services import audit_query_service

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = 7_341_205_001
# SQLSTATE lock_not_available de PostgreSQL
_PG_LOCK_NOT_AVAILABLE = "55P03"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate(actor_id, action, subject_id) -> AuditAppend:
    """Rechaza entradas mal formadas antes de tocar el lock."""
    if isinstance(action, AuditAction):
        action = action.value
    try:
        return AuditAppend(actor_id=actor_id, action=action, subject_id=subject_id)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise AuditInputError(f"Entrada de auditoría inválida: {problems}") from exc


def _storage_error(exc: SQLAlchemyError) -> AuditStorageError:
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code == _PG_LOCK_NOT_AVAILABLE:
            return AuditLockTimeout("Tiempo de espera agotado para el lock de la cadena en la BD")
    if isinstance(exc, IntegrityError):
        return AuditStorageError(
            "Restricción violada al persistir la entrada de auditoría "
            "(secuencia o digest duplicado)"
        )
    return AuditStorageError(f"No se pudo persistir la entrada de auditoría: {exc.__class__.__name__}")


@dataclass
class AuditedAction:
    """
    Acción de negocio en curso dentro de `AuditTrail.audited()`.
    `subject_id` puede fijarse dentro del bloque, cuando el id ya existe.
    Al salir, `entry` contiene la entrada registrada.
    """
    session: AsyncSession
    actor_id: int
    action: str
    subject_id: int | None = None
    entry: AuditEntry | None = None


class AuditTrail:
    """
    Registro de auditoría de una instancia. Se construye una vez en el
    arranque y se inyecta a quien registre acciones.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        signer: AuditSigner,
        *,
        lock_timeout: float | None = None,
        lock_key: int = DEFAULT_LOCK_KEY,
        verify_batch_size: int = audit_query_service.DEFAULT_VERIFY_BATCH_SIZE,
    ):
        self._session_factory = session_factory
        self._signer = signer
        self._lock = asyncio.Lock()
        self._lock_timeout = lock_timeout
        self._lock_key = lock_key
        self._verify_batch_size = verify_batch_size

    @property
    def verifier(self) -> AuditVerifier:
        return self._signer.verifier

    # ── Escritura ────────────────────────────────────

    async def append(
        self,
        actor_id: int,
        action: str,
        subject_id: int | None = None,
    ) -> AuditEntry:
        """Registra una acción en su propia transacción."""
        payload = _validate(actor_id, action, subject_id)
        async with self._session_factory() as session:
            return await self._record_and_commit(session, payload)

    @asynccontextmanager
    async def audited(
        self,
        actor_id: int,
        action: str,
        subject_id: int | None = None,
    ) -> AsyncGenerator[AuditedAction, None]:
        """
        Ejecuta una acción de negocio y su entrada de auditoría en la misma
        transacción. Si el bloque falla o la auditoría falla, no se persiste nada.

            async with trail.audited(doctor_id, "CREATE_RECORD") as audited:
                audited.session.add(record)
                await audited.session.flush()
                audited.subject_id = record.id
        """
        payload = _validate(actor_id, action, subject_id)
        async with self._session_factory() as session:
            pending = AuditedAction(
                session=session,
                actor_id=payload.actor_id,
                action=payload.action,
                subject_id=payload.subject_id,
            )
            try:
                yield pending
            except BaseException:
                await session.rollback()
                raise
            try:
                final = _validate(pending.actor_id, pending.action, pending.subject_id)
            except AuditInputError:
                await session.rollback()
                raise
            pending.entry = await self._record_and_commit(session, final)

    # ── Sección crítica ──────────────────────────────

    async def _acquire_writer_lock(self) -> None:
        if self._lock_timeout is None:
            await self._lock.acquire()
            return
        try:
            async with asyncio.timeout(self._lock_timeout):
                await self._lock.acquire()
        except TimeoutError:
            logger.error("Lock de auditoría no obtenido en %.3fs", self._lock_timeout)
            raise AuditLockTimeout() from None

    async def _record_and_commit(self, session: AsyncSession, payload: AuditAppend) -> AuditEntry:
        """
        La cancelación solo surte efecto antes de obtener el lock o después
        del commit/rollback, nunca a mitad de la transacción.
        """
        await self._acquire_writer_lock()
        task = asyncio.ensure_future(self._critical_section(session, payload))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.error("Append de auditoría cancelado terminó con error: %s", task.exception())
            raise

    async def _critical_section(self, session: AsyncSession, payload: AuditAppend) -> AuditEntry:
        try:
            entry = await self._append_locked(session, payload)
            await session.commit()
        except AuditError as exc:
            await session.rollback()
            logger.error("Append de auditoría abortado (%s): %s", payload.action, exc.detail)
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            error = _storage_error(exc)
            logger.error("Append de auditoría abortado (%s): %s", payload.action, error.detail)
            raise error from exc
        except BaseException:
            await session.rollback()
            raise
        finally:
            self._lock.release()

        logger.info(
            "AUDIT #%s action=%s actor=%s subject=%s",
            entry.sequence_id, entry.action, entry.actor_id, entry.subject_id,
        )
        return entry

    async def _lock_tail(self, session: AsyncSession) -> AuditEntry | None:
        if session.get_bind().dialect.name == "postgresql":
            if self._lock_timeout is not None:
                timeout_ms = max(1, int(self._lock_timeout * 1000))
                await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
            # Cubre también la cadena vacía, donde no hay fila que bloquear
            await session.execute(select(func.pg_advisory_xact_lock(self._lock_key)))

        result = await session.execute(
            select(AuditEntry)
            .order_by(AuditEntry.sequence_id.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _append_locked(self, session: AsyncSession, payload: AuditAppend) -> AuditEntry:
        tail = await self._lock_tail(session)

        timestamp = _utcnow()
        if tail is None:
            sequence_id = 1
            previous_digest = GENESIS_DIGEST
        else:
            sequence_id = tail.sequence_id + 1
            previous_digest = tail.digest
            # El reloj nunca retrocede respecto a la cola
            timestamp = max(timestamp, normalize_timestamp(tail.timestamp))

        digest = compute_digest(
            payload.actor_id, payload.action, payload.subject_id, timestamp, previous_digest
        )
        signature = self._signer.sign(digest)

        entry = AuditEntry(
            sequence_id=sequence_id,
            actor_id=payload.actor_id,
            action=payload.action,
            subject_id=payload.subject_id,
            timestamp=timestamp,
            previous_digest=previous_digest,
            digest=digest,
            signature=signature,
        )
        session.add(entry)
        await session.flush()
        return entry

    # ── Lectura ──────────────────────────────────────

    async def list_entries(
        self,
        filters: AuditFilter | None = None,
        page: int = audit_query_service.DEFAULT_PAGE,
        page_size: int = audit_query_service.DEFAULT_PAGE_SIZE,
        *,
        newest_first: bool = False,
    ) -> AuditPage:
        async with self._session_factory() as session:
            return await audit_query_service.list_entries(
                session, filters, page, page_size, newest_first=newest_first
            )

    async def verify_chain(self, *, collect_all: bool = False) -> ChainVerification:
        async with self._session_factory() as session:
            return await audit_query_service.verify_chain(
                session,
                self.verifier,
                collect_all=collect_all,
                batch_size=self._verify_batch_size,
            )
