"""
Punto de entrada del servicio de auditoría.
Construye el único AuditTrail de la instancia a partir de la configuración
y lo entrega a quien registre o consulte acciones (records, auth, scripts).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.core.security import load_signer
from app.database import async_session_factory, engine
from app.services.audit_service import AuditTrail

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)


def create_audit_trail(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AuditTrail:
    """
    Falla al arrancar (no por request) si las claves son inválidas o no existen.
    """
    settings = settings or get_settings()
    signer = load_signer(settings)
    return AuditTrail(
        session_factory or async_session_factory,
        signer,
        lock_timeout=settings.AUDIT_LOCK_TIMEOUT_SECONDS,
        lock_key=settings.AUDIT_LOCK_KEY,
        verify_batch_size=settings.AUDIT_VERIFY_BATCH_SIZE,
    )


# ── Lifecycle ────────────────────────────────────────
@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[AuditTrail, None]:
    """Eventos de inicio y cierre del servicio."""
    settings = settings or get_settings()
    configure_logging(settings)
    trail = create_audit_trail(settings)
    logger.info(f"🚀 {settings.APP_NAME} iniciando en modo {settings.APP_ENV}")
    try:
        yield trail
    finally:
        logger.info(f"🛑 {settings.APP_NAME} cerrando...")
        await engine.dispose()
