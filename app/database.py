"""
Configuración de base de datos con SQLAlchemy 2.0 async.
PostgreSQL (asyncpg) en producción; SQLite (aiosqlite) en tests.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()


def build_engine(url: str, *, echo: bool = False, **kwargs) -> AsyncEngine:
    """Crea un engine async; el pool solo se configura fuera de SQLite."""
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", settings.DATABASE_POOL_SIZE)
        kwargs.setdefault("max_overflow", settings.DATABASE_MAX_OVERFLOW)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=echo, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Engine async ─────────────────────────────────────
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# ── Session factory ──────────────────────────────────
async_session_factory = build_session_factory(engine)


# ── Base declarativa ─────────────────────────────────
class Base(DeclarativeBase):
    pass
