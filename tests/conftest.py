"""
Fixtures compartidas para Pytest.
Cada test usa su propia base SQLite (aiosqlite) y un par de claves Ed25519 nuevo.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.security import AuditSigner
from app.database import Base, build_engine, build_session_factory
from app.models.audit_log import AuditEntry
from app.services.audit_service import AuditTrail


@pytest.fixture
def private_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def private_key_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    ).hex()


@pytest.fixture
def public_key_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ).hex()


@pytest.fixture
def signer(private_key: Ed25519PrivateKey) -> AuditSigner:
    return AuditSigner(private_key, private_key.public_key())


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Crea y destruye las tablas para cada test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit_test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_trail(session_factory, signer: AuditSigner) -> AuditTrail:
    return AuditTrail(session_factory, signer)


@pytest.fixture
def count_entries(session_factory):
    """Cuenta las entradas persistidas con una sesión independiente."""

    async def _count() -> int:
        async with session_factory() as session:
            return (await session.execute(select(func.count(AuditEntry.sequence_id)))).scalar()

    return _count
