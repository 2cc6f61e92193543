"""create_audit_log: cadena de auditoría firmada e inmutable

Revision ID: a7c1e9d2f4b3
Revises:
Create Date: 2026-10-19 09:12:44.507112

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a7c1e9d2f4b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. Tabla append-only; sequence_id lo asigna la aplicación (sin SERIAL)
    op.create_table('audit_log',
        sa.Column('sequence_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('actor_id', sa.BigInteger(), nullable=False, comment='Usuario que ejecuta la acción'),
        sa.Column('action', sa.String(length=50), nullable=False, comment='CREATE_RECORD, READ_RECORDS, EMERGENCY_ACCESS, etc.'),
        sa.Column('subject_id', sa.BigInteger(), nullable=True, comment='Registro clínico afectado (NULL en lecturas masivas)'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, comment='Instante UTC asignado al agregar'),
        sa.Column('previous_digest', sa.String(length=64), nullable=False, comment="Digest de la entrada anterior ('' en la primera)"),
        sa.Column('digest', sa.String(length=64), nullable=False, comment='SHA-256 de la serialización canónica'),
        sa.Column('signature', sa.String(length=128), nullable=False, comment='Firma Ed25519 del digest (hex)'),
        sa.PrimaryKeyConstraint('sequence_id'),
        sa.UniqueConstraint('digest'),
    )

    # 2. Índices para filtros
    op.create_index(op.f('ix_audit_log_actor_id'), 'audit_log', ['actor_id'])
    op.create_index(op.f('ix_audit_log_action'), 'audit_log', ['action'])
    op.create_index(op.f('ix_audit_log_timestamp'), 'audit_log', ['timestamp'])
    op.create_index('idx_audit_log_actor_action', 'audit_log', ['actor_id', 'action'])

    # 3. Inmutabilidad: ningún UPDATE ni DELETE sobre entradas persistidas
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("""
        CREATE OR REPLACE FUNCTION audit_log_forbid_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_log es append-only: % no permitido', TG_OP;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_audit_log_immutable
        BEFORE UPDATE OR DELETE ON audit_log
        FOR EACH ROW EXECUTE FUNCTION audit_log_forbid_mutation()
    """)
    op.execute("""
        CREATE TRIGGER trg_audit_log_no_truncate
        BEFORE TRUNCATE ON audit_log
        FOR EACH STATEMENT EXECUTE FUNCTION audit_log_forbid_mutation()
    """)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_audit_log_no_truncate ON audit_log")
        op.execute("DROP TRIGGER IF EXISTS trg_audit_log_immutable ON audit_log")
        op.execute("DROP FUNCTION IF EXISTS audit_log_forbid_mutation()")
    op.drop_index('idx_audit_log_actor_action', table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_timestamp'), table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_action'), table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_actor_id'), table_name='audit_log')
    op.drop_table('audit_log')
