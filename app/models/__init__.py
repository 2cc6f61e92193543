"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.audit_log import AuditAction, AuditEntry
