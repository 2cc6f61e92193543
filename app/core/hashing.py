"""
Cadena de hashes SHA-256 para el registro de auditoría.

Codificación canónica (v1), idéntica al agregar y al verificar:

    JSON compacto de la lista
        [actor_id, action, subject_id | null, timestamp, previous_digest]

    timestamp: UTC con 6 decimales fijos, ej. "2026-03-02T14:05:09.000123Z"
    digest:    SHA-256 en hex minúscula (64 caracteres)

La primera entrada de la cadena usa GENESIS_DIGEST ("") como previous_digest.
"""

import hashlib
import json
from datetime import datetime, timezone

GENESIS_DIGEST = ""
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def normalize_timestamp(value: datetime) -> datetime:
    """Lleva un datetime a UTC aware. Los naive (SQLite) se asumen UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return normalize_timestamp(value).strftime(TIMESTAMP_FORMAT)


def canonicalize(
    actor_id: int,
    action: str,
    subject_id: int | None,
    timestamp: datetime,
    previous_digest: str | None,
) -> bytes:
    payload = [
        int(actor_id),
        action,
        None if subject_id is None else int(subject_id),
        format_timestamp(timestamp),
        previous_digest or GENESIS_DIGEST,
    ]
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def compute_digest(
    actor_id: int,
    action: str,
    subject_id: int | None,
    timestamp: datetime,
    previous_digest: str | None,
) -> str:
    data = canonicalize(actor_id, action, subject_id, timestamp, previous_digest)
    return hashlib.sha256(data).hexdigest()
