"""
Script para listar una página del registro de auditoría.

Uso:
    python scripts/list_audit_log.py
    python scripts/list_audit_log.py --actor 7 --action READ_RECORDS
    python scripts/list_audit_log.py --from 2026-03-01 --to 2026-03-31 --page 2 --page-size 50
"""

import argparse
import sys
from datetime import date
from pathlib import Path

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
from app.main import lifespan
from app.schemas.audit_log import AuditFilter


async def list_audit_log(filters: AuditFilter, page: int, page_size: int, newest_first: bool) -> None:
    async with lifespan() as trail:
        result = await trail.list_entries(filters, page, page_size, newest_first=newest_first)

    print(f"Página {result.page}/{result.pages} — {result.total} entradas")
    for entry in result.entries:
        subject = entry.subject_id if entry.subject_id is not None else "-"
        print(
            f"#{entry.sequence_id:>6}  {entry.timestamp.isoformat()}  "
            f"actor={entry.actor_id:<6} {entry.action:<24} subject={subject}  {entry.digest[:16]}…"
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Listar el registro de auditoría")
    parser.add_argument("--actor", type=int, default=None)
    parser.add_argument("--action", default=None)
    parser.add_argument("--subject", type=int, default=None)
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, default=None)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, default=None)
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--page-size", type=int, default=20)
    parser.add_argument("--newest-first", action="store_true")
    args = parser.parse_args()

    filters = AuditFilter(
        actor_id=args.actor,
        action=args.action,
        subject_id=args.subject,
        date_from=args.date_from,
        date_to=args.date_to,
    )
    asyncio.run(list_audit_log(filters, args.page, args.page_size, args.newest_first))
