"""
Script para verificar la integridad de la cadena de auditoría.

Uso:
    python scripts/verify_audit_chain.py
    python scripts/verify_audit_chain.py --all   # enumera todas las rupturas

Sale con código 1 si la cadena está rota. Nunca repara nada: una ruptura
es un incidente de seguridad.
"""

import argparse
import sys
from pathlib import Path

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
from app.main import lifespan


async def verify_audit_chain(collect_all: bool = False) -> bool:
    async with lifespan() as trail:
        result = await trail.verify_chain(collect_all=collect_all)

    if result.valid:
        print(f"✅ {result.message}")
        return True

    print(f"❌ {result.message}")
    for brk in result.breaks[1:]:
        print(f"   #{brk.sequence_id}: {brk.reason.value} — {brk.detail}")
    return False


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verificar la cadena de auditoría")
    parser.add_argument("--all", action="store_true", help="Continuar tras la primera ruptura")
    args = parser.parse_args()

    ok = asyncio.run(verify_audit_chain(args.all))
    sys.exit(0 if ok else 1)
