"""
Script para generar el par de claves Ed25519 que firma el registro de auditoría.
Ejecutar una vez antes de iniciar el servicio (gestión de claves, fuera del core):

    python scripts/generate_keys.py
"""

from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


def generate_audit_keys():
    keys_dir = Path(__file__).parent.parent / "keys"
    keys_dir.mkdir(exist_ok=True)

    private_key_path = keys_dir / "audit_private.pem"
    public_key_path = keys_dir / "audit_public.pem"

    if private_key_path.exists():
        print(f"⚠️  Las claves ya existen en {keys_dir}")
        print("   Regenerarlas invalida la verificación de toda la cadena existente.")
        response = input("¿Desea regenerarlas? (s/N): ").strip().lower()
        if response != "s":
            print("Cancelado.")
            return

    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()

    # Guardar clave privada
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    private_key_path.write_bytes(private_pem)
    private_key_path.chmod(0o600)
    print(f"✅ Clave privada generada: {private_key_path}")

    # Guardar clave pública
    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    public_key_path.write_bytes(public_pem)
    print(f"✅ Clave pública generada: {public_key_path}")

    # Alternativa en hex para entornos sin archivos
    seed_hex = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    ).hex()
    public_hex = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ).hex()

    print("\n📌 Agrega las claves a tu .env (archivos PEM):")
    print("   AUDIT_PRIVATE_KEY_PATH=./keys/audit_private.pem")
    print("   AUDIT_PUBLIC_KEY_PATH=./keys/audit_public.pem")
    print("\n   o en hex:")
    print(f"   AUDIT_ED25519_PRIVATE_KEY={seed_hex}")
    print(f"   AUDIT_ED25519_PUBLIC_KEY={public_hex}")


if __name__ == "__main__":
    generate_audit_keys()
