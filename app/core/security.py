"""
Firmas Ed25519 del registro de auditoría.

La clave la provee gestión de claves (settings / archivos PEM); este módulo
solo la valida al arrancar y la usa. Nunca genera, rota ni persiste claves.
"""

import binascii
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from app.config import Settings
from app.core.exceptions import (
    AuditKeyError,
    SignatureFormatError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32
# Formato semilla || pública (64 bytes), el que emiten otras implementaciones
EXPANDED_PRIVATE_KEY_SIZE = 64
SIGNATURE_SIZE = 64


def _raw_public_bytes(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _decode_hex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value.strip())
    except ValueError as exc:
        raise AuditKeyError(f"Formato de {what} inválido (se esperaba hex)") from exc


def load_public_key_hex(public_hex: str) -> Ed25519PublicKey:
    raw = _decode_hex(public_hex, "clave pública")
    if len(raw) != PUBLIC_KEY_SIZE:
        raise AuditKeyError(
            f"Longitud de clave pública inválida: {len(raw)} bytes (esperado {PUBLIC_KEY_SIZE})"
        )
    return Ed25519PublicKey.from_public_bytes(raw)


def load_private_key_hex(private_hex: str) -> Ed25519PrivateKey:
    raw = _decode_hex(private_hex, "clave privada")
    if len(raw) == EXPANDED_PRIVATE_KEY_SIZE:
        seed, embedded_public = raw[:SEED_SIZE], raw[SEED_SIZE:]
        key = Ed25519PrivateKey.from_private_bytes(seed)
        if _raw_public_bytes(key.public_key()) != embedded_public:
            raise AuditKeyError("La clave privada expandida no contiene su propia clave pública")
        return key
    if len(raw) != SEED_SIZE:
        raise AuditKeyError(
            f"Longitud de clave privada inválida: {len(raw)} bytes "
            f"(esperado {SEED_SIZE} o {EXPANDED_PRIVATE_KEY_SIZE})"
        )
    return Ed25519PrivateKey.from_private_bytes(raw)


class AuditVerifier:
    """Verifica firmas con la clave pública del registro."""

    def __init__(self, public_key: Ed25519PublicKey):
        if not isinstance(public_key, Ed25519PublicKey):
            raise AuditKeyError("La clave pública de auditoría debe ser Ed25519")
        self._public_key = public_key

    @classmethod
    def from_hex(cls, public_hex: str) -> "AuditVerifier":
        return cls(load_public_key_hex(public_hex))

    @property
    def public_key_hex(self) -> str:
        return _raw_public_bytes(self._public_key).hex()

    def verify(self, digest: str, signature: str) -> None:
        """
        Lanza SignatureFormatError si la firma no se puede decodificar y
        SignatureMismatchError si está bien formada pero no corresponde.
        """
        try:
            raw = binascii.unhexlify(signature or "")
        except (binascii.Error, ValueError) as exc:
            raise SignatureFormatError("La firma no es hex válido") from exc
        if len(raw) != SIGNATURE_SIZE:
            raise SignatureFormatError(
                f"Longitud de firma inválida: {len(raw)} bytes (esperado {SIGNATURE_SIZE})"
            )
        try:
            self._public_key.verify(raw, digest.encode("ascii"))
        except (InvalidSignature, UnicodeEncodeError) as exc:
            raise SignatureMismatchError() from exc


class AuditSigner:
    """Firma digests con la clave privada del registro."""

    def __init__(self, private_key: Ed25519PrivateKey, public_key: Ed25519PublicKey):
        if not isinstance(private_key, Ed25519PrivateKey):
            raise AuditKeyError("La clave privada de auditoría debe ser Ed25519")
        self._private_key = private_key
        self.verifier = AuditVerifier(public_key)
        if _raw_public_bytes(private_key.public_key()) != _raw_public_bytes(public_key):
            raise AuditKeyError("Las claves pública y privada de auditoría no forman un par")

    @classmethod
    def from_hex(cls, private_hex: str, public_hex: str) -> "AuditSigner":
        return cls(load_private_key_hex(private_hex), load_public_key_hex(public_hex))

    @classmethod
    def from_pem(cls, private_pem: bytes, public_pem: bytes) -> "AuditSigner":
        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
            public_key = serialization.load_pem_public_key(public_pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise AuditKeyError("No se pudo leer la clave PEM de auditoría") from exc
        return cls(private_key, public_key)

    def sign(self, digest: str) -> str:
        """Firma los bytes ASCII del digest hex y devuelve la firma en hex."""
        try:
            return self._private_key.sign(digest.encode("ascii")).hex()
        except (UnicodeEncodeError, ValueError) as exc:
            raise AuditKeyError("No se pudo firmar la entrada de auditoría") from exc


def load_signer(settings: Settings) -> AuditSigner:
    """
    Construye el firmante una sola vez al arrancar.
    Prioridad: claves hex en settings; si no, archivos PEM.
    """
    if settings.AUDIT_ED25519_PRIVATE_KEY or settings.AUDIT_ED25519_PUBLIC_KEY:
        if not (settings.AUDIT_ED25519_PRIVATE_KEY and settings.AUDIT_ED25519_PUBLIC_KEY):
            raise AuditKeyError(
                "AUDIT_ED25519_PRIVATE_KEY y AUDIT_ED25519_PUBLIC_KEY deben configurarse juntas"
            )
        signer = AuditSigner.from_hex(
            settings.AUDIT_ED25519_PRIVATE_KEY, settings.AUDIT_ED25519_PUBLIC_KEY
        )
        logger.info("Claves Ed25519 de auditoría cargadas desde variables de entorno")
        return signer

    private_pem = settings.audit_private_key_pem
    public_pem = settings.audit_public_key_pem
    if private_pem is None or public_pem is None:
        raise AuditKeyError(
            "Claves de auditoría no configuradas. Genera un par con: "
            "python scripts/generate_keys.py"
        )
    signer = AuditSigner.from_pem(private_pem, public_pem)
    logger.info("Claves Ed25519 de auditoría cargadas desde %s", settings.AUDIT_PRIVATE_KEY_PATH)
    return signer
