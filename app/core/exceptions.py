"""
Excepciones del registro de auditoría.

Cuatro familias que el llamador debe poder distinguir:
entrada inválida, claves, almacenamiento/concurrencia e integridad de la cadena.
"""


class AuditError(Exception):
    """Base de todos los errores del registro de auditoría."""

    default_detail = "Error en el registro de auditoría"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuditInputError(AuditError):
    """Actor, acción o sujeto mal formados. Se rechaza antes de tomar el lock."""

    default_detail = "Datos de auditoría inválidos"


class AuditKeyError(AuditError):
    """Clave de firma ausente, mal formada o inutilizable."""

    default_detail = "Clave de firma de auditoría no disponible"


class AuditStorageError(AuditError):
    """Fallo de persistencia: abort de transacción, restricción violada, etc.

    Garantía: nunca deja una entrada parcial. El llamador decide si reintenta.
    """

    default_detail = "No se pudo persistir la entrada de auditoría"


class AuditLockTimeout(AuditStorageError):
    """Se agotó la espera por el lock de escritura de la cadena."""

    default_detail = "Tiempo de espera agotado para el lock de auditoría"


class AuditImmutableError(AuditError):
    """Intento de modificar o eliminar una entrada ya persistida."""

    default_detail = "Las entradas de auditoría son inmutables"


class ChainIntegrityError(AuditError):
    """La verificación encontró la cadena rota. Es un incidente de seguridad."""

    default_detail = "Cadena de auditoría comprometida"

    def __init__(
        self,
        detail: str | None = None,
        *,
        sequence_id: int | None = None,
        reason: str | None = None,
    ):
        self.sequence_id = sequence_id
        self.reason = reason
        super().__init__(detail)


# ── Diagnóstico de firmas ────────────────────────────

class SignatureError(AuditError):
    """Firma que no verifica contra la clave pública del registro."""

    default_detail = "Firma inválida"


class SignatureFormatError(SignatureError):
    """La firma no se puede decodificar (hex inválido o longitud incorrecta)."""

    default_detail = "Formato de firma inválido"


class SignatureMismatchError(SignatureError):
    """Firma bien formada pero criptográficamente inválida."""

    default_detail = "La firma no corresponde al digest"
