from __future__ import annotations


class WithdrawalError(Exception):
    """Base class for recoverable failures of the withdrawal engine.

    `code` is a stable machine-readable identifier; `status_code` is the HTTP
    status the API layer answers with.
    """

    code = "withdrawal_error"
    status_code = 400
    default_message = "No se pudo procesar la solicitud de retiro"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(WithdrawalError):
    code = "not_found"
    status_code = 404
    default_message = "Recurso no encontrado"


class Conflict(WithdrawalError):
    code = "conflict"
    status_code = 409
    default_message = "La operación entra en conflicto con el estado actual"


class ConflictActiveCredential(Conflict):
    code = "active_credential_exists"
    default_message = (
        "Ya existe un código QR activo para este estudiante. Espere a que expire o sea utilizado."
    )


class Expired(WithdrawalError):
    code = "expired"
    status_code = 410
    default_message = "El código QR ha expirado"


class FormatInvalid(WithdrawalError):
    code = "format_invalid"
    status_code = 400
    default_message = "Formato de código QR inválido"


class Unauthorized(WithdrawalError):
    code = "unauthorized"
    status_code = 403
    default_message = "No autorizado para operar sobre este recurso"


class PolicyViolation(WithdrawalError):
    code = "policy_violation"
    status_code = 422
    default_message = "La solicitud no cumple la política de delegados"


class StateConflict(WithdrawalError):
    code = "state_conflict"
    status_code = 409
    default_message = "El recurso no está en un estado que permita esta operación"
