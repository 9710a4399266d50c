"""
Errores de negocio del backend de circuitos.

Cada error lleva el código HTTP con el que se responde y un diccionario
`errors` con el detalle, igual al sobre `{'message': ..., 'errors': ...}`
que devuelven todos los endpoints.
"""


class DomainError(Exception):
    status = 500
    kind = "internal"

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_dict(self):
        return {"message": self.message, "errors": self.errors}


class InvalidInput(DomainError):
    status = 400
    kind = "validation"


class Forbidden(DomainError):
    status = 403
    kind = "forbidden"


class NotFound(DomainError):
    status = 404
    kind = "not_found"


class Conflict(DomainError):
    status = 409
    kind = "conflict"


class Gone(DomainError):
    status = 410
    kind = "gone"


class RateLimited(DomainError):
    status = 429
    kind = "rate_limited"


class InternalError(DomainError):
    status = 500
    kind = "internal"
