"""
Domain exceptions raised by the service layer.

Route handlers translate these into HTTP responses; ``status_code`` is the
code the API answers with.
"""


class DomainError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'status': 'error', 'message': self.message or self.__class__.__name__}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class AuthorizationError(DomainError):
    status_code = 401

    def __init__(self, message: str = "user not authorized to perform that action"):
        super().__init__(message)


class ValidationError(DomainError):
    status_code = 422


class MissingParameterError(ValidationError):
    status_code = 400

    def __init__(self, param: str):
        super().__init__(f"{param} is required", param=param)
        self.param = param


class InvalidMoveError(ValidationError):
    """Raised when an outcome group cannot be moved to the requested parent."""
