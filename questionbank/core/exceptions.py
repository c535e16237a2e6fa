"""
Exception hierarchy for the question bank.

Authorization and structural errors propagate to the API boundary where
`questionbank.main` renders them as JSON error bodies.
"""
from typing import Iterable, Optional, Union


class QBankError(Exception):
    """Base class for question bank errors."""

    status_code = 500
    error_type = "qbank_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"message": self.message, "type": self.error_type}
        if self.details:
            body["details"] = self.details
        return body


class PermissionDenied(QBankError):
    """The acting principal lacks a required capability."""

    status_code = 403
    error_type = "permission_denied"

    def __init__(self, capability: Union[str, Iterable[str]], message: Optional[str] = None):
        if not isinstance(capability, str):
            capability = ", ".join(capability)
        self.capability = capability
        super().__init__(message or f"Sorry, but you do not currently have permissions to do that ({capability}).",
                         {"capability": capability})


class CodingError(QBankError):
    """An internal invariant was violated or a parameter had an unexpected shape."""

    status_code = 400
    error_type = "coding_error"


class InvalidFilterError(CodingError):
    error_type = "invalid_filter"


class NotFoundError(QBankError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


class ValidationError(QBankError):
    status_code = 400
    error_type = "validation_error"
