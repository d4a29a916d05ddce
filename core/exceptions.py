"""Typed exceptions for the document engine."""


class DocumentError(Exception):
    """Base class for document engine errors."""


class DocumentValidationError(DocumentError):
    """
    Payload is malformed or missing required fields.

    Raised before anything reaches the database.
    """


class NotFoundError(DocumentError):
    """Referenced document, client or entreprise does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidFormatError(DocumentError):
    """A document number does not match the numbering grammar."""


class NumberingConflictError(DocumentError):
    """
    Another document already holds this numero.

    Retryable: the fallback generator is not collision-free under
    concurrent callers, so the caller may simply try again.
    """

    retryable = True

    def __init__(self, numero: str | None):
        self.numero = numero
        super().__init__(f"Document number already in use: {numero}")


class TransactionFailure(DocumentError):
    """
    The create/update transaction failed and was rolled back.

    The driver error is chained as __cause__.
    """


class StatusTransitionError(DocumentError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move document from '{current}' to '{requested}'")


class RenderError(DocumentError):
    """Layout hit a value it cannot format. The render is aborted."""
