"""Core domain models."""

from core.models.line_item import LineItem, LineItemCreate, quantize_amount
from core.models.document import (
    Document,
    DocumentCreate,
    DocumentUpdate,
    DocumentSummary,
    DocumentDetail,
    DocumentSearch,
    DocumentType,
    CategorieFacture,
    DocumentStatus,
    STATUS_TRANSITIONS,
    can_transition,
)

__all__ = [
    # LineItem
    "LineItem", "LineItemCreate", "quantize_amount",
    # Document
    "Document", "DocumentCreate", "DocumentUpdate", "DocumentSummary",
    "DocumentDetail", "DocumentSearch",
    # Enums
    "DocumentType", "CategorieFacture", "DocumentStatus",
    "STATUS_TRANSITIONS", "can_transition",
]
