"""Document domain models.

A document is an invoice, proforma or quote header. Its monetary totals
are derived from its line items; see core.totals.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.line_item import LineItem, LineItemCreate


class DocumentType(str, Enum):
    """Kind of document."""

    FACTURE = "facture"
    PROFORMA = "proforma"
    DEVIS = "devis"


class CategorieFacture(str, Enum):
    """Billing category. Transport documents carry weighbridge columns."""

    TRANSPORT = "transport"
    NON_TRANSPORT = "non-transport"


class DocumentStatus(str, Enum):
    """Document lifecycle status."""

    BROUILLON = "brouillon"
    EMISE = "emise"
    PAYEE = "payee"
    CONVERTI = "converti"
    ANNULE = "annule"


# Allowed status moves. Statuses absent as keys are terminal.
STATUS_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.BROUILLON: frozenset({DocumentStatus.EMISE, DocumentStatus.ANNULE}),
    DocumentStatus.EMISE: frozenset({
        DocumentStatus.PAYEE, DocumentStatus.CONVERTI, DocumentStatus.ANNULE
    }),
}


def can_transition(current: DocumentStatus, requested: DocumentStatus) -> bool:
    """Whether a document may move from current to requested status."""
    return requested in STATUS_TRANSITIONS.get(current, frozenset())


class DocumentCreate(BaseModel):
    """Data required to create a document with its line items."""

    numero: str | None = Field(None, max_length=100)
    type_document: DocumentType = DocumentType.FACTURE
    categorie_facture: CategorieFacture = CategorieFacture.NON_TRANSPORT
    client_id: UUID
    entreprise_id: UUID
    date_emission: date
    date_echeance: date | None = None
    statut: DocumentStatus = DocumentStatus.BROUILLON
    taux_tva: Decimal | None = Field(None, ge=0, le=100)
    montant_ht: Decimal | None = Field(None, ge=0)
    montant_tva: Decimal | None = Field(None, ge=0)
    montant_ttc: Decimal | None = Field(None, ge=0)
    remise_globale: Decimal = Field(Decimal("0"), ge=0)
    frais_administratif: Decimal = Field(Decimal("0"), ge=0)
    devise: str = Field("EUR", pattern=r"^[A-Z]{3}$")
    conditions_paiement: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)
    document_origine_id: UUID | None = None
    items: list[LineItemCreate] | None = None

    @model_validator(mode="after")
    def check_due_date(self) -> "DocumentCreate":
        """Due date cannot precede the issue date."""
        if self.date_echeance is not None and self.date_echeance < self.date_emission:
            raise ValueError("date_echeance must not be before date_emission")
        return self


class DocumentUpdate(BaseModel):
    """Data that can be updated on a document. All fields optional.

    When items is given the whole item set is replaced.
    """

    client_id: UUID | None = None
    date_emission: date | None = None
    date_echeance: date | None = None
    taux_tva: Decimal | None = Field(None, ge=0, le=100)
    montant_ht: Decimal | None = Field(None, ge=0)
    montant_tva: Decimal | None = Field(None, ge=0)
    montant_ttc: Decimal | None = Field(None, ge=0)
    remise_globale: Decimal | None = Field(None, ge=0)
    frais_administratif: Decimal | None = Field(None, ge=0)
    devise: str | None = Field(None, pattern=r"^[A-Z]{3}$")
    conditions_paiement: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)
    items: list[LineItemCreate] | None = None


class Document(BaseModel):
    """Full document header as stored."""

    id: UUID
    numero: str
    type_document: DocumentType
    categorie_facture: CategorieFacture
    client_id: UUID
    entreprise_id: UUID
    date_emission: date
    date_echeance: date | None
    statut: DocumentStatus
    taux_tva: Decimal | None
    montant_ht: Decimal
    montant_tva: Decimal
    montant_ttc: Decimal
    remise_globale: Decimal
    frais_administratif: Decimal
    devise: str
    conditions_paiement: str | None = None
    notes: str | None = None
    document_origine_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_transport(self) -> bool:
        """Whether the document uses the transport layout."""
        return self.categorie_facture == CategorieFacture.TRANSPORT

    @property
    def is_proforma(self) -> bool:
        """Whether the document is a proforma."""
        return self.type_document == DocumentType.PROFORMA


class DocumentSummary(Document):
    """Document with the entreprise and client display fields used in listings."""

    entreprise_nom: str | None = None
    entreprise_adresse: str | None = None
    entreprise_telephone: str | None = None
    client_nom: str | None = None


class DocumentDetail(DocumentSummary):
    """Document with full party details and its line items in render order."""

    entreprise_email: str | None = None
    client_adresse: str | None = None
    client_ville: str | None = None
    client_telephone: str | None = None
    client_email: str | None = None
    items: list[LineItem] = Field(default_factory=list)


class DocumentSearch(BaseModel):
    """Search criteria. Every filter is optional."""

    entreprise_id: UUID | None = None
    client_id: UUID | None = None
    statut: DocumentStatus | None = None
    type_document: DocumentType | None = None
    date_debut: date | None = None
    date_fin: date | None = None
    numero: str | None = Field(None, max_length=100)
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_date_range(self) -> "DocumentSearch":
        """date_fin cannot precede date_debut."""
        if self.date_debut and self.date_fin and self.date_fin < self.date_debut:
            raise ValueError("date_fin must not be before date_debut")
        return self
