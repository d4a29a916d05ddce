"""Line item domain models.

Amounts are Decimal with two fraction digits. Rates are percentages
(20 = 20%). Transport fields are optional and only shown on transport
documents.
"""

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

CENT = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class LineItemCreate(BaseModel):
    """Data required to create a line item."""

    description: str = Field("", max_length=500)
    quantite: Decimal = Field(Decimal("1"), ge=0)
    prix_unitaire: Decimal = Field(Decimal("0"), ge=0)
    taux_tva: Decimal | None = Field(None, ge=0, le=100)
    montant_ht: Decimal | None = Field(None, ge=0)
    montant_tva: Decimal | None = Field(None, ge=0)
    montant_ttc: Decimal | None = Field(None, ge=0)
    ordre: int = Field(0, ge=0)

    # Transport
    item: str | None = Field(None, max_length=100)
    date_transport: date | None = None
    plaque_immat: str | None = Field(None, max_length=100)
    ticket: str | None = Field(None, max_length=100)
    tonnes: Decimal | None = Field(None, ge=0)
    total_poids: Decimal | None = Field(None, ge=0)
    frais_administratif: Decimal = Field(Decimal("0"), ge=0)
    unite: str | None = Field(None, max_length=20)

    @model_validator(mode="after")
    def compute_amounts_if_missing(self) -> "LineItemCreate":
        """Fill montant_ht, montant_tva and montant_ttc from quantity, price and rate."""
        if self.montant_ht is None:
            self.montant_ht = quantize_amount(self.quantite * self.prix_unitaire)
        if self.montant_tva is None and self.taux_tva is not None:
            self.montant_tva = quantize_amount(self.montant_ht * self.taux_tva / 100)
        if self.montant_ttc is None and self.montant_tva is not None:
            self.montant_ttc = self.montant_ht + self.montant_tva
        return self

    @property
    def has_line_vat(self) -> bool:
        """Whether this line carries its own VAT amount."""
        return self.montant_tva is not None


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    document_id: UUID
    description: str | None
    quantite: Decimal
    prix_unitaire: Decimal
    taux_tva: Decimal | None
    montant_ht: Decimal
    montant_tva: Decimal | None
    montant_ttc: Decimal | None
    ordre: int
    item: str | None = None
    date_transport: date | None = None
    plaque_immat: str | None = None
    ticket: str | None = None
    tonnes: Decimal | None = None
    total_poids: Decimal | None = None
    frais_administratif: Decimal = Decimal("0")
    unite: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def has_line_vat(self) -> bool:
        """Whether this line carries its own VAT amount."""
        return self.montant_tva is not None

    def to_create(self) -> LineItemCreate:
        """Copy of this line, detached from its document."""
        return LineItemCreate.model_validate(
            self.model_dump(exclude={"id", "document_id", "created_at", "updated_at"}, exclude_none=True)
        )
