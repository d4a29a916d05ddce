"""
Header totals derived from line items.

Two policies, chosen by the item set and never mixed:

- Per-line: every item carries montant_tva. HT and TVA are the sums of the
  stored line amounts; the administrative fee is taxed at the effective rate.
- Flat rate: no item carries montant_tva. TVA is the effective rate applied
  to HT (line amounts plus the administrative fee).

Sums run on unrounded Decimals; only the final HT and TVA are rounded to
cents (half up), and TTC is their exact sum.
"""

from decimal import Decimal
from typing import Iterable, Protocol

from pydantic import BaseModel

from core.config import DEFAULT_TAUX_TVA
from core.exceptions import DocumentValidationError
from core.models.line_item import quantize_amount


class _PricedLine(Protocol):
    montant_ht: Decimal | None
    montant_tva: Decimal | None

    @property
    def has_line_vat(self) -> bool: ...


class Totals(BaseModel):
    """Header-level totals."""

    montant_ht: Decimal
    montant_tva: Decimal
    montant_ttc: Decimal
    taux_tva: Decimal
    frais_administratif: Decimal
    per_line: bool

    model_config = {"frozen": True}


def calculate_totals(
    items: Iterable[_PricedLine],
    frais_administratif: Decimal | None = None,
    taux_tva: Decimal | None = None,
) -> Totals:
    """
    Compute HT/TVA/TTC for a set of line items.

    Args:
        items: Line items (LineItemCreate or LineItem)
        frais_administratif: Flat administrative fee added to HT. None means zero.
        taux_tva: Effective VAT rate in percent. None means DEFAULT_TAUX_TVA.

    Returns:
        Totals with amounts rounded to cents

    Raises:
        DocumentValidationError: If some items carry per-line VAT and others don't
    """
    lines = list(items)
    fee = Decimal(frais_administratif or 0)
    rate = Decimal(DEFAULT_TAUX_TVA if taux_tva is None else taux_tva)

    with_vat = [line for line in lines if line.has_line_vat]
    if with_vat and len(with_vat) != len(lines):
        raise DocumentValidationError(
            "Line items mix per-line VAT amounts and bare amounts; "
            "give every line a taux_tva or none of them"
        )

    sum_ht = sum((Decimal(line.montant_ht or 0) for line in lines), Decimal("0"))
    raw_ht = sum_ht + fee
    per_line = bool(lines) and len(with_vat) == len(lines)

    if per_line:
        raw_tva = sum((Decimal(line.montant_tva) for line in lines), Decimal("0"))
        raw_tva += fee * rate / 100
    else:
        raw_tva = raw_ht * rate / 100

    ht = quantize_amount(raw_ht)
    tva = quantize_amount(raw_tva)

    return Totals(
        montant_ht=ht,
        montant_tva=tva,
        montant_ttc=ht + tva,
        taux_tva=rate,
        frais_administratif=quantize_amount(fee),
        per_line=per_line,
    )
