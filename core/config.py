"""Document engine configuration."""

from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

DEFAULT_TAUX_TVA = Decimal("20")


class EngineConfig(BaseModel):
    """
    Settings for numbering, totals and search.

    Rates are percentages (20 = 20%), delays are in days.
    """

    # Totals
    default_taux_tva: Decimal = Field(
        default=DEFAULT_TAUX_TVA,
        description="Effective VAT rate used when items carry no per-line VAT",
        ge=0,
        le=100,
    )

    # Numbering
    default_prefix: str = Field(
        default="DOC",
        description="Numbering prefix when the entreprise has none",
        pattern=r"^[A-Z]+$",
    )
    temp_prefix: str = Field(
        default="TEMP",
        description="Prefix for temporary numbers on unnumbered document types",
    )

    # Conversion
    payment_delay_days: int = Field(
        default=30,
        description="Due date offset for invoices created from a proforma",
        ge=0,
        le=365,
    )

    # Dates
    timezone: str = Field(
        default="UTC",
        description="IANA timezone in which default issue dates are taken",
    )

    # Search
    search_default_limit: int = Field(
        default=50,
        description="Page size when the caller gives none",
        ge=1,
        le=100,
    )
    search_max_limit: int = Field(
        default=100,
        description="Upper bound on page size",
        ge=1,
        le=1000,
    )

    model_config = {"frozen": True}

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (KeyError, ValueError, ZoneInfoNotFoundError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value
