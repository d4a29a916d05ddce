"""
Render configuration.

RenderConfig is an immutable value passed to every render call. Changing
the template or any setting produces a new value; nothing is shared between
renders. RenderConfigStore persists a configuration as JSON and is only
used outside the render path.
"""

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

_HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"

_FROZEN = {"frozen": True}


class Colors(BaseModel):
    """Palette of a template."""

    primary: str = Field("#3B82F6", pattern=_HEX_COLOR)
    secondary: str = Field("#1E40AF", pattern=_HEX_COLOR)
    accent: str = Field("#10B981", pattern=_HEX_COLOR)
    background: str = Field("#F8FAFC", pattern=_HEX_COLOR)
    text: str = Field("#1F2937", pattern=_HEX_COLOR)
    success: str = Field("#059669", pattern=_HEX_COLOR)
    warning: str = Field("#D97706", pattern=_HEX_COLOR)
    error: str = Field("#DC2626", pattern=_HEX_COLOR)

    model_config = _FROZEN


TEMPLATES: dict[str, Colors] = {
    "moderne": Colors(),
    "classique": Colors(
        primary="#1E3A8A",
        secondary="#1E40AF",
        accent="#3B82F6",
        background="#F1F5F9",
        text="#0F172A",
        success="#166534",
        warning="#92400E",
        error="#991B1B",
    ),
    "minimaliste": Colors(
        primary="#000000",
        secondary="#374151",
        accent="#6B7280",
        background="#FFFFFF",
        text="#111827",
        success="#374151",
        warning="#6B7280",
        error="#000000",
    ),
}


class Margins(BaseModel):
    """Page margins in points."""

    top: float = Field(50, ge=0)
    bottom: float = Field(50, ge=0)
    left: float = Field(40, ge=0)
    right: float = Field(40, ge=0)

    model_config = _FROZEN


class FontSpec(BaseModel):
    size: float = Field(12, gt=0)
    weight: Literal["normal", "bold"] = "normal"

    model_config = _FROZEN

    @property
    def name(self) -> str:
        """Built-in font name; built-in fonts need no file access."""
        return "Helvetica-Bold" if self.weight == "bold" else "Helvetica"


class Fonts(BaseModel):
    title: FontSpec = FontSpec(size=20, weight="bold")
    subtitle: FontSpec = FontSpec(size=16, weight="bold")
    header: FontSpec = FontSpec(size=14, weight="bold")
    body: FontSpec = FontSpec(size=12)
    small: FontSpec = FontSpec(size=10)
    tiny: FontSpec = FontSpec(size=8)

    model_config = _FROZEN


class PageLayout(BaseModel):
    page_size: Literal["A4", "LETTER", "LEGAL"] = "A4"
    orientation: Literal["portrait", "landscape"] = "portrait"
    margins: Margins = Margins()
    fonts: Fonts = Fonts()

    model_config = _FROZEN


class HeaderSection(BaseModel):
    enabled: bool = True
    show_company_info: bool = True
    show_document_info: bool = True
    height: float = Field(120, ge=0)

    model_config = _FROZEN


class ClientInfoSection(BaseModel):
    enabled: bool = True
    show_email: bool = True
    show_phone: bool = True
    background_color: bool = True

    model_config = _FROZEN


class TableSection(BaseModel):
    enabled: bool = True
    alternate_rows: bool = True
    header_background: bool = True
    show_borders: bool = True

    model_config = _FROZEN


class TotalsSection(BaseModel):
    enabled: bool = True
    show_background: bool = True
    show_borders: bool = True
    position: Literal["left", "center", "right"] = "right"

    model_config = _FROZEN


class FooterSection(BaseModel):
    enabled: bool = True
    show_page_numbers: bool = True
    show_company_info: bool = True
    show_notes: bool = True
    height: float = Field(80, ge=0)

    model_config = _FROZEN


class Sections(BaseModel):
    header: HeaderSection = HeaderSection()
    client_info: ClientInfoSection = ClientInfoSection()
    table: TableSection = TableSection()
    totals: TotalsSection = TotalsSection()
    footer: FooterSection = FooterSection()

    model_config = _FROZEN


class CurrencyFormat(BaseModel):
    """Fallback currency formatting for codes without a built-in style."""

    symbol: str = "€"
    position: Literal["before", "after"] = "after"
    decimals: int = Field(2, ge=0, le=6)
    locale: str = "fr-FR"

    model_config = _FROZEN


class DateFormat(BaseModel):
    """Date pattern built from the tokens YYYY, YY, MM and DD."""

    format: str = "DD/MM/YYYY"
    locale: str = "fr-FR"

    model_config = _FROZEN


class NumberFormat(BaseModel):
    decimals: int = Field(2, ge=0, le=6)
    thousands_separator: str = " "
    decimal_separator: str = ","

    model_config = _FROZEN


class Formatting(BaseModel):
    currency: CurrencyFormat = CurrencyFormat()
    dates: DateFormat = DateFormat()
    numbers: NumberFormat = NumberFormat()

    model_config = _FROZEN


class Labels(BaseModel):
    client_info: str = "Facturé à :"
    numero: str = "N° :"
    date_emission: str = "Date :"
    date_echeance: str = "Échéance :"
    total_ht: str = "Total HT :"
    frais_administratif: str = "Frais administratifs :"
    total_tva: str = "Total TVA :"
    total_ttc: str = "TOTAL TTC :"
    payment_terms: str = "Conditions de paiement :"
    notes: str = "Notes :"

    model_config = _FROZEN


class FooterTexts(BaseModel):
    payment_terms: str = "30 jours net à réception de facture"
    legal_notice: str = "En cas de retard de paiement, des pénalités de retard seront appliquées."

    model_config = _FROZEN


class DocumentTitles(BaseModel):
    """Header title per document type."""

    facture: str = "FACTURE"
    proforma: str = "FACTURE PROFORMA"
    devis: str = "DEVIS"

    model_config = _FROZEN


class Texts(BaseModel):
    document_types: DocumentTitles = DocumentTitles()
    labels: Labels = Labels()
    footer: FooterTexts = FooterTexts()

    model_config = _FROZEN


class Company(BaseModel):
    """Issuer identity printed in the header and footer."""

    name: str = ""
    address: str = ""
    city: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    siret: str = ""
    tva: str = ""

    model_config = _FROZEN


class RenderConfig(BaseModel):
    """
    Complete render configuration.

    Usage:
        config = RenderConfig().with_template("classique")
        config = config.merged({"formatting": {"dates": {"format": "YYYY-MM-DD"}}})
    """

    template: str = "moderne"
    colors: Colors = Colors()
    layout: PageLayout = PageLayout()
    sections: Sections = Sections()
    formatting: Formatting = Formatting()
    texts: Texts = Texts()
    company: Company = Company()

    model_config = _FROZEN

    def with_template(self, name: str) -> "RenderConfig":
        """
        Copy of this configuration using a built-in template palette.

        Raises:
            ValueError: If the template does not exist
        """
        if name not in TEMPLATES:
            raise ValueError(
                f"Unknown template '{name}'. Available: {', '.join(sorted(TEMPLATES))}"
            )
        return self.model_copy(update={"template": name, "colors": TEMPLATES[name]})

    def merged(self, overrides: dict[str, Any]) -> "RenderConfig":
        """
        Copy of this configuration with overrides deep-merged in.

        Nested dicts merge key by key; any other value replaces the current one.

        Raises:
            ValueError: If the merged result is not a valid configuration
        """
        merged = _merge_deep(self.model_dump(), overrides)
        try:
            return RenderConfig.model_validate(merged)
        except ValidationError as e:
            raise ValueError(f"Invalid render configuration: {e}") from e


def _merge_deep(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_deep(result[key], value)
        else:
            result[key] = value
    return result


class RenderConfigStore:
    """
    JSON file holding a RenderConfig.

    Usage:
        store = RenderConfigStore("config/pdf-config.json")
        config = store.load()
        store.save(config.with_template("minimaliste"))
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RenderConfig:
        """
        Read the stored configuration. A missing file yields the defaults.

        Raises:
            ValueError: If the file exists but does not hold a valid configuration
        """
        if not self.path.exists():
            logger.info(f"No render configuration at {self.path}, using defaults")
            return RenderConfig()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return RenderConfig.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Invalid render configuration in {self.path}: {e}")
            raise ValueError(f"Invalid render configuration in {self.path}: {e}") from e

    def save(self, config: RenderConfig) -> None:
        """Write the configuration, creating parent directories as needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Saved render configuration ({config.template}) to {self.path}")
