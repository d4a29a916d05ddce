"""
Page layout of a rendered document.

build_layout() turns a document, its items and a RenderConfig into a
LayoutPlan without drawing anything: every value is formatted and every
row is assigned a page and a position first, so formatting failures abort
before a single byte of PDF is produced.

Positions are measured in points from the top edge of the page.

Page automaton:

    page 1:   header -> client box -> table header -> rows
    page n:   table header -> rows
    last:     ... -> totals block -> footer

A row moves to the next page when its bottom plus the space reserved for
the totals block and the footer would cross the bottom margin. The table
header is re-emitted at the top of every continuation page. A row that
does not fit on an empty continuation page fails the layout.
"""

import logging
from collections.abc import Mapping
from typing import Any, NamedTuple

from pydantic import BaseModel, Field
from reportlab.lib.pagesizes import A4, LEGAL, LETTER, landscape, portrait
from reportlab.pdfbase.pdfmetrics import stringWidth

from core.exceptions import RenderError
from core.models.line_item import quantize_amount
from core.rendering.config import FontSpec, Margins, RenderConfig
from core.rendering.formatting import (
    currency_style,
    format_currency,
    format_date,
    format_percent,
    format_quantity,
    parse_date,
    to_decimal,
)

logger = logging.getLogger(__name__)

PAGE_SIZES = {"A4": A4, "LETTER": LETTER, "LEGAL": LEGAL}

LINE_SPACING = 1.25
CELL_PADDING = 4
ROW_PADDING = 6
BLOCK_GAP = 15
BOX_PADDING = 8


class ColumnSpec(NamedTuple):
    key: str
    label: str
    width: float
    align: str


TRANSPORT_COLUMNS = (
    ColumnSpec("item", "Item", 40, "left"),
    ColumnSpec("date_transport", "Date", 50, "center"),
    ColumnSpec("plaque_immat", "Plaque", 50, "left"),
    ColumnSpec("description", "Description", 90, "left"),
    ColumnSpec("ticket", "Ticket", 40, "left"),
    ColumnSpec("tonnes", "Tonnes", 40, "right"),
    ColumnSpec("total_poids", "Total poids", 45, "right"),
    ColumnSpec("prix_unitaire", "Prix unitaire", 50, "right"),
    ColumnSpec("montant_ht", "Sous-total", 55, "right"),
    ColumnSpec("frais_administratif", "Frais admin.", 45, "right"),
    ColumnSpec("taux_tva", "Taux TVA", 35, "right"),
    ColumnSpec("montant_tva", "Montant TVA", 50, "right"),
    ColumnSpec("montant_ttc", "Total", 55, "right"),
)

STANDARD_COLUMNS = (
    ColumnSpec("description", "Description", 215, "left"),
    ColumnSpec("quantite", "Quantité", 60, "right"),
    ColumnSpec("prix_unitaire", "Prix unitaire", 80, "right"),
    ColumnSpec("taux_tva", "Taux TVA", 60, "right"),
    ColumnSpec("montant_ht", "Sous-total", 100, "right"),
)


class Column(BaseModel):
    key: str
    label: str
    width: float
    align: str


class Row(BaseModel):
    """One line item placed on a page. cells holds the wrapped lines per column."""

    item_index: int
    top: float
    height: float
    cells: list[list[str]]


class Page(BaseModel):
    """Placement of blocks on one page. None means the block is not on this page."""

    number: int
    header_top: float | None = None
    info_top: float | None = None
    table_top: float | None = None
    rows: list[Row] = Field(default_factory=list)
    totals_top: float | None = None
    footer_top: float | None = None


class HeaderBlock(BaseModel):
    title: str
    numero: str
    company_lines: list[str]
    document_lines: list[tuple[str, str]]


class InfoBlock(BaseModel):
    label: str
    lines: list[str]
    height: float


class TotalsBlock(BaseModel):
    lines: list[tuple[str, str]]
    note_lines: list[str]
    width: float
    height: float


class FooterBlock(BaseModel):
    lines: list[str]
    height: float


class LayoutPlan(BaseModel):
    """Everything the renderer needs to draw, already formatted and placed."""

    page_width: float
    page_height: float
    margins: Margins
    table_font: FontSpec
    line_height: float
    columns: list[Column]
    header_labels: list[list[str]]
    table_header_height: float
    header: HeaderBlock | None = None
    info: InfoBlock | None = None
    totals: TotalsBlock | None = None
    footer: FooterBlock | None = None
    pages: list[Page]

    @property
    def page_count(self) -> int:
        return len(self.pages)


def _get(source: Any, key: str) -> Any:
    """Field of a model or a mapping."""
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def page_size(config: RenderConfig) -> tuple[float, float]:
    size = PAGE_SIZES[config.layout.page_size]
    if config.layout.orientation == "landscape":
        return landscape(size)
    return portrait(size)


def scale_columns(specs: tuple[ColumnSpec, ...], usable_width: float) -> list[Column]:
    """Declared widths, shrunk proportionally when they exceed the usable width."""
    declared = sum(spec.width for spec in specs)
    factor = usable_width / declared if declared > usable_width else 1
    return [
        Column(key=spec.key, label=spec.label, width=spec.width * factor, align=spec.align)
        for spec in specs
    ]


def wrap_text(value: str, max_width: float, font_name: str, font_size: float) -> list[str]:
    """
    Wrap text to max_width.

    Keeps whole words when possible and splits words longer than the width
    so nothing is truncated. Explicit newlines are kept.
    """

    def split_long_word(word: str) -> list[str]:
        parts: list[str] = []
        current = ""
        for char in word:
            if not current or stringWidth(current + char, font_name, font_size) <= max_width:
                current += char
            else:
                parts.append(current)
                current = char
        if current:
            parts.append(current)
        return parts or [word]

    lines: list[str] = []
    for paragraph in str(value).splitlines() or [""]:
        current_line = ""
        for word in paragraph.split():
            if stringWidth(word, font_name, font_size) > max_width:
                word_parts = split_long_word(word)
            else:
                word_parts = [word]
            for part in word_parts:
                candidate = f"{current_line} {part}".strip()
                if current_line and stringWidth(candidate, font_name, font_size) > max_width:
                    lines.append(current_line)
                    current_line = part
                else:
                    current_line = candidate
        lines.append(current_line)

    return lines or [""]


class _ItemFormatter:
    """Formats the cells of one line item for the current document."""

    def __init__(self, document: Any, config: RenderConfig):
        self.config = config
        self.devise = _get(document, "devise")
        self.separator = currency_style(self.devise, config).decimal_separator
        rate = _get(document, "taux_tva")
        self.document_rate = None if rate is None else to_decimal(rate, "taux_tva")

    def money(self, value: Any, field: str) -> str:
        return format_currency(value, self.devise, self.config, field)

    def cells(self, item: Any, index: int) -> dict[str, str]:
        label = f"item {index + 1}"

        quantite = to_decimal(_get(item, "quantite"), f"{label} quantite")
        prix = to_decimal(_get(item, "prix_unitaire"), f"{label} prix_unitaire")

        ht = _get(item, "montant_ht")
        ht = quantize_amount(quantite * prix) if ht is None else to_decimal(ht, f"{label} montant_ht")

        rate = _get(item, "taux_tva")
        rate = self.document_rate if rate is None else to_decimal(rate, f"{label} taux_tva")

        tva = _get(item, "montant_tva")
        if tva is not None:
            tva = to_decimal(tva, f"{label} montant_tva")
        elif rate is not None:
            tva = quantize_amount(ht * rate / 100)

        ttc = _get(item, "montant_ttc")
        if ttc is not None:
            ttc = to_decimal(ttc, f"{label} montant_ttc")
        elif tva is not None:
            ttc = ht + tva

        fee = _get(item, "frais_administratif")

        cells = {
            "item": _text(_get(item, "item")),
            "date_transport": format_date(
                _get(item, "date_transport"),
                self.config.formatting.dates.format,
                f"{label} date_transport",
            ),
            "plaque_immat": _text(_get(item, "plaque_immat")),
            "description": _text(_get(item, "description")),
            "ticket": _text(_get(item, "ticket")),
            "tonnes": self.optional_quantity(_get(item, "tonnes"), f"{label} tonnes"),
            "total_poids": self.optional_quantity(_get(item, "total_poids"), f"{label} total_poids"),
            "quantite": format_quantity(quantite, self.separator),
            "prix_unitaire": self.money(prix, f"{label} prix_unitaire"),
            "montant_ht": self.money(ht, f"{label} montant_ht"),
            "frais_administratif": self.money(0 if fee is None else fee, f"{label} frais_administratif"),
            "taux_tva": "" if rate is None else format_percent(rate, self.separator),
            "montant_tva": "" if tva is None else self.money(tva, f"{label} montant_tva"),
            "montant_ttc": "" if ttc is None else self.money(ttc, f"{label} montant_ttc"),
        }
        return cells

    def optional_quantity(self, value: Any, field: str) -> str:
        if value is None or value == "":
            return ""
        return format_quantity(value, self.separator, field)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _line_height(font: FontSpec) -> float:
    return font.size * LINE_SPACING


def _build_header(document: Any, config: RenderConfig) -> HeaderBlock:
    labels = config.texts.labels
    pattern = config.formatting.dates.format
    type_value = _enum_value(_get(document, "type_document")) or "facture"

    emission = parse_date(_get(document, "date_emission"), "date_emission")
    document_lines = [
        (labels.numero, _text(_get(document, "numero"))),
        (labels.date_emission, format_date(emission, pattern)),
    ]
    echeance = _get(document, "date_echeance")
    if echeance is not None:
        document_lines.append((labels.date_echeance, format_date(echeance, pattern, "date_echeance")))

    company = config.company
    company_lines = [
        _get(document, "entreprise_nom") or company.name,
        _get(document, "entreprise_adresse") or company.address,
        company.city,
        _get(document, "entreprise_telephone") or company.phone,
        _get(document, "entreprise_email") or company.email,
    ]

    return HeaderBlock(
        title=getattr(config.texts.document_types, str(type_value), str(type_value).upper()),
        numero=_text(_get(document, "numero")),
        company_lines=[line for line in company_lines if line],
        document_lines=document_lines,
    )


def _build_info(document: Any, config: RenderConfig) -> InfoBlock:
    section = config.sections.client_info
    lines = [
        _get(document, "client_nom"),
        _get(document, "client_adresse"),
        _get(document, "client_ville"),
    ]
    if section.show_phone:
        lines.append(_get(document, "client_telephone"))
    if section.show_email:
        lines.append(_get(document, "client_email"))
    lines = [str(line) for line in lines if line]

    font = config.layout.fonts.small
    height = (len(lines) + 1) * _line_height(font) + 2 * BOX_PADDING
    return InfoBlock(label=config.texts.labels.client_info, lines=lines, height=height)


def _build_totals(document: Any, config: RenderConfig, usable_width: float) -> TotalsBlock:
    labels = config.texts.labels
    devise = _get(document, "devise")

    def money(field: str) -> str:
        return format_currency(_get(document, field), devise, config, field)

    lines = [(labels.total_ht, money("montant_ht"))]
    fee = _get(document, "frais_administratif")
    if fee is not None and to_decimal(fee, "frais_administratif") > 0:
        lines.append((labels.frais_administratif, money("frais_administratif")))
    lines.append((labels.total_tva, money("montant_tva")))
    lines.append((labels.total_ttc, money("montant_ttc")))

    width = min(240.0, usable_width)
    small = config.layout.fonts.small
    note_lines: list[str] = []
    if config.sections.footer.show_notes:
        terms = _get(document, "conditions_paiement") or config.texts.footer.payment_terms
        notes = _get(document, "notes")
        if terms:
            note_lines += wrap_text(f"{labels.payment_terms} {terms}", usable_width, small.name, small.size)
        if notes:
            note_lines += wrap_text(f"{labels.notes} {notes}", usable_width, small.name, small.size)

    body = config.layout.fonts.body
    height = (
        BLOCK_GAP
        + len(lines) * _line_height(body) + 2 * BOX_PADDING
        + (BLOCK_GAP / 2 + len(note_lines) * _line_height(small) if note_lines else 0)
    )
    return TotalsBlock(lines=lines, note_lines=note_lines, width=width, height=height)


def _build_footer(config: RenderConfig, usable_width: float) -> FooterBlock:
    company = config.company
    tiny = config.layout.fonts.tiny
    lines: list[str] = []

    if config.sections.footer.show_company_info:
        identity = " - ".join(part for part in (
            company.name,
            f"SIRET {company.siret}" if company.siret else "",
            f"TVA {company.tva}" if company.tva else "",
        ) if part)
        if identity:
            lines.append(identity)
        contact = " - ".join(part for part in (company.website, company.email) if part)
        if contact:
            lines.append(contact)

    if config.texts.footer.legal_notice:
        lines += wrap_text(config.texts.footer.legal_notice, usable_width, tiny.name, tiny.size)

    height = max(config.sections.footer.height, len(lines) * _line_height(tiny) + BOX_PADDING)
    return FooterBlock(lines=lines, height=height)


def build_layout(document: Any, items: list[Any], config: RenderConfig) -> LayoutPlan:
    """
    Paginate a document.

    Args:
        document: Document header (DocumentDetail or a mapping with the same keys)
        items: Line items in display order
        config: Render configuration

    Returns:
        LayoutPlan with at least one page

    Raises:
        RenderError: If a required value is not numeric, a date does not parse
            or a single row is taller than a continuation page
    """
    width, height = page_size(config)
    margins = config.layout.margins
    sections = config.sections
    fonts = config.layout.fonts

    usable_width = width - margins.left - margins.right
    bottom = height - margins.bottom

    is_transport = _enum_value(_get(document, "categorie_facture")) == "transport"
    columns = scale_columns(TRANSPORT_COLUMNS if is_transport else STANDARD_COLUMNS, usable_width)
    table_font = fonts.tiny if is_transport else fonts.small
    header_font = FontSpec(size=table_font.size, weight="bold")
    line_height = _line_height(table_font)

    header_labels = [
        wrap_text(column.label, column.width - 2 * CELL_PADDING, header_font.name, header_font.size)
        for column in columns
    ]
    table_header_height = max(len(lines) for lines in header_labels) * line_height + ROW_PADDING

    header = _build_header(document, config)
    info = _build_info(document, config) if sections.client_info.enabled else None
    totals = _build_totals(document, config, usable_width) if sections.totals.enabled else None
    footer = _build_footer(config, usable_width) if sections.footer.enabled else None

    formatter = _ItemFormatter(document, config)
    row_cells = []
    for index, item in enumerate(items):
        cells = formatter.cells(item, index)
        row_cells.append([
            wrap_text(cells[column.key], column.width - 2 * CELL_PADDING, table_font.name, table_font.size)
            for column in columns
        ])

    reserved = (totals.height if totals else 0) + (footer.height if footer else 0)

    page = Page(number=1)
    cursor = margins.top
    if sections.header.enabled:
        page.header_top = cursor
        cursor += sections.header.height + BLOCK_GAP
    if info is not None:
        page.info_top = cursor
        cursor += info.height + BLOCK_GAP

    pages: list[Page] = []
    if sections.table.enabled:
        page.table_top = cursor
        cursor += table_header_height
        max_row_height = bottom - margins.top - table_header_height

        for index, cells in enumerate(row_cells):
            row_height = max(len(lines) for lines in cells) * line_height + ROW_PADDING
            if row_height > max_row_height:
                raise RenderError(
                    f"item {index + 1} is too tall for one page "
                    f"({row_height:.1f}pt, at most {max_row_height:.1f}pt)"
                )
            fresh_page = page.number > 1 and not page.rows
            if cursor + row_height + reserved > bottom and not fresh_page:
                pages.append(page)
                page = Page(number=len(pages) + 1, table_top=margins.top)
                cursor = margins.top + table_header_height

            page.rows.append(Row(item_index=index, top=cursor, height=row_height, cells=cells))
            cursor += row_height

    # Only an oversized row or header block can leave too little room here
    if cursor + reserved > bottom and cursor > margins.top:
        pages.append(page)
        page = Page(number=len(pages) + 1)
        cursor = margins.top

    if totals is not None:
        page.totals_top = cursor
        cursor += totals.height
    if footer is not None:
        page.footer_top = max(cursor, bottom - footer.height)
    pages.append(page)

    logger.debug(f"Laid out {len(row_cells)} items on {len(pages)} page(s)")

    return LayoutPlan(
        page_width=width,
        page_height=height,
        margins=margins,
        table_font=table_font,
        line_height=line_height,
        columns=columns,
        header_labels=header_labels,
        table_header_height=table_header_height,
        header=header if sections.header.enabled else None,
        info=info,
        totals=totals,
        footer=footer,
        pages=pages,
    )
