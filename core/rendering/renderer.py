"""
PDF rendering of documents with reportlab.

The renderer draws a LayoutPlan onto a canvas backed by an in-memory
buffer and returns the bytes. It touches neither the filesystem nor the
network, and holds no state between calls. The canvas is created with
invariant=1, so the same document, items and configuration always give
byte-identical output.
"""

import logging
from io import BytesIO
from typing import Any

from reportlab.lib import colors
from reportlab.pdfgen import canvas

from core.exceptions import RenderError
from core.rendering.config import RenderConfig
from core.rendering.layout import (
    BOX_PADDING,
    BLOCK_GAP,
    CELL_PADDING,
    ROW_PADDING,
    LayoutPlan,
    Page,
    build_layout,
)

logger = logging.getLogger(__name__)

_WHITE = colors.white


class DocumentRenderer:
    """
    Renders a document and its items to PDF bytes.

    Usage:
        renderer = DocumentRenderer()
        detail = document_service.find_by_id_with_items(document_id)
        pdf_bytes = renderer.render(detail, detail.items, RenderConfig())
    """

    def layout(self, document: Any, items: list[Any], config: RenderConfig | None = None) -> LayoutPlan:
        """
        Paginate without drawing.

        Raises:
            RenderError: If a required value cannot be formatted
        """
        return build_layout(document, list(items), config or RenderConfig())

    def render(self, document: Any, items: list[Any], config: RenderConfig | None = None) -> bytes:
        """
        Render a document to a standalone PDF.

        Args:
            document: Document header with display fields (DocumentDetail or mapping)
            items: Line items in display order
            config: Render configuration (defaults when omitted)

        Returns:
            PDF file content

        Raises:
            RenderError: If a value cannot be formatted or drawn. No partial
                output is returned.
        """
        config = config or RenderConfig()
        plan = self.layout(document, items, config)

        buffer = BytesIO()
        try:
            pdf = canvas.Canvas(
                buffer,
                pagesize=(plan.page_width, plan.page_height),
                invariant=1,
            )
            if plan.header is not None:
                pdf.setTitle(f"{plan.header.title} {plan.header.numero}".strip())

            drawer = _PageDrawer(pdf, plan, config)
            for page in plan.pages:
                drawer.draw(page)
                pdf.showPage()
            pdf.save()
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"PDF drawing failed: {e}")
            raise RenderError(f"PDF drawing failed: {e}") from e

        content = buffer.getvalue()
        logger.info(f"Rendered {len(items)} items on {plan.page_count} page(s), {len(content)} bytes")
        return content


class _PageDrawer:
    """Draws the blocks of one plan. Converts top-based positions to PDF coordinates."""

    def __init__(self, pdf: canvas.Canvas, plan: LayoutPlan, config: RenderConfig):
        self.pdf = pdf
        self.plan = plan
        self.config = config
        self.fonts = config.layout.fonts
        self.sections = config.sections
        self.palette = {
            name: colors.HexColor(value)
            for name, value in config.colors.model_dump().items()
        }

    def y(self, top: float) -> float:
        return self.plan.page_height - top

    def draw(self, page: Page) -> None:
        self.draw_background()
        if page.header_top is not None and self.plan.header is not None:
            self.draw_header(page.header_top)
        if page.info_top is not None and self.plan.info is not None:
            self.draw_info(page.info_top)
        if page.table_top is not None:
            self.draw_table_header(page.table_top)
        for row in page.rows:
            self.draw_row(row)
        if page.totals_top is not None and self.plan.totals is not None:
            self.draw_totals(page.totals_top)
        if page.footer_top is not None and self.plan.footer is not None:
            self.draw_footer(page.footer_top)
        if self.sections.footer.show_page_numbers:
            self.draw_page_number(page.number)

    def draw_background(self) -> None:
        if self.config.colors.background.upper() == "#FFFFFF":
            return
        self.pdf.setFillColor(self.palette["background"])
        self.pdf.rect(0, 0, self.plan.page_width, self.plan.page_height, stroke=0, fill=1)

    def draw_header(self, top: float) -> None:
        pdf = self.pdf
        header = self.plan.header
        margins = self.plan.margins
        title_font = self.fonts.title
        small = self.fonts.small
        right = self.plan.page_width - margins.right

        pdf.setFillColor(self.palette["primary"])
        pdf.setFont(title_font.name, title_font.size)
        cursor = top + title_font.size
        pdf.drawString(margins.left, self.y(cursor), header.title)

        pdf.setFillColor(self.palette["text"])
        if self.sections.header.show_document_info:
            pdf.setFont(small.name, small.size)
            for label, value in header.document_lines:
                cursor += small.size * 1.4
                pdf.drawString(margins.left, self.y(cursor), f"{label} {value}")

        if self.sections.header.show_company_info and header.company_lines:
            subtitle = self.fonts.header
            pdf.setFillColor(self.palette["secondary"])
            pdf.setFont(subtitle.name, subtitle.size)
            cursor = top + subtitle.size
            pdf.drawRightString(right, self.y(cursor), header.company_lines[0])

            pdf.setFillColor(self.palette["text"])
            pdf.setFont(small.name, small.size)
            for line in header.company_lines[1:]:
                cursor += small.size * 1.4
                pdf.drawRightString(right, self.y(cursor), line)

    def draw_info(self, top: float) -> None:
        pdf = self.pdf
        info = self.plan.info
        margins = self.plan.margins
        small = self.fonts.small
        line_height = small.size * 1.25
        width = (self.plan.page_width - margins.left - margins.right) / 2

        if self.sections.client_info.background_color:
            pdf.setFillColor(self.palette["background"])
            pdf.setStrokeColor(self.palette["accent"])
            pdf.rect(margins.left, self.y(top + info.height), width, info.height, stroke=1, fill=1)

        pdf.setFillColor(self.palette["primary"])
        pdf.setFont("Helvetica-Bold", small.size)
        cursor = top + BOX_PADDING + small.size
        pdf.drawString(margins.left + BOX_PADDING, self.y(cursor), info.label)

        pdf.setFillColor(self.palette["text"])
        pdf.setFont(small.name, small.size)
        for line in info.lines:
            cursor += line_height
            pdf.drawString(margins.left + BOX_PADDING, self.y(cursor), line)

    def draw_table_header(self, top: float) -> None:
        pdf = self.pdf
        plan = self.plan
        left = plan.margins.left
        table_width = sum(column.width for column in plan.columns)
        font = plan.table_font

        if self.sections.table.header_background:
            pdf.setFillColor(self.palette["primary"])
            pdf.rect(left, self.y(top + plan.table_header_height), table_width, plan.table_header_height, stroke=0, fill=1)
            pdf.setFillColor(_WHITE)
        else:
            pdf.setFillColor(self.palette["text"])

        pdf.setFont("Helvetica-Bold", font.size)
        self._draw_cells(top, plan.header_labels)

    def draw_row(self, row) -> None:
        pdf = self.pdf
        plan = self.plan
        left = plan.margins.left
        table_width = sum(column.width for column in plan.columns)

        if self.sections.table.alternate_rows and row.item_index % 2:
            pdf.setFillColor(self.palette["background"])
            pdf.rect(left, self.y(row.top + row.height), table_width, row.height, stroke=0, fill=1)

        if self.sections.table.show_borders:
            pdf.setStrokeColor(self.palette["accent"])
            pdf.setLineWidth(0.5)
            pdf.line(left, self.y(row.top + row.height), left + table_width, self.y(row.top + row.height))

        pdf.setFillColor(self.palette["text"])
        pdf.setFont(plan.table_font.name, plan.table_font.size)
        self._draw_cells(row.top, row.cells)

    def _draw_cells(self, top: float, cells: list[list[str]]) -> None:
        pdf = self.pdf
        plan = self.plan
        x = plan.margins.left
        first_baseline = top + ROW_PADDING / 2 + plan.table_font.size

        for column, lines in zip(plan.columns, cells):
            baseline = first_baseline
            for line in lines:
                if column.align == "right":
                    pdf.drawRightString(x + column.width - CELL_PADDING, self.y(baseline), line)
                elif column.align == "center":
                    pdf.drawCentredString(x + column.width / 2, self.y(baseline), line)
                else:
                    pdf.drawString(x + CELL_PADDING, self.y(baseline), line)
                baseline += plan.line_height
            x += column.width

    def draw_totals(self, top: float) -> None:
        pdf = self.pdf
        totals = self.plan.totals
        margins = self.plan.margins
        body = self.fonts.body
        small = self.fonts.small
        line_height = body.size * 1.25
        usable_width = self.plan.page_width - margins.left - margins.right

        position = self.sections.totals.position
        if position == "left":
            left = margins.left
        elif position == "center":
            left = margins.left + (usable_width - totals.width) / 2
        else:
            left = margins.left + usable_width - totals.width

        box_top = top + BLOCK_GAP
        box_height = len(totals.lines) * line_height + 2 * BOX_PADDING
        if self.sections.totals.show_background or self.sections.totals.show_borders:
            pdf.setFillColor(self.palette["background"])
            pdf.setStrokeColor(self.palette["primary"])
            pdf.rect(
                left, self.y(box_top + box_height), totals.width, box_height,
                stroke=int(self.sections.totals.show_borders),
                fill=int(self.sections.totals.show_background),
            )

        cursor = box_top + BOX_PADDING
        last = len(totals.lines) - 1
        for index, (label, value) in enumerate(totals.lines):
            cursor += line_height
            if index == last:
                pdf.setFillColor(self.palette["primary"])
                pdf.setFont("Helvetica-Bold", body.size)
            else:
                pdf.setFillColor(self.palette["text"])
                pdf.setFont(body.name, body.size)
            pdf.drawString(left + BOX_PADDING, self.y(cursor - 3), label)
            pdf.drawRightString(left + totals.width - BOX_PADDING, self.y(cursor - 3), value)

        if totals.note_lines:
            cursor = box_top + box_height + BLOCK_GAP / 2
            pdf.setFillColor(self.palette["text"])
            pdf.setFont(small.name, small.size)
            for line in totals.note_lines:
                cursor += small.size * 1.25
                pdf.drawString(margins.left, self.y(cursor), line)

    def draw_footer(self, top: float) -> None:
        pdf = self.pdf
        footer = self.plan.footer
        margins = self.plan.margins
        tiny = self.fonts.tiny
        center = margins.left + (self.plan.page_width - margins.left - margins.right) / 2

        pdf.setStrokeColor(self.palette["accent"])
        pdf.setLineWidth(0.5)
        pdf.line(margins.left, self.y(top), self.plan.page_width - margins.right, self.y(top))

        pdf.setFillColor(self.palette["secondary"])
        pdf.setFont(tiny.name, tiny.size)
        cursor = top + BOX_PADDING / 2
        for line in footer.lines:
            cursor += tiny.size * 1.25
            pdf.drawCentredString(center, self.y(cursor), line)

    def draw_page_number(self, number: int) -> None:
        tiny = self.fonts.tiny
        self.pdf.setFillColor(self.palette["text"])
        self.pdf.setFont(tiny.name, tiny.size)
        self.pdf.drawRightString(
            self.plan.page_width - self.plan.margins.right,
            self.plan.margins.bottom / 2,
            f"Page {number} / {self.plan.page_count}",
        )
