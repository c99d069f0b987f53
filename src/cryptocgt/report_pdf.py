import io
from typing import Any, List, Optional

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.units import inch

from .reporting import breakdown_table, events_table, summary_totals
from .schemas import TaxSummary


def _escape(txt: str) -> str:
    # basic HTML escaping so Paragraph does not choke
    return txt.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _make_wrapped_table(data: List[List[Any]], styles, page_width_pts: float) -> Table:
    """
    Create a wrapped table that fits the page width.
    - data[0] is the header row.
    - Column widths follow the text length of the header + first 50 rows, within bounds.
    """
    wrap_style = ParagraphStyle(
        "WrapSmall",
        parent=styles["Normal"],
        fontSize=8,
        leading=10,
        wordWrap="CJK",
    )

    wrapped: List[List[Paragraph]] = [
        [Paragraph(_escape("" if c is None else str(c)), wrap_style) for c in row] for row in data
    ]

    ncols = len(data[0]) if data else 0
    if ncols == 0:
        t = Table(wrapped, hAlign="LEFT")
        t.setStyle(TableStyle([("GRID", (0, 0), (-1, -1), 0.25, colors.black)]))
        return t

    weights = [0] * ncols
    for row in data[: min(len(data), 51)]:
        for i, cell in enumerate(row):
            s = "" if cell is None else str(cell)
            weights[i] += max(1, min(len(s), 80))  # cap to avoid over-influence

    total_w = sum(weights) or ncols
    usable_width = page_width_pts - (0.8 * inch)  # be conservative
    min_w = 0.7 * inch
    max_w = 1.8 * inch

    col_widths = [max(min_w, min(max_w, (w / total_w) * usable_width)) for w in weights]
    total = sum(col_widths)
    if total > 0:
        scale = usable_width / total
        col_widths = [cw * scale for cw in col_widths]

    t = Table(wrapped, hAlign="LEFT", colWidths=col_widths, repeatRows=1)
    t.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("LEADING", (0, 0), (-1, -1), 10),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ("TOPPADDING", (0, 0), (-1, -1), 3),
            ]
        )
    )
    return t


def build_summary_pdf(
    summary: TaxSummary,
    title: str = "Crypto Capital Gains Summary",
    tax_year: Optional[str] = None,
) -> bytes:
    """
    Render a TaxSummary as PDF bytes:
      - title + optional tax year label
      - totals (gains, losses, exemption, taxable amount, estimated tax)
      - per-asset breakdown
      - disposal events
      - warnings, if any disposals were skipped or zero-cost matched
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
    )
    page_width = doc.width + doc.leftMargin + doc.rightMargin
    styles = getSampleStyleSheet()
    story = []

    story.append(Paragraph(_escape(title), styles["Title"]))
    if tax_year is not None:
        story.append(Paragraph(f"Tax Year: {_escape(tax_year)}", styles["Normal"]))
    story.append(
        Paragraph(
            f"Matching: {summary.matching_strategy.value} | "
            f"Unmatched disposals: {summary.unmatched_policy.value}",
            styles["Normal"],
        )
    )
    story.append(Spacer(1, 12))

    story.append(Paragraph("Totals", styles["Heading2"]))
    data = [["Field", "Value"]] + [[k, v] for k, v in summary_totals(summary).items()]
    story.append(_make_wrapped_table(data, styles, page_width))
    story.append(Spacer(1, 10))

    if summary.events:
        story.append(Paragraph("Asset Breakdown", styles["Heading2"]))
        story.append(_make_wrapped_table(breakdown_table(summary.events), styles, page_width))
        story.append(Spacer(1, 10))

        story.append(Paragraph("Disposals", styles["Heading2"]))
        story.append(_make_wrapped_table(events_table(summary.events), styles, page_width))
    else:
        story.append(Paragraph("No disposals to display.", styles["Normal"]))

    if summary.warnings:
        story.append(Spacer(1, 10))
        story.append(Paragraph("Warnings", styles["Heading2"]))
        for w in summary.warnings:
            story.append(Paragraph(_escape(w), styles["Normal"]))

    doc.build(story)
    return buffer.getvalue()
