"""
Document Exports

Renders discovery documents and demand letters as Word (python-docx) or PDF
(PyMuPDF). Every builder returns an ExportedFile holding the bytes, the MIME
type and a suggested filename.
"""

import io
import logging
from datetime import date
from typing import Callable, Optional
from dataclasses import dataclass

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH

from .complaint import ComplaintInformation
from .demand_letter import DemandLetterSections

logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MIME = "application/pdf"

# US Letter in points
PAGE_WIDTH = 612
PAGE_HEIGHT = 792
MARGIN = 72
FONT_SIZE = 11
LINE_HEIGHT = 15
TEXT_WIDTH = PAGE_WIDTH - 2 * MARGIN


@dataclass
class ExportedFile:
    data: bytes
    mime_type: str
    filename: str


@dataclass
class PdfBlock:
    """One paragraph of a PDF export. Empty text renders as a blank line."""
    text: str
    bold: bool = False
    center: bool = False


def _first_name_part(value: Optional[str], default: str) -> str:
    return (value or "").split(",")[0].strip() or default


def _save_docx(doc) -> bytes:
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def _labelled(doc, label: str, value: str):
    p = doc.add_paragraph()
    p.add_run(label).bold = True
    p.add_run(value)
    return p


def _add_lines(doc, text: str) -> None:
    for line in (text or "").splitlines():
        if line.strip():
            doc.add_paragraph(line.strip())


# =============================================================================
# Discovery documents (DOCX)
# =============================================================================

def build_rfa_docx(info: ComplaintInformation, definitions: list[str], admissions: list[str]) -> ExportedFile:
    """Request for Admissions with attorney block, court caption and signature."""
    doc = Document()
    attorney = info.attorney
    address = attorney.address if attorney else None

    doc.add_paragraph(attorney.name if attorney and attorney.name else "Attorney Name").runs[0].bold = True
    doc.add_paragraph(attorney.firm if attorney and attorney.firm else "Law Firm")
    doc.add_paragraph(address.street if address and address.street else "Street Address")
    doc.add_paragraph(
        f"{(address.city if address else None) or 'City'}, "
        f"{(address.state if address else None) or 'State'} {(address.zip if address else None) or ''}".rstrip()
    )
    doc.add_paragraph(f"Telephone: {(attorney.phone if attorney else None) or 'N/A'}")
    doc.add_paragraph(f"Facsimile: {(attorney.fax if attorney else None) or 'N/A'}")
    doc.add_paragraph(f"Email: {(attorney.email if attorney else None) or 'N/A'}")
    doc.add_paragraph(f"Attorney for {(attorney.attorney_for if attorney else None) or 'Plaintiff'},")

    county = (info.court.county if info.court and info.court.county else "COUNTY").upper()
    for line in ("SUPERIOR COURT OF THE STATE OF CALIFORNIA", f"FOR THE COUNTY OF {county}"):
        heading = doc.add_heading(line, level=1)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

    caption = doc.add_table(rows=1, cols=2)
    left, right = caption.rows[0].cells
    left.text = f"{info.plaintiff or 'Plaintiff Name,'}\n\nPlaintiff,\nvs.\n\n{info.defendant or 'Defendant Name,'}\n\nDefendants."
    right.text = f"Case No.: {info.case_number or 'N/A'}\n"
    title = right.add_paragraph()
    title.add_run("PLAINTIFF'S REQUEST FOR ADMISSIONS").bold = True
    right.add_paragraph().add_run("TO DEFENDANT, SET ONE").bold = True

    doc.add_paragraph()
    _labelled(doc, "PROPOUNDING PARTY: ", f"Plaintiff, {_first_name_part(info.plaintiff, 'PLAINTIFF')}")
    _labelled(doc, "RESPONDING PARTY: ", f"Defendant, {_first_name_part(info.defendant, 'DEFENDANT')}")
    _labelled(doc, "SET NUMBER: ", "ONE")

    doc.add_paragraph()
    doc.add_paragraph("TO ALL PARTIES HEREIN AND TO THEIR RESPECTIVE ATTORNEYS OF RECORD:")
    intro = doc.add_paragraph("Pursuant to California ")
    intro.add_run("Code of Civil Procedure Section 2033.010").underline = True
    intro.add_run(
        ", you are hereby requested to admit the truth of the following facts or assertions. "
        "Your response is due within thirty (30) days from the date of service."
    )

    doc.add_page_break()
    doc.add_paragraph().add_run("DEFINITIONS").bold = True
    for definition in definitions:
        doc.add_paragraph(definition)

    doc.add_paragraph()
    doc.add_paragraph().add_run("YOU ARE REQUESTED TO ADMIT THAT:").bold = True
    for i, admission in enumerate(admissions, 1):
        p = doc.add_paragraph()
        p.add_run(f"REQUEST FOR ADMISSION NO. {i}: ").bold = True
        p.add_run(admission)

    doc.add_paragraph()
    dated = doc.add_paragraph(f"Dated: {date.today().strftime('%B %d, %Y')}")
    dated.alignment = WD_ALIGN_PARAGRAPH.RIGHT
    for line in (
        (attorney.firm if attorney else None) or "Law Firm",
        "By: ______________________________",
        (attorney.name if attorney else None) or "Attorney Name",
        "Attorney for Plaintiff",
    ):
        doc.add_paragraph(line).alignment = WD_ALIGN_PARAGRAPH.RIGHT

    return ExportedFile(
        data=_save_docx(doc),
        mime_type=DOCX_MIME,
        filename=f"Request for Admissions - {_first_name_part(info.plaintiff, 'Plaintiff')}.docx",
    )


def build_rfp_docx(info: ComplaintInformation, definitions: list[str], productions: list[str]) -> ExportedFile:
    doc = Document()
    title = doc.add_heading("REQUEST FOR PRODUCTION OF DOCUMENTS", level=1)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    _labelled(doc, "Plaintiff: ", info.plaintiff or "")
    _labelled(doc, "Defendant: ", info.defendant or "")
    _labelled(doc, "Case Number: ", info.case_number or "")

    doc.add_heading("DEFINITIONS", level=2)
    for definition in definitions:
        doc.add_paragraph(definition, style="List Bullet")

    doc.add_heading("DOCUMENTS TO BE PRODUCED", level=2)
    for i, production in enumerate(productions, 1):
        doc.add_paragraph(f"{i}. {production}")

    return ExportedFile(
        data=_save_docx(doc),
        mime_type=DOCX_MIME,
        filename=f"Request for Production - {_first_name_part(info.plaintiff, 'Plaintiff')}.docx",
    )


def build_si_docx(info: ComplaintInformation, definitions: list[str], interrogatories: list[str]) -> ExportedFile:
    doc = Document()
    heading = doc.add_heading("SPECIAL INTERROGATORIES", level=1)
    heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

    case_number = (info.case_info.case_number if info.case_info else None) or info.case_number or "CASE-000"
    doc.add_paragraph(f"Case No.: {case_number}")
    doc.add_paragraph(f"Propounding Party: {info.plaintiff or 'PLAINTIFF'}")
    doc.add_paragraph(f"Responding Party: {info.defendant or 'DEFENDANT'}")
    doc.add_paragraph("Set Number: ONE")

    doc.add_heading("DEFINITIONS", level=2)
    for i, definition in enumerate(definitions, 1):
        doc.add_paragraph(f"{i}. {definition}")

    doc.add_heading("SPECIAL INTERROGATORIES", level=2)
    for i, interrogatory in enumerate(interrogatories, 1):
        doc.add_paragraph().add_run(f"INTERROGATORY NO. {i}:").bold = True
        doc.add_paragraph(interrogatory)

    return ExportedFile(
        data=_save_docx(doc),
        mime_type=DOCX_MIME,
        filename=f"Special Interrogatories - {_first_name_part(info.plaintiff, 'Plaintiff')}.docx",
    )


# =============================================================================
# Demand letter (DOCX)
# =============================================================================

OPTIONAL_SECTIONS = (
    ("medical_providers", "MEDICAL PROVIDERS"),
    ("injuries", "INJURIES SUSTAINED"),
    ("damages_summary", "DAMAGES"),
)


def build_demand_letter_docx(sections: DemandLetterSections) -> ExportedFile:
    doc = Document()
    doc.add_paragraph(sections.header).alignment = WD_ALIGN_PARAGRAPH.RIGHT
    doc.add_paragraph(sections.re_line)
    doc.add_paragraph(sections.salutation)
    _add_lines(doc, sections.opening_paragraph)

    for key, title in OPTIONAL_SECTIONS:
        body = getattr(sections, key)
        if body.strip():
            doc.add_heading(title, level=2)
            _add_lines(doc, body)

    doc.add_heading("SETTLEMENT DEMAND", level=2)
    _add_lines(doc, sections.settlement_demand)
    _add_lines(doc, sections.closing)

    doc.add_paragraph()
    doc.add_paragraph("Sincerely,")
    doc.add_paragraph()
    doc.add_paragraph("______________________________")
    doc.add_paragraph("Attorney Name")
    doc.add_paragraph("Attorney for Plaintiff")

    return ExportedFile(data=_save_docx(doc), mime_type=DOCX_MIME, filename="Demand Letter.docx")


# =============================================================================
# PDF
# =============================================================================

def wrap_to_width(paragraph: str, measure: Callable[[str], float], max_width: float) -> list[str]:
    """Greedy word wrap by rendered width. A word wider than a line is split."""
    lines, current = [], ""
    for word in paragraph.split():
        candidate = f"{current} {word}" if current else word
        if measure(candidate) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        while measure(word) > max_width and len(word) > 1:
            cut = len(word) - 1
            while cut > 1 and measure(word[:cut]) > max_width:
                cut -= 1
            lines.append(word[:cut])
            word = word[cut:]
        current = word
    if current:
        lines.append(current)
    return lines or [""]


def build_text_pdf(title: str, blocks: list[PdfBlock]) -> bytes:
    """
    Render a title and paragraphs onto as many Letter pages as needed.

    Lines are wrapped to the text width between the margins, measured in the
    rendering font; a new page starts when the next line would cross the
    bottom margin.
    """
    import fitz  # PyMuPDF

    doc = fitz.open()
    page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
    y = MARGIN

    def write(line: str, bold: bool = False, center: bool = False, size: float = FONT_SIZE):
        nonlocal page, y
        if y + LINE_HEIGHT > PAGE_HEIGHT - MARGIN:
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            y = MARGIN
        fontname = "hebo" if bold else "helv"
        x = MARGIN
        if center:
            width = fitz.get_text_length(line, fontname=fontname, fontsize=size)
            x = max(MARGIN, (PAGE_WIDTH - width) / 2)
        page.insert_text((x, y), line, fontname=fontname, fontsize=size)
        y += LINE_HEIGHT

    write(title, bold=True, center=True, size=FONT_SIZE + 3)
    y += LINE_HEIGHT

    for block in blocks:
        if not block.text.strip():
            y += LINE_HEIGHT
            continue
        for paragraph in block.text.splitlines():
            fontname = "hebo" if block.bold else "helv"
            lines = wrap_to_width(
                paragraph,
                lambda text: fitz.get_text_length(text, fontname=fontname, fontsize=FONT_SIZE),
                TEXT_WIDTH,
            )
            for line in lines:
                write(line, bold=block.bold, center=block.center)

    data = doc.tobytes()
    page_count = len(doc)
    doc.close()
    logger.debug(f"Rendered PDF '{title}' ({page_count} pages)")
    return data


def discovery_pdf_blocks(
    info: ComplaintInformation,
    item_heading: str,
    item_prefix: str,
    definitions: list[str],
    items: list[str],
) -> list[PdfBlock]:
    blocks = [
        PdfBlock(f"Plaintiff: {info.plaintiff or ''}"),
        PdfBlock(f"Defendant: {info.defendant or ''}"),
        PdfBlock(f"Case Number: {info.case_number or ''}"),
        PdfBlock(""),
        PdfBlock("DEFINITIONS", bold=True),
    ]
    blocks += [PdfBlock(f"{i}. {d}") for i, d in enumerate(definitions, 1)]
    blocks += [PdfBlock(""), PdfBlock(item_heading, bold=True)]
    for i, item in enumerate(items, 1):
        blocks.append(PdfBlock(f"{item_prefix} {i}:", bold=True))
        blocks.append(PdfBlock(item))
    return blocks


def demand_letter_pdf_blocks(sections: DemandLetterSections) -> list[PdfBlock]:
    blocks = [
        PdfBlock(sections.header),
        PdfBlock(""),
        PdfBlock(sections.re_line),
        PdfBlock(""),
        PdfBlock(sections.salutation),
        PdfBlock(""),
        PdfBlock(sections.opening_paragraph),
    ]
    for key, title in OPTIONAL_SECTIONS:
        body = getattr(sections, key)
        if body.strip():
            blocks += [PdfBlock(""), PdfBlock(title, bold=True), PdfBlock(body)]
    blocks += [
        PdfBlock(""),
        PdfBlock("SETTLEMENT DEMAND", bold=True),
        PdfBlock(sections.settlement_demand),
        PdfBlock(""),
        PdfBlock(sections.closing),
        PdfBlock(""),
        PdfBlock("Sincerely,"),
        PdfBlock(""),
        PdfBlock("______________________________"),
        PdfBlock("Attorney Name"),
        PdfBlock("Attorney for Plaintiff"),
    ]
    return blocks


# (kind key) -> (docx builder, pdf title, pdf item heading, pdf item prefix)
DISCOVERY_EXPORTS = {
    "admissions": (build_rfa_docx, "REQUEST FOR ADMISSIONS", "YOU ARE REQUESTED TO ADMIT THAT:",
                   "REQUEST FOR ADMISSION NO."),
    "productions": (build_rfp_docx, "REQUEST FOR PRODUCTION OF DOCUMENTS", "DOCUMENTS TO BE PRODUCED",
                    "REQUEST FOR PRODUCTION NO."),
    "interrogatories": (build_si_docx, "SPECIAL INTERROGATORIES", "SPECIAL INTERROGATORIES",
                        "INTERROGATORY NO."),
}


def export_discovery(
    kind_key: str,
    fmt: str,
    info: ComplaintInformation,
    definitions: list[str],
    items: list[str],
) -> ExportedFile:
    """Render a discovery document for a kind key in 'docx' or 'pdf'."""
    if kind_key not in DISCOVERY_EXPORTS:
        raise ValueError(f"Unknown discovery type: {kind_key}")
    docx_builder, title, heading, prefix = DISCOVERY_EXPORTS[kind_key]

    if fmt == "docx":
        return docx_builder(info, definitions, items)
    if fmt == "pdf":
        data = build_text_pdf(title, discovery_pdf_blocks(info, heading, prefix, definitions, items))
        name = _first_name_part(info.plaintiff, "Plaintiff")
        return ExportedFile(data=data, mime_type=PDF_MIME, filename=f"{title.title()} - {name}.pdf")
    raise ValueError(f"Unsupported export format: {fmt}")


def export_demand_letter(sections: DemandLetterSections, fmt: str) -> ExportedFile:
    if fmt == "docx":
        return build_demand_letter_docx(sections)
    if fmt == "pdf":
        data = build_text_pdf("DEMAND LETTER", demand_letter_pdf_blocks(sections))
        return ExportedFile(data=data, mime_type=PDF_MIME, filename="Demand Letter.pdf")
    raise ValueError(f"Unsupported export format: {fmt}")
