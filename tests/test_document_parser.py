"""
Tests for execution/doculaw/document_parser.py

Covers: MIME resolution, plain text, DOCX (paragraphs and tables) and PDF
        extraction. Input documents are built in memory with python-docx and
        PyMuPDF.
"""

import io


def _docx_bytes():
    from docx import Document
    doc = Document()
    doc.add_paragraph("Plaintiff Jane Smith alleges negligence.")
    doc.add_paragraph("   ")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Provider"
    table.rows[0].cells[1].text = "County General"
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def _pdf_bytes(pages):
    import fitz
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text, fontname="helv", fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# MIME resolution
# ---------------------------------------------------------------------------

class TestGuessMimeType:
    """Tests for guess_mime_type()."""

    def test_extension_wins(self):
        from execution.doculaw.document_parser import guess_mime_type, PDF_MIME, DOCX_MIME
        assert guess_mime_type("complaint.PDF", "application/octet-stream") == PDF_MIME
        assert guess_mime_type("letter.docx") == DOCX_MIME
        assert guess_mime_type("notes.md") == "text/plain"

    def test_falls_back_to_reported(self):
        from execution.doculaw.document_parser import guess_mime_type
        assert guess_mime_type("photo.jpg", "image/jpeg") == "image/jpeg"
        assert guess_mime_type("blob") == "application/octet-stream"


# ---------------------------------------------------------------------------
# extract_text()
# ---------------------------------------------------------------------------

class TestExtractText:
    """Tests for extract_text()."""

    def test_plain_text(self):
        from execution.doculaw.document_parser import extract_text
        result = extract_text("Incident at Café Olé on 3/3/2024".encode("utf-8"), "notes.txt")
        assert result.text == "Incident at Café Olé on 3/3/2024"
        assert result.mime_type == "text/plain"

    def test_docx_paragraphs_and_tables(self):
        from execution.doculaw.document_parser import extract_text, DOCX_MIME
        result = extract_text(_docx_bytes(), "complaint.docx")
        assert result.mime_type == DOCX_MIME
        assert result.text.splitlines() == [
            "Plaintiff Jane Smith alleges negligence.",
            "Provider | County General",
        ]

    def test_pdf(self):
        from execution.doculaw.document_parser import extract_text, PDF_MIME
        result = extract_text(_pdf_bytes(["Defendant ran the red light.", "Second page."]), "report.pdf")
        assert result.mime_type == PDF_MIME
        assert result.page_count == 2
        assert "red light" in result.text
        assert "Second page" in result.text

    def test_unsupported_type_is_empty(self):
        from execution.doculaw.document_parser import extract_text
        result = extract_text(b"\x89PNG", "scan.png", "image/png")
        assert result.is_empty
        assert result.mime_type == "image/png"
