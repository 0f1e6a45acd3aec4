"""
Demand Letter Generation and Editing

A demand letter is stored per case as named sections (JSON) plus the
composed plain-text body. Sections can be generated from complaint data and
case documents, edited by hand one at a time, or revised by AI either one
section or the whole letter at once.
"""

import json
import logging
from typing import Optional
from dataclasses import dataclass, asdict, fields

from .complaint import ComplaintInformation, minimal_complaint_from_case
from .gemini import GeminiClient, GenerationError, parse_json_object, strip_code_fences
from .retriever import CaseRetriever

logger = logging.getLogger(__name__)

CONTEXT_DOC_LIMIT = 5
EXPORT_FORMATS = ("pdf", "docx")


@dataclass
class DemandLetterSections:
    header: str = ""
    re_line: str = ""
    salutation: str = ""
    opening_paragraph: str = ""
    medical_providers: str = ""
    injuries: str = ""
    damages_summary: str = ""
    settlement_demand: str = ""
    closing: str = ""
    tone: Optional[str] = None

    @classmethod
    def keys(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: dict) -> "DemandLetterSections":
        """Build from a dict, keeping only known keys and stringifying values."""
        known = {}
        for key in cls.keys():
            value = data.get(key)
            if value is None:
                continue
            known[key] = value if isinstance(value, str) else json.dumps(value)
        return cls(**known)

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["tone"] is None:
            del data["tone"]
        return data


def compose_body(s: DemandLetterSections) -> str:
    """Compose the plain-text letter body from its sections."""
    return "\n".join([
        s.header,
        "\n\n" + s.re_line,
        "\n\n" + s.salutation,
        "\n\n" + s.opening_paragraph,
        "\n\nMEDICAL PROVIDERS\n" + s.medical_providers,
        "\n\nINJURIES SUSTAINED\n" + s.injuries,
        "\n\nDAMAGES\n" + s.damages_summary,
        "\n\nSETTLEMENT DEMAND\n" + s.settlement_demand,
        "\n\n" + s.closing,
    ])


@dataclass
class DemandLetter:
    sections: Optional[DemandLetterSections]
    body_text: str = ""
    is_generated: bool = False
    pdf_url: Optional[str] = None
    docx_url: Optional[str] = None
    exists: bool = False

    def to_dict(self) -> dict:
        return {
            "sections": self.sections.to_dict() if self.sections else None,
            "body_text": self.body_text,
            "is_generated": self.is_generated,
            "pdf_url": self.pdf_url,
            "docx_url": self.docx_url,
            "exists": self.exists,
        }


def build_generation_prompt(
    complaint: ComplaintInformation,
    context_docs: list[str],
    instructions: Optional[str] = None,
) -> str:
    keys = [k for k in DemandLetterSections.keys() if k != "tone"]
    lines = [
        "You are a personal injury attorney drafting a pre-litigation demand letter to the "
        "opposing party or their insurer.",
        "",
        "Case information:",
        f"- Plaintiff (our client): {complaint.plaintiff}",
        f"- Defendant: {complaint.defendant}",
        f"- Case Type: {complaint.case_type or 'Not specified'}",
        f"- Incident Date: {complaint.incident_date or complaint.filing_date or 'Not specified'}",
        f"- Incident Location: {complaint.incident_location or 'Not specified'}",
        f"- Allegations: {complaint.charge_description or 'Not specified'}",
    ]
    if complaint.injuries:
        lines.append(f"- Injuries: {json.dumps(complaint.injuries)}")
    if complaint.damages:
        lines.append(f"- Damages: {json.dumps(complaint.damages)}")
    if complaint.attorney and complaint.attorney.name:
        firm = f" ({complaint.attorney.firm})" if complaint.attorney.firm else ""
        lines.append(f"- Attorney: {complaint.attorney.name}{firm}")

    if context_docs:
        lines += ["", "Supporting material from the case file:"]
        lines += context_docs[:CONTEXT_DOC_LIMIT]

    if instructions:
        lines += ["", f"Additional instructions from the attorney: {instructions}"]

    lines += [
        "",
        "Write each section of the letter. Use facts from the case information and supporting "
        "material; where an amount or provider is unknown, write a bracketed placeholder such "
        "as [AMOUNT] rather than inventing one.",
        "",
        f"IMPORTANT: Return ONLY a valid JSON object with these string keys: {', '.join(keys)}. "
        "Do not include markdown, code blocks, or any other text.",
    ]
    return "\n".join(lines)


def build_section_edit_prompt(key: str, original: str, instruction: str) -> str:
    return (
        f"You are revising a demand letter section. Instruction: {instruction}\n"
        f"Original Section ({key}):\n{original}\n"
        "Return ONLY the improved revised text."
    )


def build_full_edit_prompt(sections: DemandLetterSections, instruction: str) -> str:
    return (
        f"You are improving an entire demand letter. Instruction: {instruction}\n"
        f"Current JSON:\n{json.dumps(sections.to_dict())}\n"
        "Return ONLY JSON with the same keys."
    )


class DemandLetterService:
    """
    Per-case demand letter persistence and AI drafting.

    Usage:
        service = DemandLetterService(db, GeminiClient(), retriever)
        letter = service.generate(case_id, user_id, complaint=info)
        service.ai_edit_section(case_id, "settlement_demand", "be firmer", user_id)
    """

    def __init__(self, db, gemini: GeminiClient, retriever: Optional[CaseRetriever] = None):
        self.db = db
        self.gemini = gemini
        self.retriever = retriever

    def load(self, case_id: str) -> DemandLetter:
        row = self.db.get_demand_letter(case_id)
        if not row:
            return DemandLetter(sections=None)
        sections = row.get("sections")
        return DemandLetter(
            sections=DemandLetterSections.from_dict(sections) if sections else None,
            body_text=row.get("body_text") or "",
            is_generated=bool(row.get("is_generated")),
            pdf_url=row.get("pdf_url"),
            docx_url=row.get("docx_url"),
            exists=True,
        )

    def _require_sections(self, case_id: str) -> DemandLetter:
        letter = self.load(case_id)
        if letter.sections is None:
            raise LookupError("No demand letter exists for this case yet.")
        return letter

    def save(self, case_id: str, sections: DemandLetterSections, user_id: str) -> DemandLetter:
        """Upsert the sections and return the stored row, export urls included."""
        body = compose_body(sections)
        self.db.upsert_demand_letter(case_id, sections.to_dict(), body, True, user_id)
        return self.load(case_id)

    def generate(
        self,
        case_id: str,
        user_id: str,
        complaint: Optional[ComplaintInformation] = None,
        context_docs: Optional[list[str]] = None,
        instructions: Optional[str] = None,
    ) -> DemandLetter:
        """
        Draft a demand letter and save it.

        Without complaint data, a minimal record is built from the case.
        Without explicit context documents, the top case-document excerpts
        are retrieved from the vector index when available.
        """
        if complaint is None:
            case_row = self.db.get_case_by_id(case_id)
            if not case_row:
                raise LookupError("Case not found")
            complaint = minimal_complaint_from_case(case_row)

        if not context_docs and self.retriever is not None:
            query = instructions or complaint.charge_description or "injuries medical treatment damages"
            context_docs = self.retriever.context_excerpts(query, case_id, top_k=CONTEXT_DOC_LIMIT)

        response = self.gemini.generate(build_generation_prompt(complaint, context_docs or [], instructions))
        try:
            parsed = parse_json_object(response)
        except ValueError as e:
            logger.error(f"Demand letter generation response was not JSON: {e}")
            raise GenerationError("AI response was not in the expected format.") from e

        sections = DemandLetterSections.from_dict(parsed)
        logger.info(f"Generated demand letter for case {case_id}")
        return self.save(case_id, sections, user_id)

    def update_section(self, case_id: str, key: str, value: str, user_id: str) -> DemandLetter:
        """Replace one section by hand."""
        if key not in DemandLetterSections.keys():
            raise ValueError(f"Unknown demand letter section: {key}")
        letter = self._require_sections(case_id)
        setattr(letter.sections, key, value)
        return self.save(case_id, letter.sections, user_id)

    def save_sections(self, case_id: str, data: dict, user_id: str) -> DemandLetter:
        """Replace every section from a dict (manual edits)."""
        return self.save(case_id, DemandLetterSections.from_dict(data), user_id)

    def ai_edit_section(self, case_id: str, key: str, instruction: str, user_id: str) -> DemandLetter:
        """Revise one section with AI."""
        if key not in DemandLetterSections.keys():
            raise ValueError(f"Unknown demand letter section: {key}")
        letter = self._require_sections(case_id)
        original = getattr(letter.sections, key) or ""

        updated = strip_code_fences(
            self.gemini.generate(build_section_edit_prompt(key, original, instruction))
        ).strip()
        if not updated:
            raise GenerationError("AI returned an empty response.")

        setattr(letter.sections, key, updated)
        return self.save(case_id, letter.sections, user_id)

    def ai_edit_all(self, case_id: str, instruction: str, user_id: str) -> DemandLetter:
        """Revise the whole letter with AI; known keys in the reply replace current sections."""
        letter = self._require_sections(case_id)
        response = self.gemini.generate(build_full_edit_prompt(letter.sections, instruction))
        try:
            parsed = parse_json_object(response)
        except ValueError as e:
            raise GenerationError("AI response was not in the expected format.") from e

        merged = letter.sections.to_dict()
        for key in DemandLetterSections.keys():
            if isinstance(parsed.get(key), str):
                merged[key] = parsed[key]
        return self.save(case_id, DemandLetterSections.from_dict(merged), user_id)

    def record_export(self, case_id: str, fmt: str, url: str) -> None:
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.db.set_demand_letter_url(case_id, fmt, url)
