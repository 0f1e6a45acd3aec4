"""
Discovery Document Persistence and AI Editing

Request for Admissions (RFA), Request for Production (RFP) and Special
Interrogatories (SI) share one shape: a list of definitions plus a list of
numbered requests, stored as one row per case. Each kind is described by a
DiscoveryKind, and DiscoveryService implements load / save / clear /
generate / edit for any of them.

Generation prompts Gemini for a JSON object with "definitions" and the
kind's item key; edits prompt for a single revised string or a JSON array.
"""

import re
import json
import logging
from typing import Optional
from dataclasses import dataclass, field

from .complaint import ComplaintInformation
from .gemini import GeminiClient, GenerationError, parse_json_object, parse_json_array, strip_code_fences
from .retriever import CaseRetriever

logger = logging.getLogger(__name__)

_LEADING_NUMBER = re.compile(r"^\d+\.\s*")


@dataclass(frozen=True)
class DiscoveryKind:
    """Static description of one discovery document type."""
    key: str
    title: str
    table: str
    items_column: str
    item_label: str
    definition_count: int
    item_count: int
    example_definitions: tuple
    example_items: tuple


ADMISSIONS = DiscoveryKind(
    key="admissions",
    title="Request for Admissions",
    table="request_for_admissions",
    items_column="admissions",
    item_label="admission",
    definition_count=5,
    item_count=10,
    example_definitions=("The term 'AGREEMENT' means...", "The term 'INCIDENT' means..."),
    example_items=(
        "Admit that you signed the agreement.",
        "Admit that the incident occurred on the specified date.",
    ),
)

PRODUCTIONS = DiscoveryKind(
    key="productions",
    title="Request for Production of Documents",
    table="request_for_productions",
    items_column="productions",
    item_label="production",
    definition_count=5,
    item_count=10,
    example_definitions=("The term 'DOCUMENT' means...", "The term 'INCIDENT' means..."),
    example_items=(
        "All DOCUMENTS relating to the INCIDENT.",
        "All photographs of the scene of the INCIDENT.",
    ),
)

INTERROGATORIES = DiscoveryKind(
    key="interrogatories",
    title="Special Interrogatories",
    table="special_interrogatories",
    items_column="interrogatories",
    item_label="interrogatory",
    definition_count=5,
    item_count=15,
    example_definitions=("The term 'YOU' means...", "The term 'INCIDENT' means..."),
    example_items=(
        "State all facts supporting your contention that you were not negligent.",
        "Identify each PERSON who witnessed the INCIDENT.",
    ),
)

DISCOVERY_KINDS = {k.key: k for k in (ADMISSIONS, PRODUCTIONS, INTERROGATORIES)}

# California limits special interrogatories to 35 without a declaration
MAX_INTERROGATORIES = 35


def get_kind(key: str) -> DiscoveryKind:
    try:
        return DISCOVERY_KINDS[key]
    except KeyError:
        raise ValueError(f"Unknown discovery type: {key}") from None


def strip_definition_numbers(definitions: list[str]) -> list[str]:
    """Remove leading numbering like '1. ' from each definition."""
    return [_LEADING_NUMBER.sub("", d) for d in definitions]


@dataclass
class DiscoveryContent:
    items: list[str] = field(default_factory=list)
    definitions: list[str] = field(default_factory=list)
    is_generated: bool = False
    exists: bool = False
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "definitions": self.definitions,
            "is_generated": self.is_generated,
            "exists": self.exists,
            "updated_at": self.updated_at,
        }


def build_generation_prompt(
    kind: DiscoveryKind,
    complaint: ComplaintInformation,
    context_excerpts: Optional[list[str]] = None,
    item_count: Optional[int] = None,
) -> str:
    count = item_count or kind.item_count
    example = (
        "{\n"
        f'  "definitions": [{", ".join(json.dumps(d) for d in kind.example_definitions)}],\n'
        f'  "{kind.items_column}": [{", ".join(json.dumps(i) for i in kind.example_items)}]\n'
        "}"
    )
    parts = [
        f'Based on the following complaint information, generate a set of "definitions" and '
        f'"{kind.items_column}" for a {kind.title} document in a civil litigation case.',
        "",
        "Complaint Information:",
        f"- Plaintiff: {complaint.plaintiff}",
        f"- Defendant: {complaint.defendant}",
        f"- Case Type: {complaint.case_type}",
        f"- Filing Date: {complaint.filing_date}",
        f"- Core Allegations: {complaint.charge_description}",
    ]
    if context_excerpts:
        parts += ["", "Relevant excerpts from the case documents:", "\n\n".join(context_excerpts)]
    parts += [
        "",
        f"Generate {kind.definition_count} relevant definitions and {count} relevant {kind.items_column}.",
        "",
        f'IMPORTANT: Return ONLY a valid JSON object with two keys: "definitions" and '
        f'"{kind.items_column}". Both keys should have a value of a string array. '
        "Do not include markdown, code blocks, or any other text.",
        "",
        "Example:",
        example,
    ]
    return "\n".join(parts)


def build_item_edit_prompt(label: str, original: str, instruction: str) -> str:
    return (
        f"You are a legal assistant. The user wants to edit a single {label} based on their prompt.\n\n"
        f'Original {label}: "{original}"\n'
        f'User\'s instruction: "{instruction}"\n\n'
        f"Please provide the updated {label} as a single string.\n\n"
        "IMPORTANT: Return ONLY the revised string, with no markdown, no quotes, "
        "and no additional text or explanation."
    )


def build_list_edit_prompt(label: str, items: list[str], instruction: str, is_definitions: bool) -> str:
    current = "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items))
    definitions_note = (
        "IMPORTANT FOR DEFINITIONS: Do not include numbers or bullet points in the definition "
        'text itself. Each definition should be a complete sentence starting with "The term" or similar.'
        if is_definitions else ""
    )
    return (
        f'You are a legal assistant. The user wants to edit the following list of {label} '
        f'based on their prompt: "{instruction}".\n\n'
        f"Current {label}:\n{current}\n\n"
        f"Please provide the updated list of {label} in the same format.\n\n"
        f"{definitions_note}\n\n"
        "IMPORTANT: Return ONLY a valid JSON array of strings, with no markdown, no code blocks, "
        "and no additional text or explanation. The response should start with [ and end with ].\n\n"
        'Example format: ["First item", "Second item", "Third item"]'
    )


def _clean_single(text: str) -> str:
    text = strip_code_fences(text).strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1].strip()
    return text


class DiscoveryService:
    """
    Per-case persistence and AI editing for discovery documents.

    Usage:
        service = DiscoveryService(db, GeminiClient(), retriever)
        content = service.generate(ADMISSIONS, case_id, complaint, user_id)
        service.edit_item(ADMISSIONS, case_id, "make it narrower", "admission", 0, user_id)
    """

    def __init__(self, db, gemini: GeminiClient, retriever: Optional[CaseRetriever] = None):
        self.db = db
        self.gemini = gemini
        self.retriever = retriever

    def _is_definitions(self, kind: DiscoveryKind, target: str) -> bool:
        if target in ("definition", "definitions"):
            return True
        if target in (kind.item_label, kind.items_column, "item", "items"):
            return False
        raise ValueError(f"Unknown edit target '{target}' for {kind.key}")

    def load(self, kind: DiscoveryKind, case_id: str) -> DiscoveryContent:
        """Load the stored document for a case. A missing row is empty content."""
        row = self.db.get_discovery(kind.table, kind.items_column, case_id)
        if not row:
            return DiscoveryContent()
        updated = row.get("updated_at")
        return DiscoveryContent(
            items=list(row.get(kind.items_column) or []),
            definitions=list(row.get("definitions") or []),
            is_generated=bool(row.get("is_generated")),
            exists=True,
            updated_at=updated.isoformat() if hasattr(updated, "isoformat") else updated,
        )

    def save(
        self,
        kind: DiscoveryKind,
        case_id: str,
        items: list[str],
        definitions: list[str],
        is_generated: bool,
        user_id: str,
    ) -> DiscoveryContent:
        """Upsert the document for a case."""
        if kind is INTERROGATORIES and len(items) > MAX_INTERROGATORIES:
            raise ValueError(f"Special interrogatories are limited to {MAX_INTERROGATORIES}")

        definitions = strip_definition_numbers(definitions)
        self.db.upsert_discovery(
            kind.table, kind.items_column, case_id,
            items, definitions, is_generated, user_id,
        )
        logger.info(f"Saved {kind.key} for case {case_id} ({len(items)} items, {len(definitions)} definitions)")
        return DiscoveryContent(items=items, definitions=definitions, is_generated=is_generated, exists=True)

    def clear(self, kind: DiscoveryKind, case_id: str) -> bool:
        deleted = self.db.delete_discovery(kind.table, case_id)
        if deleted:
            logger.info(f"Cleared {kind.key} for case {case_id}")
        return deleted

    def generate(
        self,
        kind: DiscoveryKind,
        case_id: str,
        complaint: Optional[ComplaintInformation],
        user_id: str,
        item_count: Optional[int] = None,
    ) -> DiscoveryContent:
        """
        Generate definitions and requests from complaint data and save them.

        Case-document excerpts are added to the prompt when the vector index
        is available.
        """
        if complaint is None:
            raise ValueError("Complaint data is not available.")
        if kind is INTERROGATORIES and item_count and item_count > MAX_INTERROGATORIES:
            raise ValueError(f"Special interrogatories are limited to {MAX_INTERROGATORIES}")

        excerpts = []
        if self.retriever is not None:
            query = complaint.charge_description or f"{complaint.plaintiff} v. {complaint.defendant}"
            excerpts = self.retriever.context_excerpts(query, case_id)

        response = self.gemini.generate(build_generation_prompt(kind, complaint, excerpts, item_count))

        try:
            parsed = parse_json_object(response)
        except ValueError as e:
            logger.error(f"{kind.key} generation response was not JSON: {e}")
            raise GenerationError("AI response was not in the expected format.") from e

        definitions = parsed.get("definitions")
        items = parsed.get(kind.items_column)
        if not _is_string_list(definitions) or not _is_string_list(items):
            raise GenerationError("AI response was not in the expected format.")

        return self.save(kind, case_id, items, definitions, True, user_id)

    def edit_item(
        self,
        kind: DiscoveryKind,
        case_id: str,
        instruction: str,
        target: str,
        index: int,
        user_id: str,
    ) -> str:
        """Rewrite one definition or request with AI. Returns the new text."""
        is_definitions = self._is_definitions(kind, target)
        content = self.load(kind, case_id)
        items = content.definitions if is_definitions else content.items
        if index < 0 or index >= len(items):
            raise ValueError(f"Index {index} is out of range")

        label = "definition" if is_definitions else kind.item_label
        updated = _clean_single(self.gemini.generate(build_item_edit_prompt(label, items[index], instruction)))
        if not updated:
            raise GenerationError("AI returned an empty response.")

        items[index] = updated
        self.save(kind, case_id, content.items, content.definitions, content.is_generated, user_id)
        return updated

    def edit_all(
        self,
        kind: DiscoveryKind,
        case_id: str,
        instruction: str,
        target: str,
        user_id: str,
    ) -> list[str]:
        """Rewrite a whole list (definitions or requests) with AI."""
        is_definitions = self._is_definitions(kind, target)
        content = self.load(kind, case_id)
        current = content.definitions if is_definitions else content.items
        label = "definitions" if is_definitions else kind.items_column

        response = self.gemini.generate(build_list_edit_prompt(label, current, instruction, is_definitions))
        try:
            updated = parse_json_array(response)
        except ValueError as e:
            raise GenerationError("AI response is not an array") from e
        updated = [str(item) for item in updated]

        if is_definitions:
            saved = self.save(kind, case_id, content.items, updated, content.is_generated, user_id)
            return saved.definitions
        self.save(kind, case_id, updated, content.definitions, content.is_generated, user_id)
        return updated


def _is_string_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)
