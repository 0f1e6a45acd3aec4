"""
Complaint Information Extraction

Extracts structured case details from an uploaded complaint with Gemini.
The extracted record feeds every downstream generator (discovery sets,
demand letters) and the Form Interrogatories (DISC-001) checkbox analysis.

Extraction paths:
- extract_from_file: send the document itself (multimodal). If the answer
  cannot be parsed, or the call fails, OCR the file with Gemini and fall
  back to text extraction.
- extract_from_text: prompt with already-extracted document text.
"""

import json
import logging
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .gemini import GeminiClient, GenerationError, parse_json_object

logger = logging.getLogger(__name__)

CHECKBOX_TEXT_LIMIT = 5000
NO_ANALYSIS_EXPLANATION = "No valid analysis found"


class ComplaintExtractionError(Exception):
    """Raised when no complaint information could be extracted."""


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class CourtInfo(_CamelModel):
    county: Optional[str] = None


class CaseInfo(_CamelModel):
    short_title: Optional[str] = None
    case_number: Optional[str] = None


class Address(_CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class AttorneyInfo(_CamelModel):
    bar_number: Optional[str] = None
    name: Optional[str] = None
    firm: Optional[str] = None
    address: Optional[Address] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    attorney_for: Optional[str] = None


class FormParties(_CamelModel):
    asking_party: Optional[str] = None
    answering_party: Optional[str] = None
    set_number: Optional[str] = None


class ComplaintInformation(_CamelModel):
    """Structured complaint details. Serialized with camelCase keys."""
    defendant: Optional[str] = None
    plaintiff: Optional[str] = None
    case_number: Optional[str] = None
    filing_date: Optional[str] = None
    charge_description: Optional[str] = None
    court_name: Optional[str] = None
    court: Optional[CourtInfo] = None
    case_info: Optional[CaseInfo] = Field(default=None, alias="case")
    attorney: Optional[AttorneyInfo] = None
    form_parties: Optional[FormParties] = None
    date: Optional[str] = None

    # Form interrogatory checkbox analysis
    case_type: Optional[str] = None
    incident_definition: Optional[str] = None
    relevant_checkboxes: Optional[dict[str, bool]] = None
    explanation: Optional[str] = None

    # Demand letter inputs
    incident_date: Optional[str] = None
    incident_location: Optional[str] = None
    injuries: list[Any] = Field(default_factory=list)
    damages: dict[str, Any] = Field(default_factory=dict)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


FILE_EXTRACTION_PROMPT = """
You are a legal assistant extracting information from a complaint document.

Please analyze the document I've provided and extract the following information in detailed JSON format:

1. Basic case information (defendant, plaintiff, case number, filing date, etc.)
2. Court information
3. Attorney information
4. Parties involved in the form interrogatories

Format your response as a JSON object with this structure:
{
  "defendant": "Defendant name",
  "plaintiff": "Plaintiff name",
  "caseNumber": "Case number",
  "filingDate": "Filing date",
  "chargeDescription": "Charge/claim description",
  "courtName": "Court name",
  "court": {
    "county": "County name"
  },
  "case": {
    "shortTitle": "Short title (e.g., 'Smith v. Johnson')",
    "caseNumber": "Case number"
  },
  "attorney": {
    "barNumber": "State Bar Number",
    "name": "Attorney name",
    "firm": "Law firm name",
    "address": {
      "street": "Street address",
      "city": "City",
      "state": "State code (e.g., CA)",
      "zip": "ZIP code"
    },
    "phone": "Phone number",
    "fax": "Fax number",
    "email": "Email address",
    "attorneyFor": "Who the attorney represents"
  },
  "formParties": {
    "askingParty": "Party asking interrogatories (typically plaintiff)",
    "answeringParty": "Party answering interrogatories (typically defendant)",
    "setNumber": "Set number (e.g., 'First', 'Second')"
  },
  "date": "Current date in YYYY-MM-DD format",
  "caseType": "Type of case (e.g., personal injury, contract dispute)"
}

For any field where information isn't available in the document, please use reasonable defaults or leave as null.
Return only the JSON object with no other text.
"""

OCR_PROMPT = """
Please extract all the text content from this document as accurately as possible.
Return only the extracted text with no additional comments.
For table content, please preserve the structure as much as possible using plain text formatting.
"""

TEXT_EXTRACTION_PROMPT = """
You are an AI legal assistant helping to extract relevant information from a legal complaint document.

Please carefully analyze the following text from a complaint and extract these key details:
1. Defendant name (e.g., John Doe, Jane Smith)
2. Plaintiff name (e.g., "The People of the State of California" or individual names)
3. Case number (e.g., CR-2023-12345, 123456-CR)
4. Filing date (the date the complaint was filed)
5. Court name (e.g., Superior Court of California, County of Los Angeles)
6. Charge or claim description (a brief description of the claims being alleged)

Additionally, extract detailed information for filling out a Form Interrogatories document:

Format your response as a JSON object with this structure:
{{
  "defendant": "string",
  "plaintiff": "string",
  "caseNumber": "string",
  "filingDate": "string",
  "chargeDescription": "string",
  "courtName": "string",
  "court": {{
    "county": "Name of the California county where the case is filed, e.g., 'Los Angeles'"
  }},
  "case": {{
    "shortTitle": "Short title of the case, e.g., 'Smith v. Johnson'",
    "caseNumber": "Court-assigned case number, e.g., '23CV000123'"
  }},
  "attorney": {{
    "barNumber": "California State Bar Number of the attorney, e.g., '123456'",
    "name": "Full name of the attorney or party representing themselves",
    "firm": "Law firm name (or null if self-represented)",
    "address": {{
      "street": "Street address, e.g., '123 Main St'",
      "city": "City name",
      "state": "Two-letter state code, e.g., 'CA'",
      "zip": "ZIP code"
    }},
    "phone": "Phone number, e.g., '310-555-1234'",
    "fax": "Fax number if available (can be null)",
    "email": "Email address",
    "attorneyFor": "Who the attorney is representing, e.g., 'Plaintiff John Smith' or 'Defendant Lisa Johnson'"
  }},
  "formParties": {{
    "askingParty": "Name of the party asking the interrogatories (typically the plaintiff)",
    "answeringParty": "Name of the party answering the interrogatories (typically the defendant)",
    "setNumber": "Set number of the interrogatories (e.g., 'First Set', 'Second Set')"
  }},
  "date": "Current date in YYYY-MM-DD format"
}}

For each field, if you can't find a clear value, provide your best guess or use a reasonable default.
Return only the JSON object with no other text.

Document text:
{doc_text}
"""

# DISC-001 section ranges by case type
FORM_SECTIONS = {
    "general": "301-309",
    "personalInjury": "310-318",
    "motorVehicles": "320-323",
    "pedestrianBicycle": "330-332",
    "premisesLiability": "340-340.7",
    "businessContract": "350-355",
    "employmentDiscrimination": "360-360.7",
    "employmentWageHour": "370-376",
}

_RELEVANT = "Check this box if this type of information is relevant to the case."

CHECKBOX_FIELDS = [
    ("Definitions", '"(2) INCIDENT means (insert your definition here or on a separate, attached sheet labeled \\"Section 4(a)(2)\\"):". ' + _RELEVANT),
    ("GenBkgrd", '"2.1 State:". ' + _RELEVANT),
    ("PMEInjuries", '"6.1 Do you attribute any physical, mental, or emotional injuries to the INCIDENT? (If your answer is \\"no,\\" do not answer interrogatories 6.2 through 6.7).". ' + _RELEVANT),
    ("PropDam", '"7.1 Do you attribute any loss of or damage to a vehicle or other property to the INCIDENT? If so, for each item of property:". ' + _RELEVANT),
    ("LostincomeEarn", '"8.1 Do you attribute any loss of income or earning capacity to the INCIDENT? (If your answer is \\"no,\\" do not answer interrogatories 8.2 through 8.8).". ' + _RELEVANT),
    ("OtherDam", '"9.1 Are there any other damages that you attribute to the INCIDENT? If so, for each item of damage state:". ' + _RELEVANT),
    ("MedHist", '"10.1 At any time before the INCIDENT did you have complaints or injuries that involved the same part of your body claimed to have been injured in the INCIDENT? If so, for each state:". ' + _RELEVANT),
    ("IncOccrdMV", '"20.1 State the date, time, and place of the INCIDENT (closest street ADDRESS or intersection).". Check this box for motor vehicle incidents.'),
    ("IncOccrdMV2", '"20.2 For each vehicle involved in the INCIDENT, state:". Check this box for motor vehicle incidents.'),
    ("Contract", '"50.1 For each agreement alleged in the pleadings:". Check this box for contract disputes.'),
]

CHECKBOX_RESPONSE_EXAMPLE = {
    "caseType": "Primary type of case (e.g., personal injury, contract dispute, employment)",
    "incidentDefinition": "A brief definition of 'INCIDENT' as it should be used in the form (e.g., 'the automobile accident of January 1, 2023')",
    "relevantCheckboxes": {
        "section301": True, "section310": False, "section320": False, "section330": False,
        "section340": False, "section350": False, "section360": False, "section370": False,
        "Definitions": True, "GenBkgrd": True, "PMEInjuries": False, "PropDam": False,
        "LostincomeEarn": False, "OtherDam": False, "MedHist": False,
        "IncOccrdMV": False, "IncOccrdMV2": False, "Contract": False,
    },
    "explanation": "Brief explanation of why these sections were selected",
}


def build_checkbox_prompt(info: ComplaintInformation, doc_text: Optional[str] = None) -> str:
    s = FORM_SECTIONS
    lines = [
        "You are a legal assistant analyzing a complaint document to determine which Form Interrogatory checkboxes should be selected.",
        "",
        "Form Interrogatories (DISC-001) are organized into sections based on case type:",
        f"1. General ({s['general']}): Always applicable to all cases",
        f"2. Personal Injury ({s['personalInjury']}): For cases involving personal injury claims",
        f"3. Motor Vehicles ({s['motorVehicles']}): For cases involving motor vehicle accidents",
        f"4. Pedestrian and Bicycle ({s['pedestrianBicycle']}): For cases involving pedestrian or bicycle incidents",
        f"5. Premises Liability ({s['premisesLiability']}): For cases involving injuries on property",
        f"6. Business/Contract ({s['businessContract']}): For business disputes and contract cases",
        f"7. Employment - Discrimination ({s['employmentDiscrimination']}): For employment discrimination cases",
        f"8. Employment - Wage/Hour ({s['employmentWageHour']}): For wage and hour violations",
        "",
        "I need you to analyze the following information and determine which form sections should be checked.",
        "",
        "Basic case information already extracted:",
        f"- Defendant: {info.defendant}",
        f"- Plaintiff: {info.plaintiff}",
        f"- Case Number: {info.case_number}",
        f"- Filing Date: {info.filing_date}",
        f"- Charge/Claim: {info.charge_description or 'Not specified'}",
        f"- Court: {info.court_name or 'Not specified'}",
        "",
    ]
    if doc_text:
        excerpt = doc_text[:CHECKBOX_TEXT_LIMIT]
        if len(doc_text) > CHECKBOX_TEXT_LIMIT:
            excerpt += "... [text truncated due to length]"
        lines += ["Full document text to analyze:", excerpt]
    else:
        lines.append("No full document text provided, analyze based on the metadata above.")

    lines += [
        "",
        "For the following specific form fields, determine if they should be checked based on the case:",
    ]
    lines += [
        f"- {name}: This checkbox corresponds to the interrogatory: {desc}"
        for name, desc in CHECKBOX_FIELDS
    ]
    lines += [
        "",
        "Format your response as a JSON object with this structure:",
        json.dumps(CHECKBOX_RESPONSE_EXAMPLE, indent=2),
        "",
        "Always set section301 to true as these are general interrogatories that apply to all cases.",
        "For other sections, set to true only if they clearly apply to this specific case.",
    ]
    return "\n".join(lines)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def minimal_complaint_from_case(case_row: dict) -> ComplaintInformation:
    """Stand-in complaint data for a case with no extracted complaint."""
    return ComplaintInformation(
        plaintiff=case_row.get("client_name") or case_row.get("client") or "Plaintiff",
        defendant="Defendant",
        case_type=case_row.get("case_type"),
        incident_date=case_row.get("incident_date") or "",
        incident_location="",
        date=date.today().isoformat(),
    )


class ComplaintExtractor:
    """
    Extracts ComplaintInformation with Gemini.

    Usage:
        extractor = ComplaintExtractor(GeminiClient())
        info = extractor.extract_from_file(pdf_bytes, "application/pdf")
        info = extractor.analyze_form_interrogatory_checkboxes(info, doc_text)
    """

    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    def _parse(self, text: str) -> ComplaintInformation:
        return ComplaintInformation.model_validate(parse_json_object(text))

    def extract_from_text(self, doc_text: str) -> ComplaintInformation:
        """Extract complaint details from plain document text."""
        if not doc_text or not doc_text.strip():
            raise ComplaintExtractionError("Document text is empty.")

        try:
            response = self.gemini.generate(TEXT_EXTRACTION_PROMPT.format(doc_text=doc_text))
            return self._parse(response)
        except GenerationError as e:
            raise ComplaintExtractionError(f"Failed to extract complaint information: {e}") from e
        except ValueError as e:
            logger.error(f"Complaint extraction response was not valid JSON: {e}")
            raise ComplaintExtractionError("AI response was not in the expected format.") from e

    def extract_text_from_file(self, data: bytes, mime_type: str) -> str:
        """OCR a document with Gemini vision."""
        try:
            text = self.gemini.generate_with_file(OCR_PROMPT, data, mime_type)
        except GenerationError as e:
            logger.error(f"Error extracting text from file: {e}")
            raise ComplaintExtractionError("Failed to extract text from the document") from e
        logger.info(f"Text extraction successful, length: {len(text)}")
        return text

    def extract_from_file(self, data: bytes, mime_type: str) -> ComplaintInformation:
        """
        Extract complaint details from the document itself.

        Falls back to OCR plus text extraction when the multimodal answer is
        unusable. Raises ComplaintExtractionError when every path fails.
        """
        try:
            response = self.gemini.generate_with_file(FILE_EXTRACTION_PROMPT, data, mime_type)
            return self._parse(response)
        except (GenerationError, ValueError) as e:
            logger.warning(f"Multimodal complaint extraction failed, falling back to text: {e}")

        return self.extract_from_text(self.extract_text_from_file(data, mime_type))

    def analyze_form_interrogatory_checkboxes(
        self,
        info: ComplaintInformation,
        doc_text: Optional[str] = None,
    ) -> ComplaintInformation:
        """
        Decide which DISC-001 sections and checkboxes apply to the case.

        Returns a copy of `info` with caseType, incidentDefinition,
        relevantCheckboxes and explanation merged in. On any failure only the
        general section (301) is marked.
        """
        checkboxes = dict(info.relevant_checkboxes or {})
        try:
            response = self.gemini.generate(build_checkbox_prompt(info, doc_text))
            analysis = parse_json_object(response)
        except (GenerationError, ValueError) as e:
            logger.error(f"Error analyzing checkboxes with Gemini: {e}")
            checkboxes["section301"] = True
            return info.model_copy(update={
                "relevant_checkboxes": checkboxes,
                "explanation": NO_ANALYSIS_EXPLANATION,
            })

        found = analysis.get("relevantCheckboxes")
        if isinstance(found, dict):
            checkboxes.update({k: _as_bool(v) for k, v in found.items()})

        return info.model_copy(update={
            "case_type": analysis.get("caseType") or info.case_type,
            "incident_definition": analysis.get("incidentDefinition") or info.incident_definition,
            "relevant_checkboxes": checkboxes,
            "explanation": analysis.get("explanation") or info.explanation,
        })
