"""
Tests for execution/doculaw/demand_letter.py

Covers: section model, body composition, generation (with and without
        complaint data), manual and AI section edits, and export URLs.
"""

import json

import pytest

SECTIONS = {
    "header": "Rivera Law\n1 Main St",
    "re_line": "RE: Jane Smith v. Acme Delivery Corp.",
    "salutation": "Dear Claims Adjuster:",
    "opening_paragraph": "We represent Jane Smith.",
    "medical_providers": "County General Hospital",
    "injuries": "Fractured wrist",
    "damages_summary": "Medical expenses of [AMOUNT]",
    "settlement_demand": "We demand $50,000.",
    "closing": "Sincerely,\nAlex Rivera",
}


@pytest.fixture
def service(memory_db, fake_gemini, retriever):
    from execution.doculaw.demand_letter import DemandLetterService
    return DemandLetterService(memory_db, fake_gemini, retriever)


@pytest.fixture
def saved_letter(service):
    service.save_sections("case-1", SECTIONS, "u1")
    return service


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

class TestSections:
    """Tests for DemandLetterSections and compose_body."""

    def test_from_dict_filters_and_stringifies(self):
        from execution.doculaw.demand_letter import DemandLetterSections
        sections = DemandLetterSections.from_dict({"header": "H", "injuries": ["wrist", "neck"], "unknown": "x"})
        assert sections.header == "H"
        assert sections.injuries == '["wrist", "neck"]'
        assert not hasattr(sections, "unknown")

    def test_to_dict_omits_missing_tone(self):
        from execution.doculaw.demand_letter import DemandLetterSections
        assert "tone" not in DemandLetterSections().to_dict()
        assert DemandLetterSections(tone="firm").to_dict()["tone"] == "firm"

    def test_compose_body_headings(self):
        from execution.doculaw.demand_letter import DemandLetterSections, compose_body
        body = compose_body(DemandLetterSections.from_dict(SECTIONS))
        assert body.startswith("Rivera Law\n1 Main St\n")
        assert "MEDICAL PROVIDERS\nCounty General Hospital" in body
        assert "INJURIES SUSTAINED\nFractured wrist" in body
        assert "DAMAGES\nMedical expenses" in body
        assert "SETTLEMENT DEMAND\nWe demand $50,000." in body
        assert body.index("Dear Claims Adjuster") < body.index("We represent Jane Smith")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestPersistence:
    """Tests for load and save."""

    def test_load_missing(self, service):
        letter = service.load("case-1")
        assert letter.exists is False
        assert letter.to_dict()["sections"] is None

    def test_save_sections_round_trip(self, saved_letter, memory_db):
        letter = saved_letter.load("case-1")
        assert letter.exists is True
        assert letter.sections.settlement_demand == "We demand $50,000."
        assert "SETTLEMENT DEMAND" in letter.body_text
        assert memory_db.demand_letters["case-1"]["is_generated"] is True

    def test_update_section(self, saved_letter):
        letter = saved_letter.update_section("case-1", "closing", "Regards,", "u1")
        assert letter.sections.closing == "Regards,"
        assert letter.body_text.endswith("Regards,")

    def test_update_unknown_section(self, saved_letter):
        with pytest.raises(ValueError, match="Unknown demand letter section"):
            saved_letter.update_section("case-1", "postscript", "x", "u1")

    def test_update_without_letter(self, service):
        with pytest.raises(LookupError, match="No demand letter"):
            service.update_section("case-1", "closing", "x", "u1")

    def test_record_export(self, saved_letter):
        saved_letter.record_export("case-1", "pdf", "/api/v1/storage/u1/case-1/exports/demand_letter.pdf")
        assert saved_letter.load("case-1").pdf_url.endswith("demand_letter.pdf")

    def test_save_returns_export_urls(self, saved_letter):
        saved_letter.record_export("case-1", "docx", "/api/v1/storage/u1/case-1/exports/demand_letter.docx")
        letter = saved_letter.update_section("case-1", "closing", "Regards,", "u1")
        assert letter.docx_url.endswith("demand_letter.docx")
        assert letter.to_dict()["docx_url"] == letter.docx_url

    def test_record_export_bad_format(self, saved_letter):
        with pytest.raises(ValueError, match="Unsupported export format"):
            saved_letter.record_export("case-1", "rtf", "x")


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TestGenerate:
    """Tests for DemandLetterService.generate."""

    def test_generate_with_complaint(self, service, fake_gemini, sample_complaint):
        fake_gemini.queue("```json\n" + json.dumps(SECTIONS) + "\n```")

        letter = service.generate("case-1", "u1", complaint=sample_complaint, instructions="Be firm.")

        assert letter.is_generated is True
        assert letter.sections.re_line == SECTIONS["re_line"]
        prompt = fake_gemini.prompts[0]
        assert "- Plaintiff (our client): Jane Smith" in prompt
        assert "- Attorney: Alex Rivera (Rivera Law)" in prompt
        assert "Additional instructions from the attorney: Be firm." in prompt
        assert service.load("case-1").exists is True

    def test_generate_without_complaint_uses_case(self, service, fake_gemini, memory_db):
        case_id = memory_db.add_case("u1", client_name="Maria Lopez")
        fake_gemini.queue(json.dumps(SECTIONS))

        service.generate(case_id, "u1")

        assert "- Plaintiff (our client): Maria Lopez" in fake_gemini.prompts[0]
        assert "- Defendant: Defendant" in fake_gemini.prompts[0]

    def test_generate_unknown_case(self, service):
        with pytest.raises(LookupError, match="Case not found"):
            service.generate("missing", "u1")

    def test_explicit_context_docs(self, service, fake_gemini, sample_complaint):
        fake_gemini.queue(json.dumps(SECTIONS))
        docs = [f"Document: bill_{i}.pdf\nContent: ${i}00" for i in range(7)]

        service.generate("case-1", "u1", complaint=sample_complaint, context_docs=docs)

        prompt = fake_gemini.prompts[0]
        assert "Document: bill_4.pdf" in prompt
        assert "Document: bill_5.pdf" not in prompt

    def test_retrieved_context(self, service, fake_gemini, retriever, sample_complaint):
        from execution.doculaw.retriever import CaseDocument
        retriever.add_documents(
            [CaseDocument(id="m1", name="medical_bill.pdf", content="Total charges: $12,400.", type="support")],
            "case-1", "u1",
        )
        fake_gemini.queue(json.dumps(SECTIONS))

        service.generate("case-1", "u1", complaint=sample_complaint)

        assert "Document: medical_bill.pdf" in fake_gemini.prompts[0]

    def test_invalid_response(self, service, fake_gemini, sample_complaint):
        from execution.doculaw.gemini import GenerationError
        fake_gemini.queue("Here is your letter: Dear Sir...")
        with pytest.raises(GenerationError, match="expected format"):
            service.generate("case-1", "u1", complaint=sample_complaint)


# ---------------------------------------------------------------------------
# AI edits
# ---------------------------------------------------------------------------

class TestAiEdits:
    """Tests for ai_edit_section and ai_edit_all."""

    def test_edit_section(self, saved_letter, fake_gemini):
        fake_gemini.queue("```\nWe demand $75,000 within 30 days.\n```")

        letter = saved_letter.ai_edit_section("case-1", "settlement_demand", "raise to 75k", "u1")

        assert letter.sections.settlement_demand == "We demand $75,000 within 30 days."
        assert "Original Section (settlement_demand):\nWe demand $50,000." in fake_gemini.prompts[0]

    def test_edit_section_empty(self, saved_letter, fake_gemini):
        from execution.doculaw.gemini import GenerationError
        fake_gemini.queue("   ")
        with pytest.raises(GenerationError):
            saved_letter.ai_edit_section("case-1", "closing", "shorter", "u1")

    def test_edit_all_merges_known_keys(self, saved_letter, fake_gemini):
        fake_gemini.queue(json.dumps({"closing": "Respectfully,", "salutation": "Dear Ms. Doe:", "extra": "x"}))

        letter = saved_letter.ai_edit_all("case-1", "more formal", "u1")

        assert letter.sections.closing == "Respectfully,"
        assert letter.sections.salutation == "Dear Ms. Doe:"
        assert letter.sections.header == SECTIONS["header"]

    def test_edit_all_requires_letter(self, service):
        with pytest.raises(LookupError):
            service.ai_edit_all("case-1", "x", "u1")

    def test_edit_all_bad_json(self, saved_letter, fake_gemini):
        from execution.doculaw.gemini import GenerationError
        fake_gemini.queue("no json")
        with pytest.raises(GenerationError):
            saved_letter.ai_edit_all("case-1", "x", "u1")
