"""
Shared fixtures and test utilities for DocuLaw tests.

Provides mock services and sample data so that all tests can run without
API keys, a database, or external network access.
"""

import sys
import json
import uuid
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

TEST_JWT_SECRET = "test-secret-for-doculaw-tests-0123456789"

# ---------------------------------------------------------------------------
# Sample case text
# ---------------------------------------------------------------------------
SAMPLE_COMPLAINT_TEXT = """
SUPERIOR COURT OF THE STATE OF CALIFORNIA
FOR THE COUNTY OF LOS ANGELES

JANE SMITH, Plaintiff,
v.
ACME DELIVERY CORP., Defendant.

Case No. 24STCV01234

COMPLAINT FOR DAMAGES (NEGLIGENCE; MOTOR VEHICLE)

1. On March 3, 2024, at the intersection of Main Street and 5th Avenue in Los Angeles,
Defendant's delivery truck ran a red light and struck Plaintiff's vehicle.
2. As a direct result, Plaintiff suffered a fractured wrist and cervical strain and
incurred medical expenses and lost wages.
3. Defendant owed Plaintiff a duty of care and breached that duty.
"""

SAMPLE_COMPLAINT_DATA = {
    "plaintiff": "Jane Smith",
    "defendant": "Acme Delivery Corp.",
    "caseNumber": "24STCV01234",
    "filingDate": "2024-04-01",
    "chargeDescription": "Negligence arising from a motor vehicle collision",
    "court": {"county": "Los Angeles"},
    "case": {"shortTitle": "Smith v. Acme", "caseNumber": "24STCV01234"},
    "attorney": {
        "name": "Alex Rivera",
        "firm": "Rivera Law",
        "address": {"street": "1 Main St", "city": "Los Angeles", "state": "CA", "zip": "90012"},
        "phone": "213-555-0100",
        "attorneyFor": "Plaintiff Jane Smith",
    },
    "caseType": "auto",
}


@pytest.fixture
def sample_complaint_text():
    return SAMPLE_COMPLAINT_TEXT


@pytest.fixture
def sample_complaint():
    from execution.doculaw.complaint import ComplaintInformation
    return ComplaintInformation.model_validate(SAMPLE_COMPLAINT_DATA)


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs."""

    def __init__(self, dimensions=16):
        self._dimensions = dimensions
        self._call_count = 0

    def embed_documents(self, texts):
        return [self._deterministic_embedding(t) for t in texts]

    def embed_query(self, query):
        self._call_count += 1
        return self._deterministic_embedding(query)

    def _deterministic_embedding(self, text):
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Mock vector index (no Pinecone needed)
# ---------------------------------------------------------------------------

class MockVectorStore:
    """In-memory stand-in for PineconeVectorStore supporting $eq metadata filters."""

    def __init__(self, configured=True):
        self._vectors = {}
        self._configured = configured
        self.queries = []

    @property
    def is_configured(self):
        return self._configured

    def upsert(self, records):
        for r in records:
            self._vectors[r.id] = r
        return len(records)

    def _matches(self, metadata, filter):
        for key, cond in (filter or {}).items():
            if metadata.get(key) != cond.get("$eq"):
                return False
        return True

    def query(self, vector, filter=None, top_k=5):
        from execution.doculaw.vector_store import SearchResult

        self.queries.append({"vector": vector, "filter": filter, "top_k": top_k})
        scored = []
        for r in self._vectors.values():
            if not self._matches(r.metadata, filter):
                continue
            score = sum(a * b for a, b in zip(vector, r.values))
            scored.append(SearchResult(
                id=r.id, score=score, metadata=dict(r.metadata), content=r.metadata.get("content", ""),
            ))
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:top_k]

    def delete(self, ids):
        for i in ids:
            self._vectors.pop(i, None)
        return len(ids)

    def describe_index_stats(self):
        return {"totalVectorCount": len(self._vectors), "dimension": 16}


@pytest.fixture
def mock_vector_store():
    return MockVectorStore()


@pytest.fixture
def retriever(mock_vector_store, mock_embedding_service):
    from execution.doculaw.retriever import CaseRetriever
    return CaseRetriever(mock_vector_store, mock_embedding_service)


# ---------------------------------------------------------------------------
# Fake Gemini client
# ---------------------------------------------------------------------------

class FakeGemini:
    """Returns queued responses in order and records every prompt."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []
        self.file_calls = []

    @property
    def is_configured(self):
        return True

    def queue(self, *responses):
        self.responses.extend(responses)

    def _next(self):
        if not self.responses:
            raise AssertionError("FakeGemini has no queued response")
        value = self.responses.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def generate(self, prompt):
        self.prompts.append(prompt)
        return self._next()

    def generate_with_file(self, prompt, data, mime_type):
        self.prompts.append(prompt)
        self.file_calls.append((data, mime_type))
        return self._next()


@pytest.fixture
def fake_gemini():
    return FakeGemini()


# ---------------------------------------------------------------------------
# In-memory case database (discovery, demand letters, cases)
# ---------------------------------------------------------------------------

class InMemoryCaseDatabase:
    """The subset of CaseDatabase used by the content services."""

    def __init__(self):
        self.discovery = {}
        self.demand_letters = {}
        self.cases = {}
        self.sms = {}
        self.audit = []

    def add_case(self, user_id, name="Smith v. Acme", client_name="Jane Smith", case_type="auto"):
        case_id = str(uuid.uuid4())
        self.cases[case_id] = {
            "id": case_id, "user_id": user_id, "name": name,
            "client_name": client_name, "case_type": case_type,
        }
        return case_id

    def get_case_by_id(self, case_id):
        return self.cases.get(case_id)

    def get_discovery(self, table, items_column, case_id):
        row = self.discovery.get((table, case_id))
        return json.loads(json.dumps(row)) if row else None

    def upsert_discovery(self, table, items_column, case_id, items, definitions, is_generated, user_id):
        self.discovery[(table, case_id)] = {
            items_column: list(items),
            "definitions": list(definitions),
            "is_generated": is_generated,
            "created_by": user_id,
            "updated_at": "2024-05-01T00:00:00+00:00",
        }

    def delete_discovery(self, table, case_id):
        return self.discovery.pop((table, case_id), None) is not None

    def get_demand_letter(self, case_id):
        row = self.demand_letters.get(case_id)
        return json.loads(json.dumps(row)) if row else None

    def upsert_demand_letter(self, case_id, sections, body_text, is_generated, user_id):
        existing = self.demand_letters.get(case_id, {})
        self.demand_letters[case_id] = {
            "sections": dict(sections),
            "body_text": body_text,
            "is_generated": is_generated,
            "pdf_url": existing.get("pdf_url"),
            "docx_url": existing.get("docx_url"),
        }

    def set_demand_letter_url(self, case_id, fmt, url):
        self.demand_letters[case_id][f"{fmt}_url"] = url
        return True

    def create_sms_message(self, **fields):
        message_id = str(uuid.uuid4())
        self.sms[message_id] = dict(fields, status="pending")
        return {"id": message_id}

    def update_sms_message(self, message_id, **fields):
        self.sms[message_id].update(fields)
        return True

    def log_audit(self, *args, **kwargs):
        self.audit.append((args, kwargs))


@pytest.fixture
def memory_db():
    return InMemoryCaseDatabase()
