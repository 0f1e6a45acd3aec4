"""Tests for the FastAPI backend endpoints."""

import pytest
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

LAWYER_ID = "lawyer-1"

CASE = {
    "id": "case-1",
    "user_id": LAWYER_ID,
    "name": "Smith v. Acme",
    "client_name": "Jane Smith",
    "case_type": "auto",
    "status": "Active",
}


# ---------------------------------------------------------------------------
# Mock the ServiceContainer so no real DB or API is needed
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_db():
    """Create a mock CaseDatabase."""
    db = MagicMock()
    db.ping.return_value = True
    db.get_case.return_value = dict(CASE)
    db.get_client.return_value = {"id": "client-1", "first_name": "Jane", "last_name": "Smith", "email": "jane@example.com"}
    db.latest_complaint_document.return_value = None
    db.get_document.return_value = None
    db.log_audit.return_value = None
    db.create_document.side_effect = lambda **kw: {
        "id": "doc-1",
        "name": kw["name"],
        "url": kw["url"],
        "type": kw["mime_type"],
        "size": kw["size"],
        "document_type": kw["document_type"],
        "extracted_text": kw["extracted_text"],
    }
    return db


@pytest.fixture
def services():
    """Mock services keyed by their container attribute."""
    mocks = {
        "storage": MagicMock(),
        "retriever": MagicMock(),
        "assistant": MagicMock(),
        "gemini": MagicMock(),
        "extractor": MagicMock(),
        "discovery": MagicMock(),
        "demand_letters": MagicMock(),
        "sms": MagicMock(),
        "portal": MagicMock(),
    }
    mocks["storage"].public_url.side_effect = lambda key: f"/api/v1/storage/{key}"
    mocks["retriever"].is_configured = False
    mocks["gemini"].is_configured = True
    return mocks


@pytest.fixture
def client(mock_db, services):
    """Create a TestClient with mocked services."""
    from execution.doculaw import api

    api._container._db = mock_db
    for name, mock in services.items():
        setattr(api._container, f"_{name}", mock)
    api._rate_limiter._requests.clear()

    return TestClient(api.app)


@pytest.fixture
def lawyer_headers(jwt_secret):
    from execution.doculaw.auth import create_session_jwt
    token = create_session_jwt(LAWYER_ID, "alex@riveralaw.com", "Alex Rivera", role="lawyer")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_headers(jwt_secret):
    from execution.doculaw.auth import create_session_jwt
    token = create_session_jwt("user-9", "jane@example.com", "Jane Smith", role="client")
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    def test_health_check(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert data["database"] == "connected"
        assert data["openai"] == "configured"
        assert data["pinecone"] == "not_configured"
        assert data["gemini"] == "configured"

    def test_database_down(self, client, mock_db):
        mock_db.ping.side_effect = RuntimeError("connection refused")
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["database"] == "disconnected"

    def test_vector_store_health_unconfigured(self, client):
        response = client.get("/api/v1/vector-store/health")
        assert response.json() == {"configured": False, "status": "not_configured"}

    def test_vector_store_health_stats(self, client, services):
        services["retriever"].is_configured = True
        services["retriever"].store.describe_index_stats.return_value = {"totalVectorCount": 12}
        data = client.get("/api/v1/vector-store/health").json()
        assert data["status"] == "ok"
        assert data["stats"] == {"totalVectorCount": 12}


# ---------------------------------------------------------------------------
# Authentication and roles
# ---------------------------------------------------------------------------

class TestAuthMiddleware:
    def test_missing_token(self, client):
        response = client.get("/api/v1/cases")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_invalid_token(self, client, jwt_secret):
        response = client.get("/api/v1/cases", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired session"

    def test_client_cannot_use_lawyer_endpoints(self, client, client_headers):
        response = client.get("/api/v1/cases", headers=client_headers)
        assert response.status_code == 403

    def test_lawyer_cannot_use_client_endpoints(self, client, lawyer_headers):
        response = client.get("/api/v1/client/cases", headers=lawyer_headers)
        assert response.status_code == 403

    def test_client_cases(self, client, mock_db, client_headers):
        mock_db.list_cases_for_client_user.return_value = [dict(CASE)]
        response = client.get("/api/v1/client/cases", headers=client_headers)
        assert response.status_code == 200
        mock_db.list_cases_for_client_user.assert_called_once_with("user-9")

    def test_client_profile(self, client, mock_db, client_headers):
        mock_db.get_client_by_user.return_value = {"id": "client-1", "first_name": "Jane", "user_id": "user-9"}
        response = client.get("/api/v1/client/me", headers=client_headers)
        assert response.status_code == 200
        assert response.json()["id"] == "client-1"
        mock_db.get_client_by_user.assert_called_once_with("user-9")

    def test_client_profile_unlinked(self, client, mock_db, client_headers):
        mock_db.get_client_by_user.return_value = None
        response = client.get("/api/v1/client/me", headers=client_headers)
        assert response.status_code == 404


class TestAuthEndpoints:
    def test_signup(self, client, mock_db, jwt_secret):
        from execution.doculaw.auth import verify_session_jwt
        mock_db.create_user.return_value = {"id": "u1", "email": "alex@riveralaw.com", "name": "Alex", "role": "lawyer"}

        response = client.post("/api/v1/auth/signup", json={
            "email": "alex@riveralaw.com", "password": "correct horse", "name": "Alex",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == "u1"
        assert verify_session_jwt(data["token"])["role"] == "lawyer"
        args, kwargs = mock_db.create_user.call_args
        assert args[0] == "alex@riveralaw.com"
        assert args[1].startswith("pbkdf2:sha256:")
        assert kwargs["role"] == "lawyer"

    def test_signup_duplicate(self, client, mock_db, jwt_secret):
        mock_db.create_user.side_effect = ValueError("A user with this email already exists")
        response = client.post("/api/v1/auth/signup", json={"email": "a@b.com", "password": "correct horse"})
        assert response.status_code == 400

    def test_signup_short_password(self, client):
        response = client.post("/api/v1/auth/signup", json={"email": "a@b.com", "password": "short"})
        assert response.status_code == 422

    def test_login(self, client, mock_db, jwt_secret):
        from execution.doculaw.auth import hash_password
        mock_db.get_user_by_email.return_value = {
            "id": "u1", "email": "a@b.com", "role": "lawyer", "password_hash": hash_password("correct horse"),
        }

        ok = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "correct horse"})
        assert ok.status_code == 200
        mock_db.record_login.assert_called_once_with("u1")

        bad = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "wrong horse"})
        assert bad.status_code == 401
        assert bad.json()["detail"] == "Invalid email or password"

    def test_login_unknown_user(self, client, mock_db):
        mock_db.get_user_by_email.return_value = None
        response = client.post("/api/v1/auth/login", json={"email": "x@y.com", "password": "whatever1"})
        assert response.status_code == 401

    def test_google_login_rejects_clients(self, client, mock_db, jwt_secret):
        from execution.doculaw import api
        google_user = {"google_sub": "g-1", "email": "jane@example.com", "name": "Jane", "avatar_url": ""}
        mock_db.create_or_get_google_user.return_value = {"id": "user-9", "email": "jane@example.com", "role": "client"}
        with patch.object(api, "verify_google_token", return_value=google_user):
            response = client.post("/api/v1/auth/google", json={"id_token": "tok"})
        assert response.status_code == 403

    def test_google_login_invalid_token(self, client):
        from execution.doculaw import api
        with patch.object(api, "verify_google_token", return_value=None):
            response = client.post("/api/v1/auth/google", json={"id_token": "tok"})
        assert response.status_code == 401

    def test_client_login(self, client, services):
        from execution.doculaw.client_portal import LoginLinkResult
        services["portal"].request_login_link.return_value = LoginLinkResult(
            email="jane@example.com", login_link="https://x/verify?token=t", sms_sent=True,
        )
        response = client.post("/api/v1/auth/client-login", json={"email": "jane@example.com"})
        assert response.status_code == 200
        assert response.json() == {"message": "Check your phone for a login link.", "sms_sent": True}
        services["portal"].request_login_link.assert_called_once_with("jane@example.com", None)

    def test_client_login_unknown_email(self, client, services):
        services["portal"].request_login_link.side_effect = LookupError("This email is not registered as a client")
        response = client.post("/api/v1/auth/client-login", json={"email": "x@y.com"})
        assert response.status_code == 404
        assert response.json()["detail"] == "This email is not registered as a client"

    def test_magic_link_invalid(self, client, services):
        from execution.doculaw.client_portal import InvitationError
        services["portal"].complete_login.side_effect = InvitationError("This login link is invalid or has expired")
        response = client.post("/api/v1/auth/magic-link/verify", json={"token": "bad"})
        assert response.status_code == 401

    def test_accept_invitation(self, client, services):
        services["portal"].accept_invitation.return_value = {
            "token": "session-token",
            "user": {"id": "user-9", "email": "jane@example.com", "role": "client", "name": "Jane Smith"},
        }
        response = client.post("/api/v1/auth/accept-invitation", json={"token": "inv", "password": "supersecret"})
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "client"
        services["portal"].accept_invitation.assert_called_once_with("inv", "supersecret", None)

    def test_me(self, client, mock_db, lawyer_headers):
        mock_db.get_user_by_id.return_value = {"id": LAWYER_ID, "email": "alex@riveralaw.com", "title": "Partner"}
        response = client.get("/api/v1/me", headers=lawyer_headers)
        assert response.status_code == 200
        assert response.json()["title"] == "Partner"

    def test_update_me(self, client, mock_db, lawyer_headers):
        mock_db.update_profile.return_value = {"id": LAWYER_ID, "email": "a@b.com", "onboarding_completed": True}
        response = client.put("/api/v1/me", headers=lawyer_headers, json={"onboarding_completed": True})
        assert response.status_code == 200
        mock_db.update_profile.assert_called_once_with(LAWYER_ID, onboarding_completed=True)


# ---------------------------------------------------------------------------
# Clients and cases
# ---------------------------------------------------------------------------

class TestClientsEndpoint:
    def test_create_client(self, client, mock_db, lawyer_headers):
        mock_db.create_client.return_value = {"id": "client-1", "first_name": "Jane"}
        response = client.post("/api/v1/clients", headers=lawyer_headers, json={
            "first_name": "Jane", "last_name": "Smith", "email": "jane@example.com",
        })
        assert response.status_code == 201
        mock_db.create_client.assert_called_once_with(
            LAWYER_ID, first_name="Jane", last_name="Smith", email="jane@example.com", phone=None, case_type=None,
        )

    def test_delete_missing_client(self, client, mock_db, lawyer_headers):
        mock_db.delete_client.return_value = False
        response = client.delete("/api/v1/clients/nope", headers=lawyer_headers)
        assert response.status_code == 404

    def test_invite_client(self, client, services, lawyer_headers):
        from execution.doculaw.client_portal import InvitationResult
        services["portal"].invite_client.return_value = InvitationResult(
            invitation_link="https://app/client-signup?invitation_token=t", sms_sent=False, sms_error="SMS is not configured",
        )
        response = client.post("/api/v1/clients/client-1/invite", headers=lawyer_headers)
        assert response.status_code == 200
        assert response.json()["sms_error"] == "SMS is not configured"
        services["portal"].invite_client.assert_called_once_with({"id": LAWYER_ID, "name": "Alex Rivera"}, "client-1")

    def test_invite_unknown_client(self, client, services, lawyer_headers):
        services["portal"].invite_client.side_effect = LookupError("Client not found")
        response = client.post("/api/v1/clients/nope/invite", headers=lawyer_headers)
        assert response.status_code == 404


class TestCasesEndpoint:
    def test_create_case(self, client, mock_db, lawyer_headers):
        mock_db.create_case.return_value = {"id": "case-2", "name": "Doe v. Roe"}
        response = client.post("/api/v1/cases", headers=lawyer_headers, json={"name": "Doe v. Roe", "client_id": "client-1"})
        assert response.status_code == 201
        kwargs = mock_db.create_case.call_args.kwargs
        assert kwargs["status"] == "Active"
        assert kwargs["client_id"] == "client-1"

    def test_create_case_foreign_client(self, client, mock_db, lawyer_headers):
        mock_db.get_client.return_value = None
        response = client.post("/api/v1/cases", headers=lawyer_headers, json={"name": "X", "client_id": "other"})
        assert response.status_code == 404
        mock_db.create_case.assert_not_called()

    def test_create_case_bad_status(self, client, lawyer_headers):
        response = client.post("/api/v1/cases", headers=lawyer_headers, json={"name": "X", "status": "Closed"})
        assert response.status_code == 422

    def test_case_not_found(self, client, mock_db, lawyer_headers):
        mock_db.get_case.return_value = None
        response = client.get("/api/v1/cases/nope", headers=lawyer_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Case not found"

    def test_list_cases_filters(self, client, mock_db, lawyer_headers):
        mock_db.list_cases.return_value = []
        client.get("/api/v1/cases?archived=true&search=smith", headers=lawyer_headers)
        mock_db.list_cases.assert_called_once_with(
            LAWYER_ID, status=None, archived=True, search="smith", client_id=None,
        )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class TestDocumentsEndpoint:
    def test_upload_indexes_text(self, client, mock_db, services, lawyer_headers):
        services["retriever"].is_configured = True
        services["retriever"].add_documents.return_value = 3

        response = client.post(
            "/api/v1/cases/case-1/documents",
            headers=lawyer_headers,
            files={"file": ("notes.txt", b"Plaintiff was injured on March 3.", "text/plain")},
            data={"document_type": "complaint"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["vectors"] == 3
        assert data["vectorized"] is True
        assert data["extracted_chars"] == len("Plaintiff was injured on March 3.")
        key = services["storage"].upload.call_args.args[0]
        assert key.startswith(f"{LAWYER_ID}/case-1/")
        assert key.endswith("_notes.txt")
        docs, case_id, user_id = services["retriever"].add_documents.call_args.args
        assert docs[0].type == "complaint"
        assert (case_id, user_id) == ("case-1", LAWYER_ID)

    def test_upload_without_vector_store(self, client, services, lawyer_headers):
        response = client.post(
            "/api/v1/cases/case-1/documents",
            headers=lawyer_headers,
            files={"file": ("notes.txt", b"Some text", "text/plain")},
        )
        assert response.status_code == 201
        assert response.json()["vectorized"] is False
        services["retriever"].add_documents.assert_not_called()

    def test_upload_empty_file(self, client, lawyer_headers):
        response = client.post(
            "/api/v1/cases/case-1/documents",
            headers=lawyer_headers,
            files={"file": ("empty.txt", b"", "text/plain")},
        )
        assert response.status_code == 400

    def test_delete_document(self, client, mock_db, services, lawyer_headers):
        services["retriever"].is_configured = True
        mock_db.get_document.return_value = {"id": "doc-1", "path": f"{LAWYER_ID}/case-1/x_notes.txt"}
        response = client.delete("/api/v1/documents/doc-1", headers=lawyer_headers)
        assert response.status_code == 200
        services["retriever"].delete_document.assert_called_once_with("doc-1")
        services["storage"].delete.assert_called_once_with(f"{LAWYER_ID}/case-1/x_notes.txt")
        mock_db.delete_document.assert_called_once_with("doc-1", LAWYER_ID)

    @pytest.fixture
    def real_storage(self, tmp_path, services):
        from execution.doculaw import api
        from execution.doculaw.storage import DocumentStorage, StorageConfig
        storage = DocumentStorage(StorageConfig(root=str(tmp_path / "files")))
        storage.upload(f"{LAWYER_ID}/case-1/notes.txt", b"hello")
        storage.upload("victim/case-9/secret.txt", b"privileged settlement memo")
        services["storage"] = storage
        api._container._storage = storage
        return storage

    def test_storage_owner_only(self, real_storage, client, lawyer_headers):
        response = client.get("/api/v1/storage/victim/case-9/secret.txt", headers=lawyer_headers)
        assert response.status_code == 403

    def test_storage_download(self, real_storage, client, lawyer_headers):
        response = client.get(f"/api/v1/storage/{LAWYER_ID}/case-1/notes.txt", headers=lawyer_headers)
        assert response.status_code == 200
        assert response.content == b"hello"

    def test_storage_rejects_dot_segments(self, real_storage, client, lawyer_headers):
        response = client.get(
            f"/api/v1/storage/{LAWYER_ID}/%2e%2e/victim/case-9/secret.txt", headers=lawyer_headers,
        )
        assert response.status_code in (403, 404)
        assert b"privileged" not in response.content

    def test_storage_missing_file(self, real_storage, client, lawyer_headers):
        response = client.get(f"/api/v1/storage/{LAWYER_ID}/case-1/gone.txt", headers=lawyer_headers)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Complaint
# ---------------------------------------------------------------------------

class TestComplaintEndpoint:
    def test_extract(self, client, mock_db, services, lawyer_headers, sample_complaint):
        mock_db.latest_complaint_document.return_value = {"id": "doc-7", "path": "p", "type": "application/pdf"}
        services["storage"].download.return_value = b"%PDF-1.4"
        services["extractor"].extract_from_file.return_value = sample_complaint

        response = client.post("/api/v1/cases/case-1/complaint/extract", headers=lawyer_headers, json={})

        assert response.status_code == 200
        assert response.json()["plaintiff"] == "Jane Smith"
        services["extractor"].extract_from_file.assert_called_once_with(b"%PDF-1.4", "application/pdf")
        assert mock_db.set_document_extraction.call_args.args[0] == "doc-7"

    def test_extract_upstream_failure(self, client, mock_db, services, lawyer_headers):
        from execution.doculaw.complaint import ComplaintExtractionError
        mock_db.latest_complaint_document.return_value = {"id": "doc-7", "path": "p", "type": "application/pdf"}
        services["extractor"].extract_from_file.side_effect = ComplaintExtractionError("Model returned invalid JSON")
        response = client.post("/api/v1/cases/case-1/complaint/extract", headers=lawyer_headers, json={})
        assert response.status_code == 502

    def test_no_complaint(self, client, lawyer_headers):
        response = client.post("/api/v1/cases/case-1/complaint/extract", headers=lawyer_headers, json={})
        assert response.status_code == 404

    def test_document_from_other_case(self, client, mock_db, lawyer_headers):
        mock_db.get_document.return_value = {"id": "doc-9", "case_id": "case-2"}
        response = client.post(
            "/api/v1/cases/case-1/complaint/extract", headers=lawyer_headers, json={"document_id": "doc-9"},
        )
        assert response.status_code == 404

    def test_checkboxes_require_extraction(self, client, mock_db, lawyer_headers):
        mock_db.latest_complaint_document.return_value = {"id": "doc-7", "extracted_data": None}
        response = client.post("/api/v1/cases/case-1/complaint/checkboxes", headers=lawyer_headers, json={})
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class TestDiscoveryEndpoint:
    def test_unknown_kind(self, client, lawyer_headers):
        response = client.get("/api/v1/cases/case-1/discovery/depositions", headers=lawyer_headers)
        assert response.status_code == 404

    def test_generate(self, client, services, lawyer_headers):
        from execution.doculaw.discovery import DiscoveryContent, ADMISSIONS
        services["discovery"].generate.return_value = DiscoveryContent(
            items=["Admit that you ran the red light."], definitions=["The term 'YOU' means Defendant."],
            is_generated=True, exists=True,
        )

        response = client.post(
            "/api/v1/cases/case-1/discovery/admissions/generate", headers=lawyer_headers, json={"item_count": 12},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "admissions"
        assert data["items"] == ["Admit that you ran the red light."]
        services["discovery"].generate.assert_called_once_with(
            ADMISSIONS, "case-1", None, LAWYER_ID, item_count=12,
        )

    def test_generate_without_body(self, client, services, lawyer_headers):
        from execution.doculaw.discovery import DiscoveryContent
        services["discovery"].generate.return_value = DiscoveryContent(exists=True)
        response = client.post("/api/v1/cases/case-1/discovery/interrogatories/generate", headers=lawyer_headers)
        assert response.status_code == 200
        assert services["discovery"].generate.call_args.kwargs["item_count"] is None

    def test_generation_failure(self, client, services, lawyer_headers):
        from execution.doculaw.gemini import GenerationError
        services["discovery"].generate.side_effect = GenerationError("Model returned no text")
        response = client.post("/api/v1/cases/case-1/discovery/productions/generate", headers=lawyer_headers)
        assert response.status_code == 502

    def test_edit_index_out_of_range(self, client, services, lawyer_headers):
        services["discovery"].edit_item.side_effect = ValueError("No admission at index 9")
        response = client.post(
            "/api/v1/cases/case-1/discovery/admissions/edit",
            headers=lawyer_headers,
            json={"instruction": "Make it shorter", "index": 9},
        )
        assert response.status_code == 400

    def test_export_missing(self, client, services, lawyer_headers):
        from execution.doculaw.discovery import DiscoveryContent
        services["discovery"].load.return_value = DiscoveryContent(exists=False)
        response = client.get("/api/v1/cases/case-1/discovery/admissions/export", headers=lawyer_headers)
        assert response.status_code == 404

    def test_export_pdf(self, client, services, lawyer_headers):
        from execution.doculaw.discovery import DiscoveryContent
        services["discovery"].load.return_value = DiscoveryContent(
            items=["Admit that you ran the red light."], definitions=[], exists=True,
        )
        response = client.get("/api/v1/cases/case-1/discovery/admissions/export?format=pdf", headers=lawyer_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert "Jane%20Smith.pdf" in response.headers["content-disposition"]

    def test_export_bad_format(self, client, lawyer_headers):
        response = client.get("/api/v1/cases/case-1/discovery/admissions/export?format=rtf", headers=lawyer_headers)
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Demand letter
# ---------------------------------------------------------------------------

class TestDemandLetterEndpoint:
    def test_generate(self, client, services, lawyer_headers):
        from execution.doculaw.demand_letter import DemandLetter, DemandLetterSections
        services["demand_letters"].generate.return_value = DemandLetter(
            sections=DemandLetterSections(salutation="Dear Adjuster:"), body_text="Dear Adjuster:",
            is_generated=True, exists=True,
        )
        response = client.post("/api/v1/cases/case-1/demand-letter/generate", headers=lawyer_headers)
        assert response.status_code == 200
        assert response.json()["sections"]["salutation"] == "Dear Adjuster:"
        services["demand_letters"].generate.assert_called_once_with(
            "case-1", LAWYER_ID, complaint=None, context_docs=None, instructions=None,
        )

    def test_unknown_section(self, client, services, lawyer_headers):
        services["demand_letters"].update_section.side_effect = ValueError("Unknown section: footer")
        response = client.patch(
            "/api/v1/cases/case-1/demand-letter/sections/footer", headers=lawyer_headers, json={"value": "x"},
        )
        assert response.status_code == 400

    def test_export_missing(self, client, services, lawyer_headers):
        from execution.doculaw.demand_letter import DemandLetter
        services["demand_letters"].load.return_value = DemandLetter(sections=None)
        response = client.get("/api/v1/cases/case-1/demand-letter/export", headers=lawyer_headers)
        assert response.status_code == 404

    def test_export_stores_file(self, client, services, lawyer_headers):
        from execution.doculaw.demand_letter import DemandLetter, DemandLetterSections
        services["demand_letters"].load.return_value = DemandLetter(
            sections=DemandLetterSections(salutation="Dear Adjuster:", settlement_demand="We demand $50,000."),
            exists=True,
        )

        response = client.get("/api/v1/cases/case-1/demand-letter/export?format=docx", headers=lawyer_headers)

        assert response.status_code == 200
        key = f"{LAWYER_ID}/case-1/exports/demand_letter.docx"
        url = f"/api/v1/storage/{key}"
        assert response.json()["url"] == url
        assert response.json()["filename"] == "Demand Letter.docx"
        assert services["storage"].upload.call_args.args[0] == key
        assert services["storage"].upload.call_args.kwargs == {"upsert": True}
        services["demand_letters"].record_export.assert_called_once_with("case-1", "docx", url)


# ---------------------------------------------------------------------------
# Vector store and questions
# ---------------------------------------------------------------------------

class TestVectorStoreEndpoint:
    def _result(self):
        from execution.doculaw.vector_store import SearchResult
        return SearchResult(
            id="doc-1-chunk-0",
            score=0.91,
            metadata={"documentId": "doc-1", "documentName": "complaint.pdf", "content": "The collision..."},
            content="The collision...",
        )

    def test_search(self, client, services, lawyer_headers):
        services["retriever"].search.return_value = [self._result()]
        response = client.post(
            "/api/v1/vector-store/search", headers=lawyer_headers, json={"case_id": "case-1", "query": "collision"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data[0]["document_name"] == "complaint.pdf"
        assert "content" not in data[0]["metadata"]
        services["retriever"].search.assert_called_once_with("collision", "case-1", top_k=5)

    def test_search_other_lawyers_case(self, client, mock_db, services, lawyer_headers):
        mock_db.get_case.return_value = None
        response = client.post(
            "/api/v1/vector-store/search", headers=lawyer_headers, json={"case_id": "case-x", "query": "q"},
        )
        assert response.status_code == 404
        services["retriever"].search.assert_not_called()

    def test_ask(self, client, services, lawyer_headers):
        from execution.doculaw.assistant import AssistantAnswer
        services["assistant"].answer.return_value = AssistantAnswer(answer="On March 3.", sources=[self._result()])
        response = client.post(
            "/api/v1/vector-store/ask", headers=lawyer_headers, json={"case_id": "case-1", "query": "When?"},
        )
        assert response.status_code == 200
        assert response.json()["answer"] == "On March 3."
        assert len(response.json()["sources"]) == 1

    def test_ask_stream(self, client, services, lawyer_headers):
        services["assistant"].stream_answer.return_value = iter([
            'event: token\ndata: "On March 3."\n\n',
            "event: done\ndata: {}\n\n",
        ])
        response = client.post(
            "/api/v1/vector-store/ask/stream", headers=lawyer_headers, json={"case_id": "case-1", "query": "When?"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: token" in response.text
        assert "event: done" in response.text

    def test_rate_limited(self, client, services, lawyer_headers, monkeypatch):
        from execution.doculaw import api
        from execution.doculaw.assistant import AssistantAnswer
        monkeypatch.setattr(api, "_rate_limiter", api.RateLimiter(max_requests=1, window_seconds=60))
        services["assistant"].answer.return_value = AssistantAnswer(answer="ok")
        body = {"case_id": "case-1", "query": "q"}

        assert client.post("/api/v1/vector-store/ask", headers=lawyer_headers, json=body).status_code == 200
        assert client.post("/api/v1/vector-store/ask", headers=lawyer_headers, json=body).status_code == 429

    def test_add_documents(self, client, mock_db, services, lawyer_headers):
        mock_db.get_document.return_value = {"id": "doc-1", "case_id": "case-1"}
        services["retriever"].add_documents.return_value = 2
        body = {"case_id": "case-1", "documents": [{"id": "doc-1", "name": "a.txt", "content": "text"}]}

        response = client.post("/api/v1/vector-store/documents", headers=lawyer_headers, json=body)

        assert response.status_code == 200
        assert response.json()["vectors"] == 2
        mock_db.get_document.assert_called_once_with("doc-1", LAWYER_ID)

    @pytest.mark.parametrize("owned", [None, {"id": "doc-9", "case_id": "case-other"}])
    def test_add_documents_rejects_foreign_ids(self, client, mock_db, services, lawyer_headers, owned):
        mock_db.get_document.return_value = owned
        body = {"case_id": "case-1", "documents": [{"id": "doc-9", "name": "a.txt", "content": "text"}]}

        response = client.post("/api/v1/vector-store/documents", headers=lawyer_headers, json=body)

        assert response.status_code == 404
        services["retriever"].add_documents.assert_not_called()

    def test_delete_vectors_unknown_document(self, client, lawyer_headers):
        response = client.delete("/api/v1/vector-store/documents/nope", headers=lawyer_headers)
        assert response.status_code == 404


class TestRateLimiter:
    def test_sliding_window(self):
        from execution.doculaw.api import RateLimiter
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        assert limiter.is_allowed("k")
        assert limiter.is_allowed("k")
        assert not limiter.is_allowed("k")
        assert limiter.is_allowed("other")


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------

class TestSmsEndpoint:
    def test_send(self, client, services, lawyer_headers):
        from execution.doculaw.sms import SendSmsResult
        services["sms"].send.return_value = SendSmsResult(
            success=True, message="SMS sent successfully", twilio_sid="SM1", message_id="m1",
        )
        response = client.post("/api/v1/sms/send", headers=lawyer_headers, json={
            "to_phone": "+15551112222", "message_type": "reminder", "client_name": "Jane",
        })
        assert response.status_code == 200
        assert response.json()["twilio_sid"] == "SM1"
        request = services["sms"].send.call_args.args[0]
        assert request.lawyer_id == LAWYER_ID
        assert request.lawyer_name == "Alex Rivera"
        assert request.message_type == "reminder"

    def test_send_failure(self, client, services, lawyer_headers):
        from execution.doculaw.sms import SendSmsResult
        services["sms"].send.return_value = SendSmsResult(
            success=False, error="Failed to send SMS", details="The 'To' number is not a valid phone number.",
        )
        response = client.post("/api/v1/sms/send", headers=lawyer_headers, json={
            "to_phone": "123", "message_type": "custom", "custom_message": "Hi",
        })
        assert response.status_code == 502
        assert "not a valid phone number" in response.json()["detail"]

    def test_unknown_message_type(self, client, lawyer_headers):
        response = client.post("/api/v1/sms/send", headers=lawyer_headers, json={
            "to_phone": "+15551112222", "message_type": "spam",
        })
        assert response.status_code == 422
