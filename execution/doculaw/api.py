"""
FastAPI Backend for DocuLaw

REST API for lawyers (clients, cases, documents, discovery, demand letters),
the client portal, the case-document vector index and SMS notifications.

Run with: uvicorn execution.doculaw.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import uuid
import logging
from typing import Optional
from pathlib import Path
from collections import defaultdict
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, Depends, Header, Request, Query
from fastapi.responses import Response, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    HealthResponse,
    SignupRequest, LoginRequest, GoogleAuthRequest, ClientLoginRequest, ClientLoginResponse,
    MagicLinkVerifyRequest, AcceptInvitationRequest, UserInfo, AuthResponse, ProfileUpdate,
    ClientCreate, ClientUpdate, ClientUserCreate, InvitationResponse, CaseCreate, CaseUpdate,
    DocumentUploadResponse, ComplaintExtractRequest, ComplaintCheckboxRequest,
    DiscoveryResponse, DiscoverySave, DiscoveryGenerateRequest, DiscoveryEditRequest,
    DiscoveryEditAllRequest, DiscoveryEditResponse, DiscoveryEditAllResponse,
    DemandLetterResponse, DemandLetterGenerateRequest, SectionUpdate, SectionEditRequest,
    LetterEditRequest, SupportDocumentsResponse, ExportResponse,
    AddDocumentsRequest, AddDocumentsResponse, SearchRequest, SearchResultInfo, AskRequest, AskResponse,
    SmsSendRequest,
)
from .auth import (
    verify_google_token, create_session_jwt, verify_session_jwt, hash_password, verify_password,
)
from .client_portal import InvitationError
from .complaint import ComplaintInformation, ComplaintExtractionError, minimal_complaint_from_case
from .demand_letter import DemandLetter
from .discovery import DiscoveryKind, get_kind
from .document_parser import extract_text, guess_mime_type
from .exports import ExportedFile, export_discovery, export_demand_letter
from .gemini import GenerationError
from .retriever import CaseDocument
from .sms import SmsRequest, SmsError
from .storage import StorageError
from .vector_store import SearchResult, VectorStoreError

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
UPSTREAM_ERRORS = (GenerationError, VectorStoreError, ComplaintExtractionError, SmsError)

app = FastAPI(
    title="DocuLaw API",
    description="Legal practice backend: cases, discovery, demand letters and case document search",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Simple in-memory rate limiter using sliding window."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed for the given key."""
        now = time.time()
        window_start = now - self._window

        self._requests[key] = [t for t in self._requests[key] if t > window_start]

        if len(self._requests[key]) >= self._max_requests:
            return False

        self._requests[key].append(now)
        return True


_rate_limiter = RateLimiter(
    max_requests=int(os.getenv("RATE_LIMIT_RPM", "60")),
    window_seconds=60,
)


async def check_rate_limit(request: Request):
    """FastAPI dependency that rate limits AI endpoints per session (or client IP)."""
    key = request.headers.get("authorization") or (request.client.host if request.client else "anonymous")
    if not _rate_limiter.is_allowed(key):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Lazily builds and caches the services used by the endpoints."""

    def __init__(self):
        self._db = None
        self._storage = None
        self._retriever = None
        self._assistant = None
        self._gemini = None
        self._extractor = None
        self._discovery = None
        self._demand_letters = None
        self._sms = None
        self._portal = None

    def get_db(self):
        if self._db is None:
            from .database import CaseDatabase
            db = CaseDatabase()
            db.connect()
            db.initialize_schema()
            self._db = db
        return self._db

    def get_storage(self):
        if self._storage is None:
            from .storage import DocumentStorage
            self._storage = DocumentStorage()
        return self._storage

    def get_retriever(self):
        if self._retriever is None:
            from .embeddings import get_embedding_service
            from .vector_store import PineconeVectorStore
            from .retriever import CaseRetriever
            self._retriever = CaseRetriever(PineconeVectorStore(), get_embedding_service())
        return self._retriever

    def get_assistant(self):
        if self._assistant is None:
            from .assistant import CaseAssistant
            self._assistant = CaseAssistant(self.get_retriever())
        return self._assistant

    def get_gemini(self):
        if self._gemini is None:
            from .gemini import GeminiClient
            self._gemini = GeminiClient()
        return self._gemini

    def get_extractor(self):
        if self._extractor is None:
            from .complaint import ComplaintExtractor
            self._extractor = ComplaintExtractor(self.get_gemini())
        return self._extractor

    def get_discovery(self):
        if self._discovery is None:
            from .discovery import DiscoveryService
            self._discovery = DiscoveryService(self.get_db(), self.get_gemini(), self.get_retriever())
        return self._discovery

    def get_demand_letters(self):
        if self._demand_letters is None:
            from .demand_letter import DemandLetterService
            self._demand_letters = DemandLetterService(self.get_db(), self.get_gemini(), self.get_retriever())
        return self._demand_letters

    def get_sms(self):
        if self._sms is None:
            from .sms import SmsService
            self._sms = SmsService(self.get_db())
        return self._sms

    def get_portal(self):
        if self._portal is None:
            from .client_portal import ClientPortalService
            self._portal = ClientPortalService(self.get_db(), self.get_sms())
        return self._portal


_container = ServiceContainer()


# =============================================================================
# Authentication dependencies
# =============================================================================

async def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    """Validate the bearer session JWT and return its claims."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = verify_session_jwt(authorization[7:].strip())
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return claims


async def require_lawyer(user: dict = Depends(get_current_user)) -> dict:
    if user["role"] != "lawyer":
        raise HTTPException(status_code=403, detail="Only lawyers can access this resource")
    return user


async def require_client(user: dict = Depends(get_current_user)) -> dict:
    if user["role"] != "client":
        raise HTTPException(status_code=403, detail="Only clients can access this resource")
    return user


# =============================================================================
# Helpers
# =============================================================================

def _user_info(row: dict) -> UserInfo:
    return UserInfo(**{k: row.get(k) for k in UserInfo.model_fields if row.get(k) is not None})


def _session_response(user: dict) -> AuthResponse:
    token = create_session_jwt(user["id"], user["email"], user.get("name") or "", role=user.get("role", "lawyer"))
    return AuthResponse(token=token, user=_user_info(user))


def _require_case(case_id: str, user: dict) -> dict:
    case = _container.get_db().get_case(case_id, user["user_id"])
    if not case:
        raise HTTPException(status_code=404, detail="Case not found")
    return case


def _require_kind(kind: str) -> DiscoveryKind:
    try:
        return get_kind(kind)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _load_complaint(case_id: str, user: dict) -> Optional[ComplaintInformation]:
    """Latest extracted complaint data for a case, if any."""
    doc = _container.get_db().latest_complaint_document(case_id, user["user_id"])
    if not doc or not doc.get("extracted_data"):
        return None
    return ComplaintInformation.model_validate(doc["extracted_data"])


def _complaint_document(case_id: str, document_id: Optional[str], user: dict) -> dict:
    db = _container.get_db()
    if document_id:
        doc = db.get_document(document_id, user["user_id"])
        if doc and doc.get("case_id") != case_id:
            doc = None
    else:
        doc = db.latest_complaint_document(case_id, user["user_id"])
    if not doc:
        raise HTTPException(status_code=404, detail="No complaint document found for this case")
    return doc


def _raise_http(e: Exception, label: str):
    """Map a service error to an HTTPException."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, LookupError):
        raise HTTPException(status_code=404, detail=str(e).strip("'\""))
    if isinstance(e, UPSTREAM_ERRORS):
        logger.error(f"{label} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    logger.error(f"{label} failed: {type(e).__name__}: {e}")
    raise HTTPException(status_code=500, detail=f"{label} failed")


def _file_response(data: bytes, mime_type: str, filename: str) -> Response:
    return Response(
        content=data,
        media_type=mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


def _search_result_info(r: SearchResult) -> SearchResultInfo:
    return SearchResultInfo(
        id=r.id,
        score=r.score,
        content=r.content,
        document_id=r.document_id,
        document_name=r.document_name,
        metadata={k: v for k, v in r.metadata.items() if k != "content"},
    )


def _discovery_response(kind: DiscoveryKind, content) -> DiscoveryResponse:
    return DiscoveryResponse(kind=kind.key, **content.to_dict())


def _letter_response(letter: DemandLetter) -> DemandLetterResponse:
    return DemandLetterResponse(**letter.to_dict())


def _store_case_file(
    user: dict,
    case_id: str,
    filename: str,
    data: bytes,
    mime_type: Optional[str],
    document_type: str,
) -> tuple[dict, int, bool]:
    """
    Store an uploaded file, record it, and index its text.

    Returns (document_row, vectors_written, vectorized). Text extraction and
    vector indexing are best effort.
    """
    db = _container.get_db()
    storage = _container.get_storage()
    safe_name = Path(filename or "document").name
    resolved_mime = guess_mime_type(safe_name, mime_type)
    key = f"{user['user_id']}/{case_id}/{uuid.uuid4().hex}_{safe_name}"
    storage.upload(key, data)

    text = ""
    try:
        text = extract_text(data, safe_name, resolved_mime).text
    except Exception as e:
        logger.warning(f"Text extraction failed for {safe_name}: {type(e).__name__}: {e}")

    doc = db.create_document(
        user_id=user["user_id"],
        case_id=case_id,
        name=safe_name,
        path=key,
        url=storage.public_url(key),
        mime_type=resolved_mime,
        size=len(data),
        document_type=document_type,
        extracted_text=text or None,
    )

    vectors, vectorized = 0, False
    retriever = _container.get_retriever()
    if text.strip() and retriever.is_configured:
        try:
            vectors = retriever.add_documents(
                [CaseDocument(id=doc["id"], name=safe_name, content=text, type=document_type)],
                case_id, user["user_id"],
            )
            vectorized = True
        except VectorStoreError as e:
            logger.warning(f"Vectorization skipped for document {doc['id']}: {e}")

    db.log_audit(user["user_id"], "upload", "document", doc["id"], {"name": safe_name, "vectors": vectors})
    return doc, vectors, vectorized


# =============================================================================
# Health
# =============================================================================

@app.get(f"{API_PREFIX}/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    try:
        db_status = "connected" if _container.get_db().ping() else "disconnected"
    except Exception as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(
        status="ok",
        version=__version__,
        database=db_status,
        openai="configured" if os.getenv("OPENAI_API_KEY") else "not_configured",
        pinecone="configured" if _container.get_retriever().is_configured else "not_configured",
        gemini="configured" if _container.get_gemini().is_configured else "not_configured",
    )


@app.get(f"{API_PREFIX}/vector-store/health")
async def vector_store_health():
    retriever = _container.get_retriever()
    if not retriever.is_configured:
        return {"configured": False, "status": "not_configured"}
    try:
        stats = retriever.store.describe_index_stats()
    except VectorStoreError as e:
        logger.warning(f"Vector store health check failed: {e}")
        return {"configured": True, "status": "error", "error": str(e)}
    return {"configured": True, "status": "ok", "stats": stats}


# =============================================================================
# Auth
# =============================================================================

@app.post(f"{API_PREFIX}/auth/signup", response_model=AuthResponse)
async def signup(body: SignupRequest):
    """Create a lawyer account with email and password."""
    db = _container.get_db()
    try:
        user = db.create_user(body.email, hash_password(body.password), name=body.name, role="lawyer")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.log_audit(user["id"], "signup", "user", user["id"])
    return _session_response(user)


@app.post(f"{API_PREFIX}/auth/login", response_model=AuthResponse)
async def login(body: LoginRequest):
    db = _container.get_db()
    user = db.get_user_by_email(body.email)
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    db.record_login(user["id"])
    db.log_audit(user["id"], "login", "user", user["id"])
    return _session_response(user)


@app.post(f"{API_PREFIX}/auth/google", response_model=AuthResponse)
async def google_login(body: GoogleAuthRequest):
    """Exchange a Google ID token for a lawyer session."""
    google_user = verify_google_token(body.id_token)
    if not google_user:
        raise HTTPException(status_code=401, detail="Invalid Google token")

    db = _container.get_db()
    user = db.create_or_get_google_user(
        google_sub=google_user["google_sub"],
        email=google_user["email"],
        name=google_user["name"],
        avatar_url=google_user["avatar_url"],
    )
    if user.get("role") != "lawyer":
        raise HTTPException(status_code=403, detail="Client accounts must sign in with a login link")
    db.log_audit(user["id"], "login", "user", user["id"], {"method": "google"})
    return _session_response(user)


@app.post(f"{API_PREFIX}/auth/client-login", response_model=ClientLoginResponse)
async def client_login(body: ClientLoginRequest):
    """Send a magic login link to a registered client."""
    try:
        result = _container.get_portal().request_login_link(body.email, body.redirect_to)
    except Exception as e:
        _raise_http(e, "Client login")
    if result.sms_sent:
        message = "Check your phone for a login link."
    else:
        message = "Your login link could not be delivered by SMS. Please contact your attorney."
    return ClientLoginResponse(message=message, sms_sent=result.sms_sent)


@app.post(f"{API_PREFIX}/auth/magic-link/verify", response_model=AuthResponse)
async def verify_magic_link(body: MagicLinkVerifyRequest):
    try:
        session = _container.get_portal().complete_login(body.token)
    except InvitationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return AuthResponse(token=session["token"], user=_user_info(session["user"]))


@app.post(f"{API_PREFIX}/auth/accept-invitation", response_model=AuthResponse)
async def accept_invitation(body: AcceptInvitationRequest):
    try:
        session = _container.get_portal().accept_invitation(body.token, body.password, body.name)
    except (InvitationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AuthResponse(token=session["token"], user=_user_info(session["user"]))


@app.get(f"{API_PREFIX}/me", response_model=UserInfo)
async def get_me(user: dict = Depends(get_current_user)):
    row = _container.get_db().get_user_by_id(user["user_id"])
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_info(row)


@app.put(f"{API_PREFIX}/me", response_model=UserInfo)
async def update_me(body: ProfileUpdate, user: dict = Depends(get_current_user)):
    """Update profile fields and onboarding status."""
    row = _container.get_db().update_profile(user["user_id"], **body.model_dump(exclude_none=True))
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_info(row)


# =============================================================================
# Dashboard, clients and cases
# =============================================================================

@app.get(f"{API_PREFIX}/dashboard")
async def dashboard(user: dict = Depends(require_lawyer)):
    return _container.get_db().dashboard_stats(user["user_id"])


@app.get(f"{API_PREFIX}/clients")
async def list_clients(search: Optional[str] = None, user: dict = Depends(require_lawyer)):
    return _container.get_db().list_clients(user["user_id"], search=search)


@app.post(f"{API_PREFIX}/clients", status_code=201)
async def create_client(body: ClientCreate, user: dict = Depends(require_lawyer)):
    db = _container.get_db()
    client = db.create_client(user["user_id"], **body.model_dump())
    db.log_audit(user["user_id"], "create", "client", client["id"])
    return client


@app.get(f"{API_PREFIX}/clients/{{client_id}}")
async def get_client(client_id: str, user: dict = Depends(require_lawyer)):
    client = _container.get_db().get_client(client_id, user["user_id"])
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.put(f"{API_PREFIX}/clients/{{client_id}}")
async def update_client(client_id: str, body: ClientUpdate, user: dict = Depends(require_lawyer)):
    client = _container.get_db().update_client(client_id, user["user_id"], **body.model_dump(exclude_none=True))
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.delete(f"{API_PREFIX}/clients/{{client_id}}")
async def delete_client(client_id: str, user: dict = Depends(require_lawyer)):
    db = _container.get_db()
    if not db.delete_client(client_id, user["user_id"]):
        raise HTTPException(status_code=404, detail="Client not found")
    db.log_audit(user["user_id"], "delete", "client", client_id)
    return {"status": "deleted", "client_id": client_id}


@app.post(f"{API_PREFIX}/clients/{{client_id}}/invite", response_model=InvitationResponse)
async def invite_client(client_id: str, user: dict = Depends(require_lawyer)):
    """Create an invitation link and text it to the client when possible."""
    lawyer = {"id": user["user_id"], "name": user.get("name")}
    try:
        result = _container.get_portal().invite_client(lawyer, client_id)
    except Exception as e:
        _raise_http(e, "Invitation")
    return InvitationResponse(**result.to_dict())


@app.post(f"{API_PREFIX}/clients/{{client_id}}/user", response_model=UserInfo, status_code=201)
async def create_client_user(client_id: str, body: ClientUserCreate, user: dict = Depends(require_lawyer)):
    """Create a confirmed portal account for a client without an invitation."""
    client = _container.get_db().get_client(client_id, user["user_id"])
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    full_name = body.full_name or f"{client['first_name']} {client['last_name']}".strip()
    try:
        created = _container.get_portal().create_client_user(
            client["email"], body.password, full_name, client_id, user["user_id"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _user_info(created)


@app.get(f"{API_PREFIX}/cases")
async def list_cases(
    status: Optional[str] = None,
    archived: bool = False,
    search: Optional[str] = None,
    client_id: Optional[str] = None,
    user: dict = Depends(require_lawyer),
):
    return _container.get_db().list_cases(
        user["user_id"], status=status, archived=archived, search=search, client_id=client_id,
    )


@app.post(f"{API_PREFIX}/cases", status_code=201)
async def create_case(body: CaseCreate, user: dict = Depends(require_lawyer)):
    db = _container.get_db()
    if body.client_id and not db.get_client(body.client_id, user["user_id"]):
        raise HTTPException(status_code=404, detail="Client not found")
    try:
        case = db.create_case(user["user_id"], **body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.log_audit(user["user_id"], "create", "case", case["id"])
    return case


@app.get(f"{API_PREFIX}/cases/{{case_id}}")
async def get_case(case_id: str, user: dict = Depends(require_lawyer)):
    return _require_case(case_id, user)


@app.put(f"{API_PREFIX}/cases/{{case_id}}")
async def update_case(case_id: str, body: CaseUpdate, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    db = _container.get_db()
    if body.client_id and not db.get_client(body.client_id, user["user_id"]):
        raise HTTPException(status_code=404, detail="Client not found")
    try:
        return db.update_case(case_id, user["user_id"], **body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete(f"{API_PREFIX}/cases/{{case_id}}")
async def delete_case(case_id: str, user: dict = Depends(require_lawyer)):
    db = _container.get_db()
    if not db.delete_case(case_id, user["user_id"]):
        raise HTTPException(status_code=404, detail="Case not found")
    db.log_audit(user["user_id"], "delete", "case", case_id)
    return {"status": "deleted", "case_id": case_id}


@app.post(f"{API_PREFIX}/cases/{{case_id}}/archive")
async def archive_case(case_id: str, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    return _container.get_db().archive_case(case_id, user["user_id"])


@app.post(f"{API_PREFIX}/cases/{{case_id}}/unarchive")
async def unarchive_case(case_id: str, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    return _container.get_db().unarchive_case(case_id, user["user_id"])


@app.get(f"{API_PREFIX}/client/me")
async def client_profile(user: dict = Depends(require_client)):
    """The client record linked to the signed-in client user."""
    client = _container.get_db().get_client_by_user(user["user_id"])
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.get(f"{API_PREFIX}/client/cases")
async def client_cases(user: dict = Depends(require_client)):
    """Cases shared with the signed-in client."""
    return _container.get_db().list_cases_for_client_user(user["user_id"])


# =============================================================================
# Documents and storage
# =============================================================================

@app.post(f"{API_PREFIX}/cases/{{case_id}}/documents", response_model=DocumentUploadResponse, status_code=201)
async def upload_case_document(
    case_id: str,
    file: UploadFile = File(...),
    document_type: str = Form("document"),
    user: dict = Depends(require_lawyer),
):
    """Upload a case document: store it, extract its text and index it."""
    _require_case(case_id, user)
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        doc, vectors, vectorized = _store_case_file(
            user, case_id, file.filename, data, file.content_type, document_type,
        )
    except StorageError as e:
        logger.error(f"Upload failed for case {case_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store document")

    return DocumentUploadResponse(
        id=doc["id"],
        name=doc["name"],
        url=doc["url"],
        type=doc["type"],
        size=doc["size"],
        document_type=doc["document_type"],
        extracted_chars=len(doc.get("extracted_text") or ""),
        vectors=vectors,
        vectorized=vectorized,
    )


@app.get(f"{API_PREFIX}/cases/{{case_id}}/documents")
async def list_case_documents(case_id: str, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    return _container.get_db().list_documents(case_id, user["user_id"])


@app.get(f"{API_PREFIX}/documents/{{document_id}}/download")
async def download_document(document_id: str, user: dict = Depends(require_lawyer)):
    doc = _container.get_db().get_document(document_id, user["user_id"])
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        data = _container.get_storage().download(doc["path"])
    except StorageError:
        raise HTTPException(status_code=404, detail="Document file not found")
    return _file_response(data, doc["type"], doc["name"])


@app.delete(f"{API_PREFIX}/documents/{{document_id}}")
async def delete_document(document_id: str, user: dict = Depends(require_lawyer)):
    """Delete a document row, its stored file and its vectors."""
    db = _container.get_db()
    doc = db.get_document(document_id, user["user_id"])
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")

    retriever = _container.get_retriever()
    if retriever.is_configured:
        try:
            retriever.delete_document(document_id)
        except VectorStoreError as e:
            logger.warning(f"Vector cleanup failed for document {document_id}: {e}")

    try:
        _container.get_storage().delete(doc["path"])
    except StorageError as e:
        logger.warning(f"File cleanup failed for document {document_id}: {e}")

    db.delete_document(document_id, user["user_id"])
    db.log_audit(user["user_id"], "delete", "document", document_id)
    return {"status": "deleted", "document_id": document_id}


@app.get(f"{API_PREFIX}/storage/{{key:path}}")
async def get_stored_object(key: str, user: dict = Depends(get_current_user)):
    """Serve a stored object. Objects are namespaced by their owner's user id."""
    storage = _container.get_storage()
    try:
        owner = storage.owner(key)
    except StorageError:
        raise HTTPException(status_code=404, detail="File not found")
    if owner != user["user_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    try:
        data = storage.download(key)
    except StorageError:
        raise HTTPException(status_code=404, detail="File not found")
    filename = Path(key).name
    return _file_response(data, guess_mime_type(filename), filename)


# =============================================================================
# Complaint
# =============================================================================

@app.post(f"{API_PREFIX}/cases/{{case_id}}/complaint/extract", dependencies=[Depends(check_rate_limit)])
async def extract_complaint(case_id: str, body: ComplaintExtractRequest, user: dict = Depends(require_lawyer)):
    """Extract structured complaint information from an uploaded complaint."""
    _require_case(case_id, user)
    doc = _complaint_document(case_id, body.document_id, user)
    db = _container.get_db()

    try:
        data = _container.get_storage().download(doc["path"])
        info = _container.get_extractor().extract_from_file(data, doc["type"])
    except StorageError:
        raise HTTPException(status_code=404, detail="Complaint file not found")
    except Exception as e:
        _raise_http(e, "Complaint extraction")

    extracted = info.to_json_dict()
    db.set_document_extraction(doc["id"], extracted_data=extracted)
    db.log_audit(user["user_id"], "extract", "document", doc["id"])
    return extracted


@app.post(f"{API_PREFIX}/cases/{{case_id}}/complaint/checkboxes", dependencies=[Depends(check_rate_limit)])
async def analyze_checkboxes(case_id: str, body: ComplaintCheckboxRequest, user: dict = Depends(require_lawyer)):
    """Decide which Form Interrogatories (DISC-001) checkboxes apply."""
    _require_case(case_id, user)
    doc = _complaint_document(case_id, body.document_id, user)
    if not doc.get("extracted_data"):
        raise HTTPException(status_code=400, detail="Complaint data is not available.")

    info = ComplaintInformation.model_validate(doc["extracted_data"])
    analyzed = _container.get_extractor().analyze_form_interrogatory_checkboxes(info, doc.get("extracted_text"))
    extracted = analyzed.to_json_dict()
    _container.get_db().set_document_extraction(doc["id"], extracted_data=extracted)
    return extracted


# =============================================================================
# Discovery (RFA / RFP / SI)
# =============================================================================

@app.get(f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}", response_model=DiscoveryResponse)
async def get_discovery(case_id: str, kind: str, user: dict = Depends(require_lawyer)):
    k = _require_kind(kind)
    _require_case(case_id, user)
    return _discovery_response(k, _container.get_discovery().load(k, case_id))


@app.put(f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}", response_model=DiscoveryResponse)
async def save_discovery(case_id: str, kind: str, body: DiscoverySave, user: dict = Depends(require_lawyer)):
    k = _require_kind(kind)
    _require_case(case_id, user)
    try:
        content = _container.get_discovery().save(
            k, case_id, body.items, body.definitions, body.is_generated, user["user_id"],
        )
    except Exception as e:
        _raise_http(e, f"Saving {k.title}")
    return _discovery_response(k, content)


@app.delete(f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}")
async def clear_discovery(case_id: str, kind: str, user: dict = Depends(require_lawyer)):
    k = _require_kind(kind)
    _require_case(case_id, user)
    deleted = _container.get_discovery().clear(k, case_id)
    return {"status": "deleted" if deleted else "not_found", "kind": k.key}


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}/generate",
    response_model=DiscoveryResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def generate_discovery(
    case_id: str,
    kind: str,
    body: Optional[DiscoveryGenerateRequest] = None,
    user: dict = Depends(require_lawyer),
):
    """Generate definitions and requests from the case's complaint data."""
    k = _require_kind(kind)
    _require_case(case_id, user)
    complaint = _load_complaint(case_id, user)
    try:
        content = _container.get_discovery().generate(
            k, case_id, complaint, user["user_id"], item_count=body.item_count if body else None,
        )
    except Exception as e:
        _raise_http(e, f"Generating {k.title}")
    _container.get_db().log_audit(user["user_id"], "generate", k.table, case_id)
    return _discovery_response(k, content)


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}/edit",
    response_model=DiscoveryEditResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def edit_discovery_item(
    case_id: str, kind: str, body: DiscoveryEditRequest, user: dict = Depends(require_lawyer),
):
    k = _require_kind(kind)
    _require_case(case_id, user)
    try:
        updated = _container.get_discovery().edit_item(
            k, case_id, body.instruction, body.target, body.index, user["user_id"],
        )
    except Exception as e:
        _raise_http(e, f"Editing {k.title}")
    return DiscoveryEditResponse(updated=updated)


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}/edit-all",
    response_model=DiscoveryEditAllResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def edit_discovery_all(
    case_id: str, kind: str, body: DiscoveryEditAllRequest, user: dict = Depends(require_lawyer),
):
    k = _require_kind(kind)
    _require_case(case_id, user)
    try:
        updated = _container.get_discovery().edit_all(k, case_id, body.instruction, body.target, user["user_id"])
    except Exception as e:
        _raise_http(e, f"Editing {k.title}")
    return DiscoveryEditAllResponse(updated=updated)


@app.get(f"{API_PREFIX}/cases/{{case_id}}/discovery/{{kind}}/export")
async def export_discovery_document(
    case_id: str,
    kind: str,
    format: str = Query("docx", pattern=r"^(docx|pdf)$"),
    user: dict = Depends(require_lawyer),
):
    """Download a discovery document as DOCX or PDF."""
    k = _require_kind(kind)
    case = _require_case(case_id, user)
    content = _container.get_discovery().load(k, case_id)
    if not content.exists:
        raise HTTPException(status_code=404, detail=f"No {k.title} exists for this case yet.")

    info = _load_complaint(case_id, user) or minimal_complaint_from_case(case)
    exported = export_discovery(k.key, format, info, content.definitions, content.items)
    _container.get_db().log_audit(user["user_id"], "export", k.table, case_id, {"format": format})
    return _file_response(exported.data, exported.mime_type, exported.filename)


# =============================================================================
# Demand letter
# =============================================================================

@app.get(f"{API_PREFIX}/cases/{{case_id}}/demand-letter", response_model=DemandLetterResponse)
async def get_demand_letter(case_id: str, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    return _letter_response(_container.get_demand_letters().load(case_id))


@app.put(f"{API_PREFIX}/cases/{{case_id}}/demand-letter", response_model=DemandLetterResponse)
async def save_demand_letter(case_id: str, sections: dict[str, str], user: dict = Depends(require_lawyer)):
    """Replace every section (manual edits)."""
    _require_case(case_id, user)
    letter = _container.get_demand_letters().save_sections(case_id, sections, user["user_id"])
    return _letter_response(letter)


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/demand-letter/generate",
    response_model=DemandLetterResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def generate_demand_letter(
    case_id: str,
    body: Optional[DemandLetterGenerateRequest] = None,
    user: dict = Depends(require_lawyer),
):
    _require_case(case_id, user)
    body = body or DemandLetterGenerateRequest()
    try:
        letter = _container.get_demand_letters().generate(
            case_id,
            user["user_id"],
            complaint=_load_complaint(case_id, user),
            context_docs=body.context_docs,
            instructions=body.instructions,
        )
    except Exception as e:
        _raise_http(e, "Demand letter generation")
    _container.get_db().log_audit(user["user_id"], "generate", "demand_letter", case_id)
    return _letter_response(letter)


@app.patch(f"{API_PREFIX}/cases/{{case_id}}/demand-letter/sections/{{key}}", response_model=DemandLetterResponse)
async def update_demand_letter_section(
    case_id: str, key: str, body: SectionUpdate, user: dict = Depends(require_lawyer),
):
    _require_case(case_id, user)
    try:
        letter = _container.get_demand_letters().update_section(case_id, key, body.value, user["user_id"])
    except Exception as e:
        _raise_http(e, "Demand letter update")
    return _letter_response(letter)


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/demand-letter/edit-section",
    response_model=DemandLetterResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def ai_edit_demand_letter_section(
    case_id: str, body: SectionEditRequest, user: dict = Depends(require_lawyer),
):
    _require_case(case_id, user)
    try:
        letter = _container.get_demand_letters().ai_edit_section(case_id, body.key, body.instruction, user["user_id"])
    except Exception as e:
        _raise_http(e, "Demand letter edit")
    return _letter_response(letter)


@app.post(
    f"{API_PREFIX}/cases/{{case_id}}/demand-letter/edit-all",
    response_model=DemandLetterResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def ai_edit_demand_letter(case_id: str, body: LetterEditRequest, user: dict = Depends(require_lawyer)):
    _require_case(case_id, user)
    try:
        letter = _container.get_demand_letters().ai_edit_all(case_id, body.instruction, user["user_id"])
    except Exception as e:
        _raise_http(e, "Demand letter edit")
    return _letter_response(letter)


@app.post(f"{API_PREFIX}/cases/{{case_id}}/demand-letter/support-documents", response_model=SupportDocumentsResponse)
async def upload_support_documents(
    case_id: str,
    files: list[UploadFile] = File(...),
    user: dict = Depends(require_lawyer),
):
    """Upload medical records, bills and similar material used as letter context."""
    _require_case(case_id, user)
    names, total = [], 0
    for upload in files:
        data = await upload.read()
        if not data:
            continue
        try:
            doc, vectors, _ = _store_case_file(
                user, case_id, upload.filename, data, upload.content_type, "support",
            )
        except StorageError as e:
            logger.error(f"Support document upload failed for case {case_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to store document")
        names.append(doc["name"])
        total += vectors
    return SupportDocumentsResponse(documents=names, vectors=total)


@app.get(f"{API_PREFIX}/cases/{{case_id}}/demand-letter/export", response_model=ExportResponse)
async def export_demand_letter_document(
    case_id: str,
    format: str = Query("docx", pattern=r"^(docx|pdf)$"),
    user: dict = Depends(require_lawyer),
):
    """Render the letter, store the file and record its URL on the letter."""
    _require_case(case_id, user)
    service = _container.get_demand_letters()
    letter = service.load(case_id)
    if letter.sections is None:
        raise HTTPException(status_code=404, detail="No demand letter exists for this case yet.")

    exported: ExportedFile = export_demand_letter(letter.sections, format)
    storage = _container.get_storage()
    key = f"{user['user_id']}/{case_id}/exports/demand_letter.{format}"
    try:
        storage.upload(key, exported.data, upsert=True)
    except StorageError as e:
        logger.error(f"Demand letter export could not be stored: {e}")
        raise HTTPException(status_code=500, detail="Failed to store export")

    url = storage.public_url(key)
    service.record_export(case_id, format, url)
    _container.get_db().log_audit(user["user_id"], "export", "demand_letter", case_id, {"format": format})
    return ExportResponse(url=url, filename=exported.filename, mime_type=exported.mime_type)


# =============================================================================
# Vector store
# =============================================================================

@app.post(f"{API_PREFIX}/vector-store/documents", response_model=AddDocumentsResponse)
async def add_vector_documents(body: AddDocumentsRequest, user: dict = Depends(require_lawyer)):
    _require_case(body.case_id, user)
    db = _container.get_db()
    for d in body.documents:
        owned = db.get_document(d.id, user["user_id"])
        if not owned or owned.get("case_id") != body.case_id:
            raise HTTPException(status_code=404, detail=f"Document not found: {d.id}")
    documents = [CaseDocument(id=d.id, name=d.name, content=d.content, type=d.type) for d in body.documents]
    try:
        vectors = _container.get_retriever().add_documents(documents, body.case_id, user["user_id"])
    except Exception as e:
        _raise_http(e, "Adding documents")
    return AddDocumentsResponse(success=True, vectors=vectors)


@app.post(f"{API_PREFIX}/vector-store/search", response_model=list[SearchResultInfo])
async def search_vector_store(body: SearchRequest, user: dict = Depends(require_lawyer)):
    _require_case(body.case_id, user)
    try:
        results = _container.get_retriever().search(body.query, body.case_id, top_k=body.top_k)
    except Exception as e:
        _raise_http(e, "Search")
    return [_search_result_info(r) for r in results]


@app.post(f"{API_PREFIX}/vector-store/ask", response_model=AskResponse, dependencies=[Depends(check_rate_limit)])
async def ask_case_question(body: AskRequest, user: dict = Depends(require_lawyer)):
    """Answer a question from the case's documents."""
    _require_case(body.case_id, user)
    try:
        result = _container.get_assistant().answer(body.query, body.case_id, context_limit=body.context_limit)
    except Exception as e:
        _raise_http(e, "Question answering")
    _container.get_db().log_audit(user["user_id"], "query", "case", body.case_id, {"query": body.query[:200]})
    return AskResponse(answer=result.answer, sources=[_search_result_info(r) for r in result.sources])


@app.post(f"{API_PREFIX}/vector-store/ask/stream", dependencies=[Depends(check_rate_limit)])
async def ask_case_question_stream(body: AskRequest, user: dict = Depends(require_lawyer)):
    """Streaming answer with SSE.

    Sends events:
      - sources: matched chunks (after retrieval)
      - token: answer text (during generation)
      - done: end of stream
      - error: retrieval or generation failed
    """
    _require_case(body.case_id, user)
    _container.get_db().log_audit(user["user_id"], "query", "case", body.case_id, {"query": body.query[:200]})

    return StreamingResponse(
        _container.get_assistant().stream_answer(body.query, body.case_id, context_limit=body.context_limit),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.delete(f"{API_PREFIX}/vector-store/documents/{{document_id}}")
async def delete_vector_document(document_id: str, user: dict = Depends(require_lawyer)):
    if not _container.get_db().get_document(document_id, user["user_id"]):
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        deleted = _container.get_retriever().delete_document(document_id)
    except Exception as e:
        _raise_http(e, "Deleting document vectors")
    return {"status": "deleted", "document_id": document_id, "vectors": deleted}


# =============================================================================
# SMS
# =============================================================================

@app.post(f"{API_PREFIX}/sms/send")
async def send_sms(body: SmsSendRequest, user: dict = Depends(require_lawyer)):
    request = SmsRequest(lawyer_id=user["user_id"], lawyer_name=user.get("name") or None, **body.model_dump())
    try:
        result = _container.get_sms().send(request)
    except Exception as e:
        _raise_http(e, "SMS")
    if not result.success:
        raise HTTPException(status_code=502, detail=result.details or result.error)
    return result.to_dict()
