"""
Pydantic models for the DocuLaw FastAPI backend.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str
    openai: str
    pinecone: str
    gemini: str


# =========================================================================
# Auth models
# =========================================================================

class SignupRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=8, max_length=256)
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class GoogleAuthRequest(BaseModel):
    """Request body for Google OAuth token exchange."""
    id_token: str


class ClientLoginRequest(BaseModel):
    email: str
    redirect_to: Optional[str] = None


class ClientLoginResponse(BaseModel):
    message: str
    sms_sent: bool


class MagicLinkVerifyRequest(BaseModel):
    token: str


class AcceptInvitationRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=8, max_length=256)
    name: Optional[str] = None


class UserInfo(BaseModel):
    """User profile information."""
    id: str
    email: str
    role: str = "lawyer"
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    referral_source: Optional[str] = None
    onboarding_completed: Optional[bool] = None


class AuthResponse(BaseModel):
    """Response body for auth endpoints."""
    token: str
    user: UserInfo


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    referral_source: Optional[str] = None
    onboarding_completed: Optional[bool] = None


# =========================================================================
# Clients and cases
# =========================================================================

class ClientCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=200)
    last_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = None
    case_type: Optional[str] = None


class ClientUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    case_type: Optional[str] = None


class ClientUserCreate(BaseModel):
    """Request body for creating a portal account for a client directly."""
    password: str = Field(..., min_length=8, max_length=256)
    full_name: Optional[str] = None


class InvitationResponse(BaseModel):
    invitation_link: str
    sms_sent: bool
    sms_error: Optional[str] = None


class CaseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    client_id: Optional[str] = None
    case_type: Optional[str] = None
    status: str = Field(default="Active", pattern=r"^(Active|Pending|Inactive)$")
    case_number: Optional[str] = None
    incident_date: Optional[str] = None


class CaseUpdate(BaseModel):
    name: Optional[str] = None
    client_id: Optional[str] = None
    case_type: Optional[str] = None
    status: Optional[str] = Field(None, pattern=r"^(Active|Pending|Inactive)$")
    case_number: Optional[str] = None
    incident_date: Optional[str] = None


# =========================================================================
# Documents
# =========================================================================

class DocumentUploadResponse(BaseModel):
    """Response body for a case document upload."""
    id: str
    name: str
    url: str
    type: str
    size: int
    document_type: str
    extracted_chars: int
    vectors: int
    vectorized: bool


# =========================================================================
# Complaint
# =========================================================================

class ComplaintExtractRequest(BaseModel):
    document_id: Optional[str] = None  # defaults to the latest complaint upload


class ComplaintCheckboxRequest(BaseModel):
    document_id: Optional[str] = None


# =========================================================================
# Discovery
# =========================================================================

class DiscoveryResponse(BaseModel):
    kind: str
    items: list[str]
    definitions: list[str]
    is_generated: bool
    exists: bool
    updated_at: Optional[str] = None


class DiscoverySave(BaseModel):
    items: list[str] = []
    definitions: list[str] = []
    is_generated: bool = False


class DiscoveryGenerateRequest(BaseModel):
    item_count: Optional[int] = Field(default=None, ge=1, le=50)


class DiscoveryEditRequest(BaseModel):
    """Edit one definition or request with AI."""
    instruction: str = Field(..., min_length=1, max_length=2000)
    target: str = "item"  # "definition" or the kind's item label
    index: int = Field(..., ge=0)


class DiscoveryEditAllRequest(BaseModel):
    instruction: str = Field(..., min_length=1, max_length=2000)
    target: str = "items"


class DiscoveryEditResponse(BaseModel):
    updated: str


class DiscoveryEditAllResponse(BaseModel):
    updated: list[str]


# =========================================================================
# Demand letter
# =========================================================================

class DemandLetterResponse(BaseModel):
    sections: Optional[dict[str, str]] = None
    body_text: str = ""
    is_generated: bool = False
    pdf_url: Optional[str] = None
    docx_url: Optional[str] = None
    exists: bool = False


class DemandLetterGenerateRequest(BaseModel):
    instructions: Optional[str] = Field(default=None, max_length=4000)
    context_docs: Optional[list[str]] = None


class SectionUpdate(BaseModel):
    value: str


class SectionEditRequest(BaseModel):
    key: str
    instruction: str = Field(..., min_length=1, max_length=2000)


class LetterEditRequest(BaseModel):
    instruction: str = Field(..., min_length=1, max_length=2000)


class SupportDocumentsResponse(BaseModel):
    documents: list[str]
    vectors: int


class ExportResponse(BaseModel):
    url: str
    filename: str
    mime_type: str


# =========================================================================
# Vector store
# =========================================================================

class VectorDocument(BaseModel):
    id: str
    name: str
    content: str
    type: str = "document"


class AddDocumentsRequest(BaseModel):
    case_id: str
    documents: list[VectorDocument] = Field(..., min_length=1)


class AddDocumentsResponse(BaseModel):
    success: bool
    vectors: int


class SearchRequest(BaseModel):
    case_id: str
    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int = Field(default=5, ge=1, le=50)


class SearchResultInfo(BaseModel):
    id: str
    score: float
    content: str
    document_id: str
    document_name: str
    metadata: dict[str, Any] = {}


class AskRequest(BaseModel):
    case_id: str
    query: str = Field(..., min_length=1, max_length=2000)
    context_limit: int = Field(default=5, ge=1, le=20)


class AskResponse(BaseModel):
    answer: str
    sources: list[SearchResultInfo]


# =========================================================================
# SMS
# =========================================================================

class SmsSendRequest(BaseModel):
    to_phone: str
    message_type: str = Field(
        ..., pattern=r"^(invitation|questionnaire_sent|reminder|deadline_warning|completion|login_link|custom)$"
    )
    client_id: Optional[str] = None
    case_id: Optional[str] = None
    questionnaire_id: Optional[str] = None
    custom_message: Optional[str] = None
    client_name: Optional[str] = None
    case_name: Optional[str] = None
    question_count: Optional[int] = None
    deadline: Optional[str] = None
    login_link: Optional[str] = None
    remaining_questions: Optional[int] = None
