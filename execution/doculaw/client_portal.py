"""
Client Portal: invitations, client accounts and magic-link sign-in

Lawyers invite a client by link (delivered by SMS when a phone is on file).
The client accepts the invitation by choosing a password, or later signs in
with a one-time login link sent to their phone. Login links are only issued
for emails that already belong to a client record.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from urllib.parse import urlencode

from . import auth
from .sms import SmsService, SmsRequest, SmsMessageType, SmsError

logger = logging.getLogger(__name__)


class InvitationError(Exception):
    """Raised for unknown, already used or otherwise unusable invitations."""


@dataclass
class InvitationResult:
    invitation_link: str
    sms_sent: bool
    sms_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"invitation_link": self.invitation_link, "sms_sent": self.sms_sent, "sms_error": self.sms_error}


@dataclass
class LoginLinkResult:
    email: str
    login_link: str
    sms_sent: bool
    sms_error: Optional[str] = None


def _full_name(client: dict) -> str:
    return f"{client.get('first_name') or ''} {client.get('last_name') or ''}".strip()


class ClientPortalService:
    """
    Usage:
        portal = ClientPortalService(db, SmsService(db))
        result = portal.invite_client(lawyer, client_id)
        session = portal.complete_login(token_from_link)
    """

    def __init__(self, db, sms: Optional[SmsService] = None, app_base_url: Optional[str] = None):
        self.db = db
        self.sms = sms
        self.app_base_url = (app_base_url or os.getenv("APP_BASE_URL", "http://localhost:5173")).rstrip("/")

    def _send_sms(self, request: SmsRequest) -> tuple[bool, Optional[str]]:
        """Best-effort send; returns (sent, error)."""
        if self.sms is None or not self.sms.is_configured:
            return False, "SMS is not configured"
        try:
            result = self.sms.send(request)
        except (SmsError, ValueError) as e:
            logger.warning(f"SMS not sent: {e}")
            return False, str(e)
        return result.success, result.details or result.error

    # =========================================================================
    # Invitations
    # =========================================================================

    def invite_client(self, lawyer: dict, client_id: str) -> InvitationResult:
        """
        Create an invitation for one of the lawyer's clients.

        Raises:
            LookupError: client not found for this lawyer
        """
        client = self.db.get_client(client_id, lawyer["id"])
        if not client:
            raise LookupError("Client not found")

        token = auth.generate_invitation_token()
        self.db.create_invitation(client_id, lawyer["id"], client["email"], token)
        query = urlencode({"email": client["email"], "invitation_token": token})
        link = f"{self.app_base_url}/client-signup?{query}"

        sms_sent, sms_error = False, None
        if client.get("phone"):
            sms_sent, sms_error = self._send_sms(SmsRequest(
                to_phone=client["phone"],
                message_type=SmsMessageType.INVITATION,
                client_id=client_id,
                lawyer_id=lawyer["id"],
                client_name=client.get("first_name"),
                lawyer_name=lawyer.get("name"),
                login_link=link,
            ))

        self.db.log_audit(lawyer["id"], "invite_client", "client", client_id)
        logger.info(f"Invitation created for client {client_id} (sms_sent={sms_sent})")
        return InvitationResult(invitation_link=link, sms_sent=sms_sent, sms_error=sms_error)

    def accept_invitation(self, token: str, password: str, full_name: Optional[str] = None) -> dict:
        """
        Create the client's account from an invitation and sign them in.

        Returns:
            {"token": session_jwt, "user": user_row}
        """
        invitation = self.db.get_invitation_by_token(token)
        if not invitation:
            raise InvitationError("Invalid invitation link")
        if invitation.get("status") != "pending":
            raise InvitationError("This invitation has already been used")

        client = self.db.get_client_by_id(invitation["client_id"])
        if not client:
            raise InvitationError("The invited client no longer exists")

        user = self.create_client_user(
            email=invitation["email"],
            password=password,
            full_name=full_name or _full_name(client),
            client_id=client["id"],
            lawyer_id=invitation["lawyer_id"],
        )
        if not self.db.accept_invitation(invitation["id"]):
            raise InvitationError("This invitation has already been used")

        session = auth.create_session_jwt(user["id"], user["email"], user.get("name") or "", role="client")
        return {"token": session, "user": user}

    # =========================================================================
    # Client users
    # =========================================================================

    def create_client_user(
        self,
        email: str,
        password: str,
        full_name: str,
        client_id: str,
        lawyer_id: Optional[str] = None,
    ) -> dict:
        """
        Create an auto-confirmed client user and link it to the client record.

        A failure to link is logged; the account still exists.
        """
        user = self.db.create_user(
            email=email,
            password_hash=auth.hash_password(password),
            name=full_name,
            role="client",
            email_confirmed=True,
        )
        try:
            self.db.link_client_user(client_id, user["id"])
        except Exception as e:
            logger.error(f"Error linking client record {client_id} to user {user['id']}: {e}")

        if lawyer_id:
            self.db.log_audit(lawyer_id, "create_client_user", "client", client_id)
        return user

    # =========================================================================
    # Magic-link login
    # =========================================================================

    def request_login_link(self, email: str, redirect_to: Optional[str] = None) -> LoginLinkResult:
        """
        Issue a one-time login link for a registered client.

        Raises:
            ValueError: email missing
            LookupError: no client has this email
        """
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValueError("Email is required")

        client = self.db.get_client_by_email(normalized)
        if not client:
            raise LookupError("This email is not registered as a client")

        token = auth.create_magic_link_token(normalized, client["id"])
        params = {"token": token}
        if redirect_to:
            params["redirect_to"] = redirect_to
        link = f"{self.app_base_url}/client-login/verify?{urlencode(params)}"

        sms_sent, sms_error = False, None
        if client.get("phone"):
            sms_sent, sms_error = self._send_sms(SmsRequest(
                to_phone=client["phone"],
                message_type=SmsMessageType.LOGIN_LINK,
                client_id=client["id"],
                lawyer_id=client.get("lawyer_id"),
                client_name=client.get("first_name"),
                login_link=link,
            ))

        logger.info(f"Login link issued for client {client['id']} (sms_sent={sms_sent})")
        return LoginLinkResult(email=normalized, login_link=link, sms_sent=sms_sent, sms_error=sms_error)

    def complete_login(self, token: str) -> dict:
        """
        Exchange a magic-link token for a session.

        Raises:
            InvitationError: token invalid or expired, or the client has no account yet
        """
        claims = auth.verify_magic_link_token(token)
        if claims is None:
            raise InvitationError("Login link is invalid or has expired")

        client = self.db.get_client_by_id(claims["client_id"])
        if not client or not client.get("user_id"):
            raise InvitationError("No client account exists for this login link")

        user = self.db.get_user_by_id(client["user_id"])
        if not user:
            raise InvitationError("No client account exists for this login link")

        if not self.db.consume_magic_link(claims["jti"], client["id"]):
            raise InvitationError("This login link has already been used")

        self.db.record_login(user["id"])
        session = auth.create_session_jwt(user["id"], user["email"], user.get("name") or "", role="client")
        return {"token": session, "user": user}
