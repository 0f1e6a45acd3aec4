"""
SMS Notifications via Twilio

Builds templated client/lawyer notifications and sends them through the
Twilio Messages REST API. Every send is logged to sms_messages first
(status pending) and then marked sent or failed.
"""

import os
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsError(Exception):
    """Raised when SMS cannot be sent (missing credentials, provider failure)."""


class SmsMessageType(str, Enum):
    INVITATION = "invitation"
    QUESTIONNAIRE_SENT = "questionnaire_sent"
    REMINDER = "reminder"
    DEADLINE_WARNING = "deadline_warning"
    COMPLETION = "completion"
    LOGIN_LINK = "login_link"
    CUSTOM = "custom"


@dataclass
class SmsConfig:
    """Twilio credentials; missing values are read from the environment."""
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    timeout: float = 15.0

    def __post_init__(self):
        self.account_sid = self.account_sid or os.getenv("TWILIO_ACCOUNT_SID", "")
        self.auth_token = self.auth_token or os.getenv("TWILIO_AUTH_TOKEN", "")
        self.from_number = self.from_number or os.getenv("TWILIO_PHONE_NUMBER", "")

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


@dataclass
class SmsRequest:
    to_phone: str
    message_type: str

    client_id: Optional[str] = None
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    questionnaire_id: Optional[str] = None

    custom_message: Optional[str] = None

    client_name: Optional[str] = None
    lawyer_name: Optional[str] = None
    case_name: Optional[str] = None
    question_count: Optional[int] = None
    deadline: Optional[str] = None
    login_link: Optional[str] = None
    remaining_questions: Optional[int] = None


@dataclass
class SendSmsResult:
    success: bool
    message: Optional[str] = None
    twilio_sid: Optional[str] = None
    message_id: Optional[str] = None
    message_body: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


def format_deadline(deadline: Optional[str]) -> str:
    """Render a deadline as M/D/YYYY; free text is passed through."""
    if not deadline:
        return "as soon as possible"
    try:
        parsed = datetime.fromisoformat(deadline.replace("Z", "+00:00"))
    except ValueError:
        return deadline
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def _type_name(message_type) -> str:
    if isinstance(message_type, SmsMessageType):
        return message_type.value
    return str(message_type)


def build_message(data: SmsRequest) -> str:
    """Render the message body for a request's message type."""
    client_name = data.client_name or "there"
    lawyer_name = data.lawyer_name or "your attorney"
    case_name = data.case_name or "your case"
    question_count = data.question_count or 0
    deadline = format_deadline(data.deadline)
    remaining = data.remaining_questions or question_count
    plural = "s" if remaining != 1 else ""
    link = data.login_link or ""

    message_type = _type_name(data.message_type)

    if message_type == "questionnaire_sent":
        return (
            f'Hi {client_name}, {lawyer_name} needs your input for "{case_name}". '
            f"Please complete {question_count} questions by {deadline}. Sign in here: {link}"
        )
    if message_type == "login_link":
        return f"DocuLaw: Your login link is ready. Tap here to sign in to your client portal: {link}"
    if message_type == "reminder":
        return (
            f'Reminder: You have {remaining} unanswered question{plural} for "{case_name}" '
            f"due {deadline}. Sign in: {link}"
        )
    if message_type == "deadline_warning":
        return (
            f'URGENT: Your questionnaire for "{case_name}" is due tomorrow. '
            f"{remaining} question{plural} remaining. Please complete ASAP: {link}"
        )
    if message_type == "completion":
        return (
            f'{client_name} has completed the questionnaire for "{case_name}". '
            f"All {question_count} questions answered. Review responses in DocuLaw."
        )
    if message_type == "invitation":
        return (
            f"Hi {client_name}, {lawyer_name} has invited you to DocuLaw, your secure client portal. "
            f"Access your account: {link}"
        )
    if message_type == "custom":
        return data.custom_message or (
            f'Message from {lawyer_name} about "{case_name}": Please check your DocuLaw portal.'
        )
    return "DocuLaw: You have a new notification. Please sign in to your portal."


class SmsService:
    """
    Sends templated SMS through Twilio and records each message.

    Usage:
        sms = SmsService(db)
        result = sms.send(SmsRequest(to_phone="+15551234567", message_type="login_link", login_link=url))
    """

    def __init__(self, db=None, config: Optional[SmsConfig] = None, session: Optional[requests.Session] = None):
        self.db = db
        self.config = config or SmsConfig()
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _log_pending(self, data: SmsRequest, body: str) -> Optional[str]:
        if self.db is None:
            return None
        try:
            record = self.db.create_sms_message(
                lawyer_id=data.lawyer_id,
                client_id=data.client_id,
                to_phone=data.to_phone,
                from_phone=self.config.from_number,
                message_body=body,
                message_type=_type_name(data.message_type),
                case_id=data.case_id,
                questionnaire_id=data.questionnaire_id,
            )
            return str(record["id"]) if record else None
        except Exception as e:
            # Sending matters more than the log row
            logger.warning(f"Error logging SMS to database: {e}")
            return None

    def _update_record(self, message_id: Optional[str], **fields) -> None:
        if self.db is None or message_id is None:
            return
        try:
            self.db.update_sms_message(message_id, **fields)
        except Exception as e:
            logger.warning(f"Failed to update SMS record {message_id}: {e}")

    def send(self, data: SmsRequest) -> SendSmsResult:
        """
        Send one SMS.

        Raises:
            ValueError: to_phone or message_type missing
            SmsError: Twilio credentials not configured
        """
        if not data.to_phone:
            raise ValueError("to_phone is required")
        if not data.message_type:
            raise ValueError("message_type is required")
        if not self.config.is_configured:
            raise SmsError("Twilio credentials not configured")

        body = build_message(data)
        message_id = self._log_pending(data, body)

        try:
            response = self._session.post(
                TWILIO_MESSAGES_URL.format(sid=self.config.account_sid),
                data={"To": data.to_phone, "From": self.config.from_number, "Body": body},
                auth=(self.config.account_sid, self.config.auth_token),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Twilio request failed: {e}")
            self._update_record(message_id, status="failed", error_message=str(e))
            return SendSmsResult(
                success=False, error="Failed to send SMS", details=str(e), message_id=message_id,
            )

        if not response.ok:
            logger.error(f"Twilio error: {response.status_code} {response.text}")
            self._update_record(message_id, status="failed", error_message=response.text)
            return SendSmsResult(
                success=False, error="Failed to send SMS", details=response.text, message_id=message_id,
            )

        sid = response.json().get("sid")
        self._update_record(message_id, status="sent", twilio_message_sid=sid, sent_at=datetime.now(timezone.utc))
        logger.info(f"SMS sent ({_type_name(data.message_type)}) sid={sid}")

        return SendSmsResult(
            success=True,
            message="SMS sent successfully",
            twilio_sid=sid,
            message_id=message_id,
            message_body=body,
        )
