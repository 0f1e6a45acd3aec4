"""
Case Database (PostgreSQL)

System of record for users, clients, cases, uploaded documents, generated
discovery content, demand letters, SMS logs and client invitations.

Every case-scoped read takes the owning lawyer's user_id and filters on it,
so one lawyer can never read another lawyer's cases through this layer.
"""

import os
import json
import uuid
import logging
from typing import Optional
from datetime import datetime, date
from dataclasses import dataclass

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

# Only these tables may be interpolated into discovery SQL
DISCOVERY_TABLES = {
    "request_for_admissions": "admissions",
    "request_for_productions": "productions",
    "special_interrogatories": "interrogatories",
}

CASE_STATUSES = ("Active", "Pending", "Inactive")

CLIENT_FIELDS = ("first_name", "last_name", "email", "phone", "case_type")
CASE_FIELDS = ("name", "client_id", "case_type", "status", "case_number", "incident_date")
PROFILE_FIELDS = ("name", "title", "phone", "referral_source", "onboarding_completed")
SMS_UPDATE_FIELDS = ("status", "error_message", "twilio_message_sid", "sent_at")


@dataclass
class DatabaseConfig:
    """Configuration for the case database."""
    connection_string: Optional[str] = None
    pool_min_connections: int = 1
    pool_max_connections: int = 10


def _jsonable(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row(row) -> Optional[dict]:
    """RealDictRow -> plain dict with string ids and ISO timestamps."""
    if row is None:
        return None
    return {k: _jsonable(v) for k, v in dict(row).items()}


def is_uuid(value) -> bool:
    """Ids from URLs are cast with ::uuid; anything else can never match a row."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class CaseDatabase:
    """
    PostgreSQL access layer.

    Usage:
        db = CaseDatabase()
        db.connect()
        db.initialize_schema()
        case = db.create_case(user_id, name="Smith v. Jones")
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("DATABASE_URL") or
            os.getenv("POSTGRES_URL") or
            "postgresql://localhost:5432/doculaw"
        )

    # =========================================================================
    # Connection handling
    # =========================================================================

    def connect(self) -> None:
        """Create the connection pool."""
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_connections,
                maxconn=self.config.pool_max_connections,
                dsn=self._connection_string,
                cursor_factory=RealDictCursor,
            )
            logger.info(
                f"Connection pool initialized (min={self.config.pool_min_connections}, "
                f"max={self.config.pool_max_connections})"
            )
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        if self._pool is None:
            self.connect()
        return self._pool.getconn()

    def _release_connection(self, conn):
        if self._pool and conn:
            self._pool.putconn(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.
        """
        for attempt in range(2):
            conn = self._get_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._pool.putconn(conn, close=True)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def _fetch_one(self, sql: str, params: tuple, label: str, commit: bool = False) -> Optional[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            # Close the transaction either way so pooled connections come back idle
            if commit:
                conn.commit()
            else:
                conn.rollback()
            return _row(row)

        return self._execute_with_retry(_op, label)

    def _fetch_all(self, sql: str, params: tuple, label: str) -> list[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.rollback()
            return [_row(r) for r in rows]

        return self._execute_with_retry(_op, label)

    def _execute(self, sql: str, params: tuple, label: str) -> int:
        """Run a write statement; returns the affected row count."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                count = cur.rowcount
                conn.commit()
            return count

        return self._execute_with_retry(_op, label)

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")

    def ping(self) -> bool:
        try:
            return self._fetch_one("SELECT 1 AS ok", (), "ping") is not None
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        discovery_sql = "\n".join(
            f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            case_id UUID NOT NULL UNIQUE REFERENCES cases(id) ON DELETE CASCADE,
            {column} JSONB NOT NULL DEFAULT '[]',
            definitions JSONB NOT NULL DEFAULT '[]',
            is_generated BOOLEAN DEFAULT FALSE,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );"""
            for table, column in DISCOVERY_TABLES.items()
        )

        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS pgcrypto;

        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT,
            google_sub TEXT UNIQUE,
            role TEXT NOT NULL DEFAULT 'lawyer' CHECK (role IN ('lawyer', 'client')),
            name TEXT,
            avatar_url TEXT,
            title TEXT,
            phone TEXT,
            referral_source TEXT,
            onboarding_completed BOOLEAN DEFAULT FALSE,
            email_confirmed BOOLEAN DEFAULT FALSE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            last_login TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS clients (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lawyer_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            case_type TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_clients_lawyer ON clients(lawyer_id);
        CREATE INDEX IF NOT EXISTS idx_clients_email ON clients(LOWER(email));

        CREATE TABLE IF NOT EXISTS cases (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            client_id UUID REFERENCES clients(id) ON DELETE SET NULL,
            name TEXT NOT NULL,
            case_type TEXT,
            case_number TEXT,
            incident_date TEXT,
            status TEXT NOT NULL DEFAULT 'Active',
            archived_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_cases_user ON cases(user_id);
        CREATE INDEX IF NOT EXISTS idx_cases_client ON cases(client_id);

        CREATE TABLE IF NOT EXISTS documents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            case_id UUID REFERENCES cases(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            path TEXT NOT NULL,
            url TEXT NOT NULL,
            type TEXT NOT NULL,
            size BIGINT NOT NULL DEFAULT 0,
            document_type TEXT NOT NULL DEFAULT 'document',
            extracted_text TEXT,
            extracted_data JSONB,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        );
        CREATE INDEX IF NOT EXISTS idx_documents_case ON documents(case_id);
        {discovery_sql}

        CREATE TABLE IF NOT EXISTS demand_letters (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            case_id UUID NOT NULL UNIQUE REFERENCES cases(id) ON DELETE CASCADE,
            sections JSONB NOT NULL DEFAULT '{{}}',
            body_text TEXT NOT NULL DEFAULT '',
            is_generated BOOLEAN DEFAULT FALSE,
            pdf_url TEXT,
            docx_url TEXT,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS sms_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lawyer_id UUID REFERENCES users(id) ON DELETE SET NULL,
            client_id UUID REFERENCES clients(id) ON DELETE SET NULL,
            case_id UUID REFERENCES cases(id) ON DELETE SET NULL,
            questionnaire_id UUID,
            to_phone TEXT NOT NULL,
            from_phone TEXT,
            message_body TEXT NOT NULL,
            message_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            twilio_message_sid TEXT,
            error_message TEXT,
            sent_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS client_invitations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            lawyer_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            email TEXT NOT NULL,
            token TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            accepted_at TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS magic_link_uses (
            jti TEXT PRIMARY KEY,
            client_id UUID REFERENCES clients(id) ON DELETE CASCADE,
            used_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS audit_log (
            id BIGSERIAL PRIMARY KEY,
            user_id UUID,
            action TEXT NOT NULL,
            resource_type TEXT,
            resource_id TEXT,
            details JSONB,
            ip_address TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
                conn.commit()

        try:
            self._execute_with_retry(_op, "initialize_schema")
            logger.info("Schema initialized successfully")
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(
        self,
        email: str,
        password_hash: Optional[str],
        name: Optional[str] = None,
        role: str = "lawyer",
        email_confirmed: bool = False,
    ) -> dict:
        """Insert a user. Raises ValueError if the email is already registered."""
        sql = """
        INSERT INTO users (email, password_hash, name, role, email_confirmed)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING *
        """
        try:
            return self._fetch_one(
                sql, (email.strip().lower(), password_hash, name, role, email_confirmed),
                "create_user", commit=True,
            )
        except psycopg2.errors.UniqueViolation:
            raise ValueError("A user with this email already exists") from None

    def get_user_by_email(self, email: str) -> Optional[dict]:
        return self._fetch_one(
            "SELECT * FROM users WHERE email = %s", (email.strip().lower(),), "get_user_by_email",
        )

    def get_user_by_id(self, user_id: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM users WHERE id = %s::uuid", (user_id,), "get_user_by_id")

    def create_or_get_google_user(
        self,
        google_sub: str,
        email: str,
        name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> dict:
        """
        Create a lawyer account from a Google sign-in, or update the existing
        one matched by email. Updates last_login on each login.
        """
        sql = """
        INSERT INTO users (google_sub, email, name, avatar_url, role, email_confirmed, last_login)
        VALUES (%s, %s, %s, %s, 'lawyer', TRUE, NOW())
        ON CONFLICT (email) DO UPDATE SET
            google_sub = EXCLUDED.google_sub,
            name = COALESCE(users.name, EXCLUDED.name),
            avatar_url = EXCLUDED.avatar_url,
            last_login = NOW()
        RETURNING *
        """
        return self._fetch_one(
            sql, (google_sub, email.strip().lower(), name, avatar_url), "create_or_get_google_user", commit=True,
        )

    def update_profile(self, user_id: str, **fields) -> Optional[dict]:
        """Update profile fields (name, title, phone, referral_source, onboarding_completed)."""
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}
        if not updates:
            return self.get_user_by_id(user_id)
        assignments = ", ".join(f"{k} = %s" for k in updates)
        sql = f"UPDATE users SET {assignments}, updated_at = NOW() WHERE id = %s::uuid RETURNING *"
        return self._fetch_one(sql, (*updates.values(), user_id), "update_profile", commit=True)

    def record_login(self, user_id: str) -> None:
        self._execute("UPDATE users SET last_login = NOW() WHERE id = %s::uuid", (user_id,), "record_login")

    # =========================================================================
    # Clients
    # =========================================================================

    def create_client(
        self,
        lawyer_id: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: Optional[str] = None,
        case_type: Optional[str] = None,
    ) -> dict:
        sql = """
        INSERT INTO clients (lawyer_id, first_name, last_name, email, phone, case_type)
        VALUES (%s::uuid, %s, %s, %s, %s, %s)
        RETURNING *
        """
        return self._fetch_one(
            sql, (lawyer_id, first_name, last_name, email.strip(), phone, case_type),
            "create_client", commit=True,
        )

    def list_clients(self, lawyer_id: str, search: Optional[str] = None) -> list[dict]:
        """List a lawyer's clients, newest first; search matches name or email."""
        sql = "SELECT * FROM clients WHERE lawyer_id = %s::uuid"
        params: list = [lawyer_id]
        if search:
            sql += " AND (first_name ILIKE %s OR last_name ILIKE %s OR email ILIKE %s)"
            pattern = f"%{search}%"
            params += [pattern, pattern, pattern]
        sql += " ORDER BY created_at DESC"
        return self._fetch_all(sql, tuple(params), "list_clients")

    def get_client(self, client_id: str, lawyer_id: str) -> Optional[dict]:
        if not is_uuid(client_id):
            return None
        return self._fetch_one(
            "SELECT * FROM clients WHERE id = %s::uuid AND lawyer_id = %s::uuid",
            (client_id, lawyer_id), "get_client",
        )

    def update_client(self, client_id: str, lawyer_id: str, **fields) -> Optional[dict]:
        updates = {k: v for k, v in fields.items() if k in CLIENT_FIELDS and v is not None}
        if not is_uuid(client_id):
            return None
        if not updates:
            return self.get_client(client_id, lawyer_id)
        assignments = ", ".join(f"{k} = %s" for k in updates)
        sql = (
            f"UPDATE clients SET {assignments}, updated_at = NOW() "
            "WHERE id = %s::uuid AND lawyer_id = %s::uuid RETURNING *"
        )
        return self._fetch_one(sql, (*updates.values(), client_id, lawyer_id), "update_client", commit=True)

    def delete_client(self, client_id: str, lawyer_id: str) -> bool:
        if not is_uuid(client_id):
            return False
        count = self._execute(
            "DELETE FROM clients WHERE id = %s::uuid AND lawyer_id = %s::uuid",
            (client_id, lawyer_id), "delete_client",
        )
        return count > 0

    def link_client_user(self, client_id: str, user_id: str) -> bool:
        count = self._execute(
            "UPDATE clients SET user_id = %s::uuid, updated_at = NOW() WHERE id = %s::uuid",
            (user_id, client_id), "link_client_user",
        )
        return count > 0

    def get_client_by_email(self, email: str) -> Optional[dict]:
        """Case-insensitive lookup; the most recently created client wins."""
        return self._fetch_one(
            "SELECT * FROM clients WHERE LOWER(email) = LOWER(%s) ORDER BY created_at DESC LIMIT 1",
            (email.strip(),), "get_client_by_email",
        )

    def get_client_by_id(self, client_id: str) -> Optional[dict]:
        return self._fetch_one("SELECT * FROM clients WHERE id = %s::uuid", (client_id,), "get_client_by_id")

    def get_client_by_user(self, user_id: str) -> Optional[dict]:
        return self._fetch_one(
            "SELECT * FROM clients WHERE user_id = %s::uuid", (user_id,), "get_client_by_user",
        )

    # =========================================================================
    # Cases
    # =========================================================================

    _CASE_SELECT = """
        SELECT c.*,
               NULLIF(TRIM(CONCAT(cl.first_name, ' ', cl.last_name)), '') AS client_name
        FROM cases c
        LEFT JOIN clients cl ON cl.id = c.client_id
    """

    def create_case(
        self,
        user_id: str,
        name: str,
        client_id: Optional[str] = None,
        case_type: Optional[str] = None,
        status: str = "Active",
        case_number: Optional[str] = None,
        incident_date: Optional[str] = None,
    ) -> dict:
        if status not in CASE_STATUSES:
            raise ValueError(f"Invalid case status: {status}")
        sql = """
        INSERT INTO cases (user_id, name, client_id, case_type, status, case_number, incident_date)
        VALUES (%s::uuid, %s, %s::uuid, %s, %s, %s, %s)
        RETURNING id
        """
        row = self._fetch_one(
            sql, (user_id, name, client_id, case_type, status, case_number, incident_date),
            "create_case", commit=True,
        )
        return self.get_case(row["id"], user_id)

    def list_cases(
        self,
        user_id: str,
        status: Optional[str] = None,
        archived: bool = False,
        search: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> list[dict]:
        """List a lawyer's cases. Archived cases are listed only when archived=True."""
        sql = self._CASE_SELECT + " WHERE c.user_id = %s::uuid"
        params: list = [user_id]
        sql += " AND c.archived_at IS NOT NULL" if archived else " AND c.archived_at IS NULL"
        if status:
            sql += " AND c.status = %s"
            params.append(status)
        if client_id:
            if not is_uuid(client_id):
                return []
            sql += " AND c.client_id = %s::uuid"
            params.append(client_id)
        if search:
            sql += " AND (c.name ILIKE %s OR c.case_type ILIKE %s OR cl.first_name ILIKE %s OR cl.last_name ILIKE %s)"
            params += [f"%{search}%"] * 4
        sql += " ORDER BY c.updated_at DESC"
        return self._fetch_all(sql, tuple(params), "list_cases")

    def get_case(self, case_id: str, user_id: str) -> Optional[dict]:
        """Get a case owned by user_id. Returns None if missing or owned by someone else."""
        if not is_uuid(case_id):
            return None
        return self._fetch_one(
            self._CASE_SELECT + " WHERE c.id = %s::uuid AND c.user_id = %s::uuid",
            (case_id, user_id), "get_case",
        )

    def get_case_by_id(self, case_id: str) -> Optional[dict]:
        """Unscoped lookup for service code that already checked ownership."""
        if not is_uuid(case_id):
            return None
        return self._fetch_one(self._CASE_SELECT + " WHERE c.id = %s::uuid", (case_id,), "get_case_by_id")

    def update_case(self, case_id: str, user_id: str, **fields) -> Optional[dict]:
        updates = {k: v for k, v in fields.items() if k in CASE_FIELDS and v is not None}
        if "status" in updates and updates["status"] not in CASE_STATUSES:
            raise ValueError(f"Invalid case status: {updates['status']}")
        if updates:
            assignments = ", ".join(f"{k} = %s" for k in updates)
            sql = (
                f"UPDATE cases SET {assignments}, updated_at = NOW() "
                "WHERE id = %s::uuid AND user_id = %s::uuid"
            )
            self._execute(sql, (*updates.values(), case_id, user_id), "update_case")
        return self.get_case(case_id, user_id)

    def archive_case(self, case_id: str, user_id: str) -> Optional[dict]:
        self._execute(
            "UPDATE cases SET archived_at = NOW(), updated_at = NOW() WHERE id = %s::uuid AND user_id = %s::uuid",
            (case_id, user_id), "archive_case",
        )
        return self.get_case(case_id, user_id)

    def unarchive_case(self, case_id: str, user_id: str) -> Optional[dict]:
        self._execute(
            "UPDATE cases SET archived_at = NULL, updated_at = NOW() WHERE id = %s::uuid AND user_id = %s::uuid",
            (case_id, user_id), "unarchive_case",
        )
        return self.get_case(case_id, user_id)

    def delete_case(self, case_id: str, user_id: str) -> bool:
        if not is_uuid(case_id):
            return False
        count = self._execute(
            "DELETE FROM cases WHERE id = %s::uuid AND user_id = %s::uuid", (case_id, user_id), "delete_case",
        )
        return count > 0

    def list_cases_for_client_user(self, client_user_id: str) -> list[dict]:
        """Cases visible in the client portal for a signed-in client user."""
        sql = self._CASE_SELECT + """
        WHERE cl.user_id = %s::uuid AND c.archived_at IS NULL
        ORDER BY c.updated_at DESC
        """
        return self._fetch_all(sql, (client_user_id,), "list_cases_for_client_user")

    # =========================================================================
    # Documents
    # =========================================================================

    def create_document(
        self,
        user_id: str,
        case_id: Optional[str],
        name: str,
        path: str,
        url: str,
        mime_type: str,
        size: int,
        document_type: str = "document",
        extracted_text: Optional[str] = None,
    ) -> dict:
        sql = """
        INSERT INTO documents (user_id, case_id, name, path, url, type, size, document_type, extracted_text)
        VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """
        return self._fetch_one(
            sql, (user_id, case_id, name, path, url, mime_type, size, document_type, extracted_text),
            "create_document", commit=True,
        )

    def list_documents(self, case_id: str, user_id: str) -> list[dict]:
        sql = """
        SELECT id, user_id, case_id, name, path, url, type, size, document_type,
               extracted_data, created_at, updated_at
        FROM documents WHERE case_id = %s::uuid AND user_id = %s::uuid
        ORDER BY created_at DESC
        """
        return self._fetch_all(sql, (case_id, user_id), "list_documents")

    def get_document(self, document_id: str, user_id: str) -> Optional[dict]:
        if not is_uuid(document_id):
            return None
        return self._fetch_one(
            "SELECT * FROM documents WHERE id = %s::uuid AND user_id = %s::uuid",
            (document_id, user_id), "get_document",
        )

    def latest_complaint_document(self, case_id: str, user_id: str) -> Optional[dict]:
        sql = """
        SELECT * FROM documents
        WHERE case_id = %s::uuid AND user_id = %s::uuid AND document_type = 'complaint'
        ORDER BY created_at DESC LIMIT 1
        """
        return self._fetch_one(sql, (case_id, user_id), "latest_complaint_document")

    def set_document_extraction(
        self,
        document_id: str,
        extracted_data: Optional[dict] = None,
        extracted_text: Optional[str] = None,
    ) -> bool:
        sql = """
        UPDATE documents SET
            extracted_data = COALESCE(%s, extracted_data),
            extracted_text = COALESCE(%s, extracted_text),
            updated_at = NOW()
        WHERE id = %s::uuid
        """
        data = psycopg2.extras.Json(extracted_data) if extracted_data is not None else None
        return self._execute(sql, (data, extracted_text, document_id), "set_document_extraction") > 0

    def delete_document(self, document_id: str, user_id: str) -> bool:
        if not is_uuid(document_id):
            return False
        count = self._execute(
            "DELETE FROM documents WHERE id = %s::uuid AND user_id = %s::uuid",
            (document_id, user_id), "delete_document",
        )
        return count > 0

    # =========================================================================
    # Discovery (RFA / RFP / SI)
    # =========================================================================

    def _check_discovery_table(self, table: str, items_column: str) -> None:
        if DISCOVERY_TABLES.get(table) != items_column:
            raise ValueError(f"Unknown discovery table: {table}.{items_column}")

    def get_discovery(self, table: str, items_column: str, case_id: str) -> Optional[dict]:
        self._check_discovery_table(table, items_column)
        sql = f"""
        SELECT {items_column}, definitions, is_generated, updated_at
        FROM {table} WHERE case_id = %s::uuid
        """
        return self._fetch_one(sql, (case_id,), f"get_{table}")

    def upsert_discovery(
        self,
        table: str,
        items_column: str,
        case_id: str,
        items: list[str],
        definitions: list[str],
        is_generated: bool,
        user_id: str,
    ) -> None:
        """Insert or replace the row for case_id."""
        self._check_discovery_table(table, items_column)
        sql = f"""
        INSERT INTO {table} (case_id, {items_column}, definitions, is_generated, created_by, updated_at)
        VALUES (%s::uuid, %s, %s, %s, %s::uuid, NOW())
        ON CONFLICT (case_id) DO UPDATE SET
            {items_column} = EXCLUDED.{items_column},
            definitions = EXCLUDED.definitions,
            is_generated = EXCLUDED.is_generated,
            created_by = EXCLUDED.created_by,
            updated_at = NOW()
        """
        self._execute(
            sql,
            (case_id, psycopg2.extras.Json(items), psycopg2.extras.Json(definitions), is_generated, user_id),
            f"upsert_{table}",
        )

    def delete_discovery(self, table: str, case_id: str) -> bool:
        if table not in DISCOVERY_TABLES:
            raise ValueError(f"Unknown discovery table: {table}")
        return self._execute(f"DELETE FROM {table} WHERE case_id = %s::uuid", (case_id,), f"delete_{table}") > 0

    # =========================================================================
    # Demand letters
    # =========================================================================

    def get_demand_letter(self, case_id: str) -> Optional[dict]:
        return self._fetch_one(
            "SELECT * FROM demand_letters WHERE case_id = %s::uuid", (case_id,), "get_demand_letter",
        )

    def upsert_demand_letter(
        self,
        case_id: str,
        sections: dict,
        body_text: str,
        is_generated: bool,
        user_id: str,
    ) -> None:
        sql = """
        INSERT INTO demand_letters (case_id, sections, body_text, is_generated, created_by, updated_at)
        VALUES (%s::uuid, %s, %s, %s, %s::uuid, NOW())
        ON CONFLICT (case_id) DO UPDATE SET
            sections = EXCLUDED.sections,
            body_text = EXCLUDED.body_text,
            is_generated = EXCLUDED.is_generated,
            created_by = EXCLUDED.created_by,
            updated_at = NOW()
        """
        self._execute(
            sql, (case_id, psycopg2.extras.Json(sections), body_text, is_generated, user_id),
            "upsert_demand_letter",
        )

    def set_demand_letter_url(self, case_id: str, fmt: str, url: str) -> bool:
        column = {"pdf": "pdf_url", "docx": "docx_url"}.get(fmt)
        if column is None:
            raise ValueError(f"Unsupported export format: {fmt}")
        sql = f"UPDATE demand_letters SET {column} = %s, updated_at = NOW() WHERE case_id = %s::uuid"
        return self._execute(sql, (url, case_id), "set_demand_letter_url") > 0

    # =========================================================================
    # SMS log
    # =========================================================================

    def create_sms_message(
        self,
        to_phone: str,
        message_body: str,
        message_type: str,
        lawyer_id: Optional[str] = None,
        client_id: Optional[str] = None,
        from_phone: Optional[str] = None,
        case_id: Optional[str] = None,
        questionnaire_id: Optional[str] = None,
    ) -> dict:
        sql = """
        INSERT INTO sms_messages
            (lawyer_id, client_id, to_phone, from_phone, message_body, message_type,
             case_id, questionnaire_id, status)
        VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s::uuid, %s::uuid, 'pending')
        RETURNING id
        """
        return self._fetch_one(
            sql,
            (lawyer_id, client_id, to_phone, from_phone, message_body, message_type, case_id, questionnaire_id),
            "create_sms_message", commit=True,
        )

    def update_sms_message(self, message_id: str, **fields) -> bool:
        updates = {k: v for k, v in fields.items() if k in SMS_UPDATE_FIELDS}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = %s" for k in updates)
        sql = f"UPDATE sms_messages SET {assignments} WHERE id = %s::uuid"
        return self._execute(sql, (*updates.values(), message_id), "update_sms_message") > 0

    # =========================================================================
    # Client invitations
    # =========================================================================

    def create_invitation(self, client_id: str, lawyer_id: str, email: str, token: str) -> dict:
        sql = """
        INSERT INTO client_invitations (client_id, lawyer_id, email, token)
        VALUES (%s::uuid, %s::uuid, %s, %s)
        RETURNING *
        """
        return self._fetch_one(sql, (client_id, lawyer_id, email, token), "create_invitation", commit=True)

    def get_invitation_by_token(self, token: str) -> Optional[dict]:
        return self._fetch_one(
            "SELECT * FROM client_invitations WHERE token = %s", (token,), "get_invitation_by_token",
        )

    def accept_invitation(self, invitation_id: str) -> bool:
        """Mark a pending invitation accepted. Returns False if it was not pending."""
        sql = """
        UPDATE client_invitations SET status = 'accepted', accepted_at = NOW()
        WHERE id = %s::uuid AND status = 'pending'
        """
        return self._execute(sql, (invitation_id,), "accept_invitation") > 0

    def consume_magic_link(self, jti: str, client_id: str) -> bool:
        """Record a login link as used. Returns False if it was used before."""
        sql = """
        INSERT INTO magic_link_uses (jti, client_id) VALUES (%s, %s::uuid)
        ON CONFLICT (jti) DO NOTHING
        """
        return self._execute(sql, (jti, client_id), "consume_magic_link") > 0

    # =========================================================================
    # Audit and dashboard
    # =========================================================================

    def log_audit(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Record an action in the audit log.

        Args:
            user_id: The user performing the action
            action: Action type (login, generate, export, delete, invite, etc.)
            resource_type: Type of resource (case, document, demand_letter, etc.)
            resource_id: ID of the affected resource
            details: Additional details as JSON
            ip_address: Caller IP address
        """
        sql = """
        INSERT INTO audit_log (user_id, action, resource_type, resource_id, details, ip_address)
        VALUES (%s::uuid, %s, %s, %s, %s, %s)
        """
        try:
            self._execute(
                sql,
                (user_id, action, resource_type, resource_id, json.dumps(details) if details else None, ip_address),
                "log_audit",
            )
        except Exception as e:
            # Don't fail operations due to audit logging errors
            logger.warning(f"Audit logging failed: {e}")

    def dashboard_stats(self, user_id: str) -> dict:
        """Counts for the lawyer dashboard plus the five most recently updated cases."""
        sql = """
        SELECT
            (SELECT COUNT(*) FROM cases WHERE user_id = %s::uuid AND archived_at IS NULL) AS active_cases,
            (SELECT COUNT(*) FROM cases WHERE user_id = %s::uuid AND archived_at IS NOT NULL) AS archived_cases,
            (SELECT COUNT(*) FROM clients WHERE lawyer_id = %s::uuid) AS clients,
            (SELECT COUNT(*) FROM documents WHERE user_id = %s::uuid) AS documents
        """
        counts = self._fetch_one(sql, (user_id,) * 4, "dashboard_stats") or {}
        recent = self.list_cases(user_id)[:5]
        return {
            "active_cases": int(counts.get("active_cases") or 0),
            "archived_cases": int(counts.get("archived_cases") or 0),
            "clients": int(counts.get("clients") or 0),
            "documents": int(counts.get("documents") or 0),
            "recent_cases": recent,
        }
