"""
SQLite Database Repository - Broadcast and Reply Persistence
=============================================================

Stores employees, broadcasts, message contexts and responses per organization.
Every query that reads employee or broadcast data is scoped by organization_id.
"""

import json
import sqlite3
import logging
import uuid
from datetime import datetime
from typing import List, Optional
from contextlib import contextmanager

from ...domain.models import (
    AnnouncementBroadcast,
    AnnouncementCategory,
    Broadcast,
    CheckInBroadcast,
    MessageContext,
    MessageType,
    PollBroadcast,
    PollType,
    Priority,
    Recipient,
    Response,
    Targeting,
    TargetingMode,
    dial_digits,
    from_iso,
    to_iso,
)

logger = logging.getLogger(__name__)

DATABASE_FILE = "wellpulse.db"


def _new_id() -> str:
    return uuid.uuid4().hex


class Database:
    """
    SQLite database for WellPulse.

    Usage:
        db = Database()
        db.init()

        # Add an employee to an organization
        db.add_employee("org_1", name="Amina", phone="+254700000001", department="Ops")

        # Find the reply context for an employee
        context = db.get_active_context(employee_id, now=utc_now())
    """

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = db_path

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS employees (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    phone TEXT DEFAULT '',
                    phone_key TEXT DEFAULT '',
                    department TEXT DEFAULT '',
                    is_active INTEGER DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS broadcasts (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    body TEXT NOT NULL DEFAULT '',
                    question TEXT DEFAULT '',
                    poll_type TEXT DEFAULT '',
                    options TEXT DEFAULT '[]',
                    rating_scale INTEGER DEFAULT 10,
                    category TEXT DEFAULT 'general',
                    priority TEXT DEFAULT 'normal',
                    target_type TEXT DEFAULT 'all',
                    target_departments TEXT DEFAULT '[]',
                    target_employees TEXT DEFAULT '[]',
                    is_active INTEGER DEFAULT 1,
                    is_deleted INTEGER DEFAULT 0,
                    expires_at TEXT,
                    send_via_channel INTEGER DEFAULT 0,
                    sent_at TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS message_context (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    message_type TEXT NOT NULL,
                    reference_id TEXT NOT NULL,
                    sent_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    is_responded INTEGER DEFAULT 0,
                    responded_at TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_message_context_lookup
                ON message_context (employee_id, is_responded, expires_at, sent_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_employees_phone_key ON employees (phone_key)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS responses (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    broadcast_id TEXT NOT NULL,
                    context_id TEXT NOT NULL UNIQUE,
                    message_type TEXT NOT NULL,
                    response_text TEXT DEFAULT '',
                    response_choice TEXT,
                    response_rating INTEGER,
                    mood_score INTEGER,
                    sentiment TEXT,
                    is_read_ack INTEGER DEFAULT 0,
                    submitted_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS feedback (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    feedback_text TEXT NOT NULL,
                    feedback_type TEXT DEFAULT 'general',
                    submitted_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS inbound_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_sid TEXT DEFAULT '',
                    organization_id TEXT,
                    from_number TEXT NOT NULL,
                    to_number TEXT DEFAULT '',
                    message_body TEXT DEFAULT '',
                    media_count INTEGER DEFAULT 0,
                    profile_name TEXT,
                    direction TEXT DEFAULT 'inbound',
                    status TEXT DEFAULT 'received',
                    received_at TEXT NOT NULL
                )
            """)

            logger.info(f"Database initialized: {self.db_path}")

    # ── Employees ──────────────────────────────────────────────────

    def add_employee(
        self,
        organization_id: str,
        name: str,
        phone: str = "",
        department: str = "",
        is_active: bool = True,
        employee_id: Optional[str] = None,
    ) -> str:
        """Add an employee to an organization. Returns the employee id."""
        employee_id = employee_id or _new_id()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO employees (id, organization_id, name, phone, phone_key, department, is_active)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (employee_id, organization_id, name, phone, dial_digits(phone), department, int(is_active))
            )
        return employee_id

    def get_active_employees(
        self,
        organization_id: str,
        departments: Optional[List[str]] = None,
        employee_ids: Optional[List[str]] = None,
    ) -> List[Recipient]:
        """Active employees of an organization, optionally narrowed by department or id."""
        query = "SELECT * FROM employees WHERE organization_id = ? AND is_active = 1"
        params: list = [organization_id]

        if departments is not None:
            if not departments:
                return []
            query += f" AND department IN ({', '.join('?' for _ in departments)})"
            params.extend(departments)

        if employee_ids is not None:
            if not employee_ids:
                return []
            query += f" AND id IN ({', '.join('?' for _ in employee_ids)})"
            params.extend(employee_ids)

        with self._get_connection() as conn:
            rows = conn.execute(query + " ORDER BY name, id", params).fetchall()
            return [self._row_to_recipient(row) for row in rows]

    def find_employee_by_phone(self, phone: str) -> Optional[Recipient]:
        """Look up an employee by phone digits, ignoring formatting on either side."""
        key = dial_digits(phone)
        if not key:
            return None
        with self._get_connection() as conn:
            row = conn.execute(
                """SELECT * FROM employees WHERE phone_key = ?
                   ORDER BY is_active DESC, created_at LIMIT 1""",
                (key,)
            ).fetchone()
            return self._row_to_recipient(row) if row else None

    def _row_to_recipient(self, row: sqlite3.Row) -> Recipient:
        return Recipient(
            id=row["id"],
            organization_id=row["organization_id"],
            name=row["name"],
            phone=row["phone"] or "",
            department=row["department"] or "",
            is_active=bool(row["is_active"]),
        )

    # ── Broadcasts ─────────────────────────────────────────────────

    def add_broadcast(self, broadcast: Broadcast) -> str:
        """Insert a check-in, poll or announcement. Returns its id."""
        broadcast_id = broadcast.id or _new_id()
        values = {
            "id": broadcast_id,
            "organization_id": broadcast.organization_id,
            "kind": broadcast.kind.value,
            "title": broadcast.title,
            "target_type": broadcast.targeting.mode.value,
            "target_departments": json.dumps(broadcast.targeting.departments),
            "target_employees": json.dumps(broadcast.targeting.employee_ids),
            "is_active": int(broadcast.is_active),
            "is_deleted": int(broadcast.is_deleted),
            "expires_at": to_iso(broadcast.expires_at) if broadcast.expires_at else None,
            "send_via_channel": int(broadcast.send_via_channel),
            "sent_at": to_iso(broadcast.sent_at) if broadcast.sent_at else None,
        }

        if isinstance(broadcast, CheckInBroadcast):
            values["body"] = broadcast.message
        elif isinstance(broadcast, PollBroadcast):
            values.update(
                question=broadcast.question,
                poll_type=broadcast.poll_type.value,
                options=json.dumps(broadcast.options),
                rating_scale=broadcast.rating_scale,
            )
        elif isinstance(broadcast, AnnouncementBroadcast):
            values.update(
                body=broadcast.content,
                category=broadcast.category.value,
                priority=broadcast.priority.value,
            )

        columns = ", ".join(values.keys())
        placeholders = ", ".join("?" for _ in values)
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO broadcasts ({columns}) VALUES ({placeholders})",
                list(values.values())
            )
        return broadcast_id

    def get_broadcast(self, broadcast_id: str, organization_id: Optional[str] = None) -> Optional[Broadcast]:
        """Get a broadcast by id, optionally scoped to its organization."""
        with self._get_connection() as conn:
            if organization_id is not None:
                row = conn.execute(
                    "SELECT * FROM broadcasts WHERE id = ? AND organization_id = ?",
                    (broadcast_id, organization_id)
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM broadcasts WHERE id = ?", (broadcast_id,)
                ).fetchone()
            return self._row_to_broadcast(row) if row else None

    def update_broadcast(self, broadcast_id: str, **updates) -> bool:
        """Update broadcast columns."""
        if not updates:
            return False

        set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
        values = list(updates.values()) + [broadcast_id]

        with self._get_connection() as conn:
            conn.execute(
                f"UPDATE broadcasts SET {set_clause} WHERE id = ?",
                values
            )
            return True

    def mark_broadcast_sent(self, broadcast_id: str, sent_at: datetime):
        """Flag a broadcast as delivered over the messaging channel."""
        self.update_broadcast(broadcast_id, send_via_channel=1, sent_at=to_iso(sent_at))

    def set_broadcast_active(self, broadcast_id: str, active: bool):
        """Publish/unpublish (announcements) or activate/deactivate (polls, check-ins)."""
        self.update_broadcast(broadcast_id, is_active=int(active))

    def soft_delete_broadcast(self, broadcast_id: str):
        """Hide a broadcast without dropping the responses that reference it."""
        self.update_broadcast(broadcast_id, is_deleted=1, is_active=0)

    def _row_to_broadcast(self, row: sqlite3.Row) -> Broadcast:
        """Convert database row to the broadcast variant named by its kind."""
        common = dict(
            id=row["id"],
            organization_id=row["organization_id"],
            title=row["title"] or "",
            targeting=Targeting(
                mode=TargetingMode(row["target_type"] or "all"),
                departments=json.loads(row["target_departments"] or "[]"),
                employee_ids=json.loads(row["target_employees"] or "[]"),
            ),
            is_active=bool(row["is_active"]),
            is_deleted=bool(row["is_deleted"]),
            expires_at=from_iso(row["expires_at"]),
            send_via_channel=bool(row["send_via_channel"]),
            sent_at=from_iso(row["sent_at"]),
        )

        kind = MessageType(row["kind"])
        if kind is MessageType.CHECKIN:
            return CheckInBroadcast(message=row["body"] or "", **common)
        if kind is MessageType.POLL:
            return PollBroadcast(
                question=row["question"] or "",
                poll_type=PollType(row["poll_type"] or "open_text"),
                options=json.loads(row["options"] or "[]"),
                rating_scale=row["rating_scale"] or 10,
                **common
            )
        return AnnouncementBroadcast(
            content=row["body"] or "",
            category=AnnouncementCategory(row["category"] or "general"),
            priority=Priority(row["priority"] or "normal"),
            **common
        )

    # ── Message contexts ───────────────────────────────────────────

    def create_message_context(self, context: MessageContext) -> str:
        """Persist a correlation record for one successful send."""
        context_id = context.id or _new_id()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO message_context
                   (id, organization_id, employee_id, message_type, reference_id,
                    sent_at, expires_at, is_responded)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    context_id,
                    context.organization_id,
                    context.employee_id,
                    context.message_type.value,
                    context.reference_id,
                    to_iso(context.sent_at),
                    to_iso(context.expires_at),
                    int(context.is_responded),
                )
            )
        return context_id

    def get_active_context(self, employee_id: str, now: datetime) -> Optional[MessageContext]:
        """Most recent unresponded, unexpired context for an employee (latest sent_at wins)."""
        with self._get_connection() as conn:
            row = conn.execute(
                """SELECT * FROM message_context
                   WHERE employee_id = ? AND is_responded = 0 AND expires_at > ?
                   ORDER BY sent_at DESC LIMIT 1""",
                (employee_id, to_iso(now))
            ).fetchone()
            return self._row_to_context(row) if row else None

    def get_context(self, context_id: str) -> Optional[MessageContext]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM message_context WHERE id = ?", (context_id,)).fetchone()
            return self._row_to_context(row) if row else None

    def get_contexts(self, reference_id: Optional[str] = None, employee_id: Optional[str] = None) -> List[MessageContext]:
        """List contexts by broadcast and/or employee, oldest first."""
        clauses, params = [], []
        if reference_id is not None:
            clauses.append("reference_id = ?")
            params.append(reference_id)
        if employee_id is not None:
            clauses.append("employee_id = ?")
            params.append(employee_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM message_context {where} ORDER BY sent_at", params
            ).fetchall()
            return [self._row_to_context(row) for row in rows]

    def _row_to_context(self, row: sqlite3.Row) -> MessageContext:
        return MessageContext(
            id=row["id"],
            organization_id=row["organization_id"],
            employee_id=row["employee_id"],
            message_type=MessageType(row["message_type"]),
            reference_id=row["reference_id"],
            sent_at=from_iso(row["sent_at"]),
            expires_at=from_iso(row["expires_at"]),
            is_responded=bool(row["is_responded"]),
            responded_at=from_iso(row["responded_at"]),
        )

    # ── Responses ──────────────────────────────────────────────────

    def record_response(self, response: Response) -> Optional[str]:
        """
        Claim the response's context and store the response in one transaction.

        Returns the new response id, or None when the context was already
        responded to (another reply claimed it first).
        """
        response_id = response.id or _new_id()
        submitted = to_iso(response.submitted_at)

        with self._get_connection() as conn:
            claimed = conn.execute(
                """UPDATE message_context SET is_responded = 1, responded_at = ?
                   WHERE id = ? AND is_responded = 0""",
                (submitted, response.context_id)
            ).rowcount

            if claimed != 1:
                return None

            conn.execute(
                """INSERT INTO responses
                   (id, organization_id, employee_id, broadcast_id, context_id, message_type,
                    response_text, response_choice, response_rating, mood_score, sentiment,
                    is_read_ack, submitted_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    response_id,
                    response.organization_id,
                    response.employee_id,
                    response.broadcast_id,
                    response.context_id,
                    response.message_type.value,
                    response.response_text,
                    response.response_choice,
                    response.response_rating,
                    response.mood_score,
                    response.sentiment,
                    int(response.is_read_ack),
                    submitted,
                )
            )
        return response_id

    def get_responses(self, broadcast_id: Optional[str] = None) -> List[Response]:
        with self._get_connection() as conn:
            if broadcast_id is not None:
                rows = conn.execute(
                    "SELECT * FROM responses WHERE broadcast_id = ? ORDER BY submitted_at",
                    (broadcast_id,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM responses ORDER BY submitted_at").fetchall()
            return [self._row_to_response(row) for row in rows]

    def _row_to_response(self, row: sqlite3.Row) -> Response:
        return Response(
            id=row["id"],
            organization_id=row["organization_id"],
            employee_id=row["employee_id"],
            broadcast_id=row["broadcast_id"],
            context_id=row["context_id"],
            message_type=MessageType(row["message_type"]),
            response_text=row["response_text"] or "",
            response_choice=row["response_choice"],
            response_rating=row["response_rating"],
            mood_score=row["mood_score"],
            sentiment=row["sentiment"],
            is_read_ack=bool(row["is_read_ack"]),
            submitted_at=from_iso(row["submitted_at"]),
        )

    # ── Feedback and inbound log ───────────────────────────────────

    def add_feedback(self, organization_id: str, employee_id: str, text: str, submitted_at: datetime) -> str:
        """Store a reply that matched no broadcast as general feedback."""
        feedback_id = _new_id()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO feedback (id, organization_id, employee_id, feedback_text, submitted_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (feedback_id, organization_id, employee_id, text, to_iso(submitted_at))
            )
        return feedback_id

    def count_feedback(self, organization_id: str) -> int:
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM feedback WHERE organization_id = ?", (organization_id,)
            ).fetchone()[0]

    def log_inbound_message(
        self,
        message_sid: str,
        from_number: str,
        to_number: str,
        body: str,
        received_at: datetime,
        media_count: int = 0,
        profile_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        """Keep an audit trail of every well-formed inbound message."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """INSERT INTO inbound_messages
                   (message_sid, organization_id, from_number, to_number, message_body,
                    media_count, profile_name, received_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (message_sid, organization_id, from_number, to_number, body,
                 media_count, profile_name, to_iso(received_at))
            )
            return cursor.lastrowid

    def count_inbound_messages(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM inbound_messages").fetchone()[0]

    # ── Stats ──────────────────────────────────────────────────────

    def get_stats(self, broadcast_id: str) -> dict:
        """Delivery and reply counts for one broadcast."""
        with self._get_connection() as conn:
            delivered = conn.execute(
                "SELECT COUNT(*) FROM message_context WHERE reference_id = ?", (broadcast_id,)
            ).fetchone()[0]
            responded = conn.execute(
                "SELECT COUNT(*) FROM message_context WHERE reference_id = ? AND is_responded = 1",
                (broadcast_id,)
            ).fetchone()[0]

            return {
                "delivered": delivered,
                "responded": responded,
                "response_rate": round(responded / delivered * 100, 1) if delivered > 0 else 0
            }


# Quick init helper
def init_database(db_path: str = DATABASE_FILE) -> Database:
    """Initialize database tables and return the repository."""
    db = Database(db_path)
    db.init()
    return db
