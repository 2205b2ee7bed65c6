"""
SQLite persistence for tracked emails, read receipts, AI summaries and
notifications.

Timestamps are written as ISO-8601 UTC strings and come back as aware
datetimes. Rows are returned as plain dicts.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = ("sent_at", "read_at", "created_at")


def utcnow():
    return datetime.now(timezone.utc)


def _to_db_time(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_dict(row):
    if row is None:
        return None
    data = dict(row)
    for field in _TIMESTAMP_FIELDS:
        if field in data:
            data[field] = _from_db_time(data[field])
    return data


class Storage:
    def __init__(self, database):
        self.database = database

    def get_db(self):
        db = sqlite3.connect(self.database)
        db.row_factory = sqlite3.Row
        return db

    def init_db(self):
        db = self.get_db()
        try:
            db.execute("""
                CREATE TABLE IF NOT EXISTS emails (
                    id TEXT PRIMARY KEY,
                    recipient TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    content TEXT NOT NULL,
                    sent_at TEXT,
                    tracking_pixel_id TEXT NOT NULL UNIQUE,
                    read_status TEXT NOT NULL DEFAULT 'pending',
                    read_at TEXT,
                    read_time INTEGER,
                    open_count INTEGER NOT NULL DEFAULT 0
                )
            """)
            db.execute("""
                CREATE TABLE IF NOT EXISTS read_receipts (
                    id TEXT PRIMARY KEY,
                    email_id TEXT NOT NULL,
                    tracking_pixel_id TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    read_at TEXT NOT NULL,
                    session_duration INTEGER,
                    FOREIGN KEY (email_id) REFERENCES emails(id)
                )
            """)
            db.execute("""
                CREATE INDEX IF NOT EXISTS idx_read_receipts_email
                ON read_receipts (email_id, read_at)
            """)
            db.execute("""
                CREATE TABLE IF NOT EXISTS ai_summaries (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    source TEXT NOT NULL,
                    source_data TEXT,
                    priority TEXT DEFAULT 'normal',
                    key_points TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            db.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    data TEXT
                )
            """)
            db.commit()
        finally:
            db.close()

    # ─── EMAILS ───────────────────────────────────────────────────────

    def create_email(self, recipient, subject, content, tracking_pixel_id, sent_at=None):
        email_id = str(uuid.uuid4())
        sent_at = sent_at or utcnow()
        db = self.get_db()
        try:
            db.execute(
                "INSERT INTO emails (id, recipient, subject, content, sent_at, tracking_pixel_id) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (email_id, recipient, subject, content, _to_db_time(sent_at), tracking_pixel_id),
            )
            db.commit()
        finally:
            db.close()
        return self.get_email(email_id)

    def get_email(self, email_id):
        db = self.get_db()
        try:
            row = db.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        finally:
            db.close()
        return _row_to_dict(row)

    def get_email_by_tracking_pixel(self, tracking_pixel_id):
        db = self.get_db()
        try:
            row = db.execute(
                "SELECT * FROM emails WHERE tracking_pixel_id = ?", (tracking_pixel_id,)
            ).fetchone()
        finally:
            db.close()
        return _row_to_dict(row)

    def list_emails(self):
        db = self.get_db()
        try:
            rows = db.execute("SELECT * FROM emails ORDER BY sent_at DESC").fetchall()
        finally:
            db.close()
        return [_row_to_dict(r) for r in rows]

    def mark_send_failed(self, email_id):
        db = self.get_db()
        try:
            cursor = db.execute(
                "UPDATE emails SET read_status = 'failed' WHERE id = ? AND read_status = 'pending'",
                (email_id,),
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    def transition_to_read(self, email_id, read_at, read_time):
        """Move a pending email to read. Returns False if it was not pending."""
        db = self.get_db()
        try:
            cursor = db.execute(
                "UPDATE emails SET read_status = 'read', read_at = ?, read_time = ? "
                "WHERE id = ? AND read_status = 'pending'",
                (_to_db_time(read_at), read_time, email_id),
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    # ─── READ RECEIPTS ────────────────────────────────────────────────

    def create_read_receipt(self, email_id, tracking_pixel_id, ip_address, user_agent, read_at=None):
        receipt = {
            "id": str(uuid.uuid4()),
            "email_id": email_id,
            "tracking_pixel_id": tracking_pixel_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "read_at": read_at or utcnow(),
            "session_duration": None,
        }
        db = self.get_db()
        try:
            db.execute(
                "INSERT INTO read_receipts (id, email_id, tracking_pixel_id, ip_address, user_agent, read_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (receipt["id"], email_id, tracking_pixel_id, ip_address, user_agent,
                 _to_db_time(receipt["read_at"])),
            )
            db.execute(
                "UPDATE emails SET open_count = open_count + 1 WHERE id = ?", (email_id,)
            )
            db.commit()
        finally:
            db.close()
        return receipt

    def get_read_receipts(self, email_id):
        db = self.get_db()
        try:
            rows = db.execute(
                "SELECT * FROM read_receipts WHERE email_id = ? ORDER BY read_at DESC", (email_id,)
            ).fetchall()
        finally:
            db.close()
        return [_row_to_dict(r) for r in rows]

    # ─── AI SUMMARIES ─────────────────────────────────────────────────

    def create_ai_summary(self, title, content, source, source_data=None, priority="normal", key_points=None):
        summary_id = str(uuid.uuid4())
        db = self.get_db()
        try:
            db.execute(
                "INSERT INTO ai_summaries (id, title, content, source, source_data, priority, key_points, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (summary_id, title, content, source, source_data, priority or "normal",
                 json.dumps(key_points or []), _to_db_time(utcnow())),
            )
            db.commit()
            row = db.execute("SELECT * FROM ai_summaries WHERE id = ?", (summary_id,)).fetchone()
        finally:
            db.close()
        return self._summary_dict(row)

    def list_ai_summaries(self):
        db = self.get_db()
        try:
            rows = db.execute("SELECT * FROM ai_summaries ORDER BY created_at DESC").fetchall()
        finally:
            db.close()
        return [self._summary_dict(r) for r in rows]

    @staticmethod
    def _summary_dict(row):
        data = _row_to_dict(row)
        data["key_points"] = json.loads(data["key_points"]) if data["key_points"] else []
        return data

    # ─── NOTIFICATIONS ────────────────────────────────────────────────

    def create_notification(self, type, title, content, data=None):
        notification_id = str(uuid.uuid4())
        db = self.get_db()
        try:
            db.execute(
                "INSERT INTO notifications (id, type, title, content, created_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (notification_id, type, title, content, _to_db_time(utcnow()),
                 json.dumps(data) if data is not None else None),
            )
            db.commit()
            row = db.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
        finally:
            db.close()
        logger.info(f"Notification created: {type} - {title}")
        return self._notification_dict(row)

    def list_notifications(self):
        db = self.get_db()
        try:
            rows = db.execute("SELECT * FROM notifications ORDER BY created_at DESC").fetchall()
        finally:
            db.close()
        return [self._notification_dict(r) for r in rows]

    def mark_notification_read(self, notification_id):
        db = self.get_db()
        try:
            cursor = db.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ?", (notification_id,)
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    @staticmethod
    def _notification_dict(row):
        data = _row_to_dict(row)
        data["is_read"] = bool(data["is_read"])
        data["data"] = json.loads(data["data"]) if data["data"] else None
        return data
