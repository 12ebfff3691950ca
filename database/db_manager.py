import logging
import sqlite3
from typing import List

from backend.models import DeliveryRecord
from .setup_database import DATABASE_FILE, setup_database

logger = logging.getLogger(__name__)

_COLUMNS = "delivery_id, code, box_id, phone, message, timestamp, message_id, provider, status"


def get_db_connection(db_path: str = DATABASE_FILE) -> sqlite3.Connection:
    """Open the history database"""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row  # rows behave like dicts
    return conn


def _row_to_record(row: sqlite3.Row) -> DeliveryRecord:
    return DeliveryRecord(
        id=row['delivery_id'],
        code=row['code'],
        box_id=row['box_id'],
        phone=row['phone'],
        message=row['message'],
        timestamp=row['timestamp'],
        message_id=row['message_id'] or '',
        provider=row['provider'],
        status=row['status'],
    )


def add_delivery(record: DeliveryRecord, db_path: str = DATABASE_FILE, keep: int = 10) -> None:
    """Store a delivery and prune the table down to the `keep` newest rows."""
    conn = get_db_connection(db_path)
    try:
        conn.execute(
            f"INSERT INTO deliveries ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (record.id, record.code, record.box_id, record.phone, record.message,
             record.timestamp, record.message_id, record.provider, record.status)
        )
        _prune(conn, keep)
        conn.commit()
    finally:
        conn.close()
    logger.info("Delivery %s recorded (box=%s, provider=%s)", record.id, record.box_id, record.provider)


def _prune(conn: sqlite3.Connection, keep: int) -> None:
    if keep <= 0:
        return
    conn.execute(
        "DELETE FROM deliveries WHERE id NOT IN "
        "(SELECT id FROM deliveries ORDER BY id DESC LIMIT ?)",
        (keep,)
    )


def recent_deliveries(db_path: str = DATABASE_FILE, limit: int = 10) -> List[DeliveryRecord]:
    """Newest deliveries first"""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM deliveries ORDER BY id DESC LIMIT ?",
            (limit,)
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_record(row) for row in rows]


def get_delivery(delivery_id: str, db_path: str = DATABASE_FILE) -> DeliveryRecord | None:
    """Look up one delivery by its id"""
    conn = get_db_connection(db_path)
    try:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM deliveries WHERE delivery_id = ?",
            (delivery_id,)
        ).fetchone()
    finally:
        conn.close()
    if row:
        return _row_to_record(row)
    return None


def clear_deliveries(db_path: str = DATABASE_FILE) -> int:
    """Delete the whole history, returns the number of rows removed"""
    conn = get_db_connection(db_path)
    try:
        cursor = conn.execute("DELETE FROM deliveries")
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def ensure_database(db_path: str = DATABASE_FILE) -> None:
    """Create tables on first use"""
    setup_database(db_path)
