"""SQLite persistence layer with simple insert helpers.

Decimal values are stored as TEXT so the audit log keeps full precision.
"""

from __future__ import annotations

import os
import sqlite3
from sqlite3 import Connection

from ..models import Alert, AuditEntry, TradeRecord


def init_db(db_path: str = "tradeloop.db") -> Connection:
    """Create a database connection and ensure required tables exist."""
    parent = os.path.dirname(db_path)
    if parent and db_path != ":memory:":
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(db_path)
    create_schema(conn)
    return conn


def create_schema(conn: Connection) -> None:
    """Create database tables if they are missing."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ts_iso TEXT NOT NULL,
            venue TEXT NOT NULL,
            side TEXT NOT NULL,
            size TEXT NOT NULL,
            price TEXT NOT NULL,
            fees TEXT NOT NULL,
            action_id TEXT,
            opportunity_id TEXT,
            order_id TEXT,
            confirmed INTEGER NOT NULL,
            error TEXT
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS rejections (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ts_iso TEXT NOT NULL,
            opportunity_id TEXT NOT NULL,
            opportunity_kind TEXT NOT NULL,
            action_id TEXT NOT NULL,
            venue TEXT NOT NULL,
            check_name TEXT NOT NULL,
            reason TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
            id TEXT PRIMARY KEY,
            ts_iso TEXT NOT NULL,
            updated_iso TEXT NOT NULL,
            category TEXT NOT NULL,
            venue TEXT NOT NULL,
            severity TEXT NOT NULL,
            message TEXT NOT NULL,
            acknowledged INTEGER NOT NULL
        )
        """
    )
    conn.commit()


def insert_trade(conn: Connection, trade: TradeRecord) -> int:
    """Insert a trade record (confirmed or failed) and return its row id."""
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO trades (
            ts_iso, venue, side, size, price, fees, action_id, opportunity_id,
            order_id, confirmed, error
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            trade.timestamp.isoformat(),
            trade.venue_id,
            trade.side,
            str(trade.size),
            str(trade.price),
            str(trade.fees),
            trade.action_id,
            trade.opportunity_id,
            trade.order_id,
            int(trade.confirmed),
            trade.error,
        ),
    )
    conn.commit()
    return cur.lastrowid


def insert_rejection(conn: Connection, entry: AuditEntry) -> int:
    """Insert a risk rejection audit entry and return its row id."""
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO rejections (
            ts_iso, opportunity_id, opportunity_kind, action_id, venue,
            check_name, reason
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.timestamp.isoformat(),
            entry.opportunity_id,
            entry.opportunity_kind,
            entry.action_id,
            entry.venue_id,
            entry.check,
            entry.reason,
        ),
    )
    conn.commit()
    return cur.lastrowid


def upsert_alert(conn: Connection, alert: Alert) -> None:
    """Insert *alert* or refresh its severity, message and acknowledgement."""
    conn.execute(
        """
        INSERT INTO alerts (
            id, ts_iso, updated_iso, category, venue, severity, message, acknowledged
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            updated_iso = excluded.updated_iso,
            severity = excluded.severity,
            message = excluded.message,
            acknowledged = excluded.acknowledged
        """,
        (
            alert.id,
            alert.timestamp.isoformat(),
            alert.updated_at.isoformat(),
            alert.category,
            alert.venue_id,
            alert.severity,
            alert.message,
            int(alert.acknowledged),
        ),
    )
    conn.commit()
