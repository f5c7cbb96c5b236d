"""Database schema for spendsync SQLite storage.

Contains:
- Schema DDL constant (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Column layout per entity table (COLUMNS)
- Database initialization (init_db)
"""

import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "transactions",
        "categories",
        "accounts",
        "budgets",
        "user_profile",
        "sync_meta",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


# Column order per entity table. Also the allowlist for where/order_by keys.
COLUMNS = {
    "categories": (
        "id",
        "name",
        "icon",
        "color_hex",
        "is_expense_category",
        "sort_order",
        "is_default",
        "created_at",
        "last_modified",
        "is_synced",
    ),
    "accounts": (
        "id",
        "name",
        "initial_balance",
        "account_type",
        "icon",
        "color_hex",
        "currency_code",
        "created_at",
        "last_modified",
        "is_synced",
    ),
    "budgets": (
        "id",
        "amount",
        "period",
        "start_date",
        "alert_threshold",
        "is_active",
        "category_id",
        "created_at",
        "last_modified",
        "is_synced",
    ),
    "transactions": (
        "id",
        "amount",
        "note",
        "date",
        "type",
        "merchant_name",
        "category_id",
        "account_id",
        "created_at",
        "last_modified",
        "is_synced",
    ),
    "user_profile": (
        "id",
        "email",
        "display_name",
        "persona",
        "preferred_theme",
        "currency_code",
        "notifications_enabled",
        "budget_alerts_enabled",
        "daily_reminder_time",
        "created_at",
        "last_modified",
        "is_synced",
    ),
}


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Categories (pulled first; budgets and transactions reference them)
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    icon TEXT NOT NULL,
    color_hex TEXT NOT NULL,
    is_expense_category INTEGER NOT NULL DEFAULT 1,
    sort_order INTEGER NOT NULL DEFAULT 0,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0
);

-- Accounts
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    initial_balance TEXT NOT NULL,  -- Decimal as string
    account_type TEXT NOT NULL,
    icon TEXT NOT NULL,
    color_hex TEXT NOT NULL,
    currency_code TEXT NOT NULL DEFAULT 'INR',
    created_at TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0
);

-- Budgets
CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    amount TEXT NOT NULL,  -- Decimal as string
    period TEXT NOT NULL,
    start_date TEXT NOT NULL,
    alert_threshold REAL NOT NULL DEFAULT 0.8,
    is_active INTEGER NOT NULL DEFAULT 1,
    category_id TEXT,  -- soft reference, nulled when unresolved
    created_at TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0
);

-- Transactions
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    amount TEXT NOT NULL,  -- Decimal as string
    note TEXT NOT NULL DEFAULT '',
    date TEXT NOT NULL,
    type TEXT NOT NULL,
    merchant_name TEXT,
    category_id TEXT,
    account_id TEXT,
    created_at TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
CREATE INDEX IF NOT EXISTS idx_transactions_synced ON transactions(is_synced);

-- User profile (one row per signed-in user)
CREATE TABLE IF NOT EXISTS user_profile (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL DEFAULT '',
    display_name TEXT NOT NULL DEFAULT '',
    persona TEXT NOT NULL,
    preferred_theme TEXT NOT NULL,
    currency_code TEXT NOT NULL DEFAULT 'INR',
    notifications_enabled INTEGER NOT NULL DEFAULT 1,
    budget_alerts_enabled INTEGER NOT NULL DEFAULT 1,
    daily_reminder_time TEXT,
    created_at TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0
);

-- Sync metadata (last sync date, initial sync flag)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(conn: sqlite3.Connection, db_path=None) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    conn.executescript(SCHEMA)

    cur = conn.execute("SELECT MAX(version) FROM schema_version")
    row = cur.fetchone()
    if row is None or row[0] is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] < SCHEMA_VERSION:
        logger.info(f"Upgrading schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    conn.commit()

    # Financial data: owner read/write only
    if db_path is not None:
        try:
            os.chmod(db_path, 0o600)
        except OSError as e:
            logger.warning(f"Could not set secure permissions on {db_path}: {e}")
