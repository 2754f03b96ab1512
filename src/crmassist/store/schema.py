"""CRM table layout read by the engine.

The engine never owns these tables in production; the DDL here mirrors the
columns the entity handlers read so that local databases, demos and tests
have the same shape.
"""

from datetime import datetime, timedelta

import duckdb

QUOTATION_TABLES: tuple[str, ...] = ("quotes_mbcb", "quotes_signages", "quotes_paint")

_QUOTE_COLUMNS = """
    id INTEGER,
    section VARCHAR,
    customer_name VARCHAR,
    final_total_cost DOUBLE,
    status VARCHAR,
    created_at TIMESTAMP,
    created_by VARCHAR,
    sub_account_id INTEGER
"""

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    account_name VARCHAR NOT NULL,
    state VARCHAR,
    city VARCHAR,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS sub_accounts (
    id INTEGER PRIMARY KEY,
    account_id INTEGER,
    sub_account_name VARCHAR NOT NULL,
    assigned_employee VARCHAR,
    engagement_score DOUBLE,
    last_activity_at TIMESTAMP,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY,
    sub_account_id INTEGER,
    name VARCHAR NOT NULL,
    designation VARCHAR,
    email VARCHAR,
    phone VARCHAR,
    call_status VARCHAR,
    follow_up_date DATE,
    notes VARCHAR,
    created_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY,
    employee_id VARCHAR,
    account_id INTEGER,
    sub_account_id INTEGER,
    activity_type VARCHAR,
    description VARCHAR,
    created_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS leads (
    id INTEGER PRIMARY KEY,
    lead_name VARCHAR,
    contact_person VARCHAR,
    phone VARCHAR,
    email VARCHAR,
    status VARCHAR,
    lead_source VARCHAR,
    assigned_employee VARCHAR,
    created_at TIMESTAMP
);
""" + "".join(
    f"CREATE TABLE IF NOT EXISTS {table} ({_QUOTE_COLUMNS});\n" for table in QUOTATION_TABLES
)


def create_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create every CRM table the engine reads (idempotent)."""
    conn.execute(SCHEMA_DDL)


def seed_demo(conn: duckdb.DuckDBPyConnection, now: datetime | None = None) -> dict[str, int]:
    """Insert a small two-employee demo dataset.

    Args:
        conn: Connection with the schema already created
        now: Reference time for relative dates (default: now)

    Returns:
        Row counts per table
    """
    now = now or datetime.now()
    today = now.date()
    day = timedelta(days=1)

    accounts = [
        (1, "Acme Corp", "Maharashtra", "Pune", True, now - 90 * day),
        (2, "Globex Infra", "Karnataka", "Bengaluru", True, now - 60 * day),
    ]
    sub_accounts = [
        (1, 1, "Acme Pune Plant", "Sales_Shweta", 72.0, now - 2 * day, True, now - 80 * day),
        (2, 1, "Acme Mumbai Office", "Sales_Ravi", 35.0, now - 45 * day, True, now - 70 * day),
        (3, 2, "Globex Highways", "Sales_Shweta", 55.0, None, True, now - 50 * day),
    ]
    contacts = [
        (1, 1, "Ram Kumar", "Purchase Head", "ram@acme.example", "9800000001", "Connected", today - day, None, now - 30 * day),
        (2, 1, "Priya Shah", "Plant Manager", "priya@acme.example", "9800000002", "Callback", today, None, now - 20 * day),
        (3, 2, "Vikram Rao", "Director", "vikram@acme.example", "9800000003", "Connected", today + day, None, now - 10 * day),
        (4, 3, "Meera Iyer", "Project Lead", "meera@globex.example", "9800000004", None, None, None, now - 5 * day),
    ]
    activities = [
        (1, "Sales_Shweta", 1, 1, "call", "Intro call with purchase head", now - 2 * day),
        (2, "Sales_Shweta", 2, 3, "meeting", "Site visit for highway signage", now - 8 * day),
        (3, "Sales_Ravi", 1, 2, "email", "Sent paint brochure", now - 45 * day),
    ]
    leads = [
        (1, "Metro Rail Phase 2", "A. Nair", "9800000010", "nair@metro.example", "New", "Referral", "Sales_Shweta", now - 3 * day),
        (2, "City Flyover", "B. Das", "9800000011", "das@city.example", "Qualified", "Website", "Sales_Ravi", now - 12 * day),
    ]

    conn.executemany("INSERT INTO accounts VALUES (?, ?, ?, ?, ?, ?)", accounts)
    conn.executemany("INSERT INTO sub_accounts VALUES (?, ?, ?, ?, ?, ?, ?, ?)", sub_accounts)
    conn.executemany("INSERT INTO contacts VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", contacts)
    conn.executemany("INSERT INTO activities VALUES (?, ?, ?, ?, ?, ?, ?)", activities)
    conn.executemany("INSERT INTO leads VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)", leads)
    conn.executemany(
        "INSERT INTO quotes_mbcb VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [(1, "W-Beam", "Acme Pune Plant", 125000.0, "sent", now - 4 * day, "Sales_Shweta", 1)],
    )
    conn.executemany(
        "INSERT INTO quotes_signages VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [(1, "Gantry", "Globex Highways", 480000.0, "draft", now - 6 * day, "Sales_Shweta", 3)],
    )
    conn.executemany(
        "INSERT INTO quotes_paint VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [(1, "Road Marking", "Acme Mumbai Office", 64000.0, "won", now - 40 * day, "Sales_Ravi", 2)],
    )

    return {
        "accounts": len(accounts),
        "sub_accounts": len(sub_accounts),
        "contacts": len(contacts),
        "activities": len(activities),
        "leads": len(leads),
        "quotations": 3,
    }
