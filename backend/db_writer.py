#The mirror worker calls these functions after each in-memory operation to keep a best-effort copy of the simulation.

import sqlite3
from typing import Dict, Iterable, Optional


#Function init_db: sets up the database and tables
def init_db(db_path):

    conn = sqlite3.connect(db_path)  #connect to the mirror database
    try:
        c = conn.cursor() # create cursor object let us run SQL commands
        c.executescript("""
            CREATE TABLE IF NOT EXISTS households (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                sector TEXT,
                credits REAL DEFAULT 100,
                labor_hours REAL DEFAULT 0,
                poverty_index REAL DEFAULT 0.5,
                credit_deficit_ratio REAL DEFAULT 0,
                centrality_score REAL DEFAULT 0.5,
                shock_exposure_risk REAL DEFAULT 0.3,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                title TEXT,
                reward REAL,
                category TEXT,
                status TEXT DEFAULT 'open',
                allocated TEXT
            );
            CREATE TABLE IF NOT EXISTS bids (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id TEXT NOT NULL,
                household_id TEXT NOT NULL,
                amount REAL,
                allocation_score REAL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                from_id TEXT NOT NULL,
                to_id TEXT NOT NULL,
                amount REAL,
                ai_suggested INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS system_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                message TEXT,
                household_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS trend_points (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cycle INTEGER,
                poverty_rate REAL,
                extreme_poverty_count INTEGER,
                resilience_score REAL,
                avg_poverty_index REAL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """)
        conn.commit()
    finally:
        conn.close()


def _ensure_household(c, household_id, name=None):
    # Stub row so later updates have something to land on
    c.execute("""
        INSERT OR IGNORE INTO households (id, name, credits)
        VALUES (?, ?, 100)
    """, (household_id, name or household_id))


def upsert_households(db_path, households: Iterable[Dict]):
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        c.executemany("""
            INSERT INTO households (id, name, sector, credits, labor_hours, poverty_index,
                                    credit_deficit_ratio, centrality_score, shock_exposure_risk)
            VALUES (:household_id, :name, :sector, :credits, :labor_hours, :poverty_index,
                    :credit_deficit_ratio, :centrality_score, :shock_exposure_risk)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                sector = excluded.sector,
                credits = excluded.credits,
                labor_hours = excluded.labor_hours,
                poverty_index = excluded.poverty_index,
                credit_deficit_ratio = excluded.credit_deficit_ratio,
                centrality_score = excluded.centrality_score,
                shock_exposure_risk = excluded.shock_exposure_risk,
                updated_at = CURRENT_TIMESTAMP
        """, list(households))
        conn.commit()
    finally:
        conn.close()


def log_bid(db_path, task_id, household_id, amount, allocation_score, task_meta: Dict, equity_override):
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        c.execute("""
            INSERT OR IGNORE INTO tasks (id, title, reward, category, status)
            VALUES (?, ?, ?, ?, 'open')
        """, (
            task_id,
            task_meta.get("title") or "Unknown Task",
            task_meta.get("base_credit_requirement") or 0,
            task_meta.get("category") or "General",
        ))
        _ensure_household(c, household_id, task_meta.get("household_name"))
        c.execute("""
            INSERT INTO bids (task_id, household_id, amount, allocation_score)
            VALUES (?, ?, ?, ?)
        """, (task_id, household_id, amount, allocation_score or 0))
        if equity_override:
            c.execute("UPDATE tasks SET status = 'allocated', allocated = ? WHERE id = ?", (household_id, task_id))
        conn.commit()
    finally:
        conn.close()


def log_transfer(db_path, from_id, to_id, amount, ai_suggested, from_name=None, to_name=None):
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        _ensure_household(c, from_id, from_name)
        _ensure_household(c, to_id, to_name)
        c.execute("""
            INSERT INTO transfers (from_id, to_id, amount, ai_suggested)
            VALUES (?, ?, ?, ?)
        """, (from_id, to_id, amount, int(bool(ai_suggested))))
        c.execute("UPDATE households SET credits = credits - ? WHERE id = ?", (amount, from_id))
        c.execute("UPDATE households SET credits = credits + ? WHERE id = ?", (amount, to_id))
        conn.commit()
    finally:
        conn.close()


def log_system_event(db_path, log_type, message, household_id: Optional[str] = None):
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        c.execute("""
            INSERT INTO system_logs (type, message, household_id)
            VALUES (?, ?, ?)
        """, (log_type, message, household_id))
        conn.commit()
    finally:
        conn.close()


def log_trend_point(db_path, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index):
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        c.execute("""
            INSERT INTO trend_points (cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index)
            VALUES (?, ?, ?, ?, ?)
        """, (cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index))
        conn.commit()
    finally:
        conn.close()


def update_household_fields(db_path, household_id, **fields):
    """Overwrite selected snapshot columns of one household."""
    if not fields:
        return
    allowed = {"credits", "labor_hours", "poverty_index", "credit_deficit_ratio", "shock_exposure_risk"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"cannot update household columns {sorted(unknown)}")
    assignments = ", ".join(f"{name} = ?" for name in fields)
    conn = sqlite3.connect(db_path)
    try:
        c = conn.cursor()
        _ensure_household(c, household_id)
        c.execute(
            f"UPDATE households SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (*fields.values(), household_id),
        )
        conn.commit()
    finally:
        conn.close()
