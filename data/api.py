import os
import sqlite3
from flask import Flask, jsonify, request
from dotenv import load_dotenv

load_dotenv()

app = Flask(__name__)

# Define the database path (the SQLite mirror written by the simulation)
app.config["DATABASE"] = os.getenv("ALLOCARE_DB", "allocare.db")

def get_db_conn():
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(app.config["DATABASE"])
    # Return rows as dictionaries instead of tuples
    conn.row_factory = sqlite3.Row
    return conn

def _query(sql, params=(), one=False):
    """Run a read query and wrap the rows as a JSON response."""
    conn = None
    try:
        conn = get_db_conn()
        cursor = conn.cursor()
        cursor.execute(sql, params)

        if one:
            row = cursor.fetchone()
            if row:
                return jsonify(dict(row))
            # Handle case where the table is empty
            return jsonify({"error": "No data found"}), 404

        return jsonify([dict(row) for row in cursor.fetchall()])

    except sqlite3.Error as e:
        # Handle potential database errors
        app.logger.error(f"Database error: {e}")
        return jsonify({"error": "Database error occurred"}), 500
    finally:
        if conn:
            conn.close()

@app.route("/api/health")
def health():
    return jsonify({"status": "ok", "database": app.config["DATABASE"]})

@app.route("/api/households")
def households():
    """All mirrored household snapshots."""
    return _query("SELECT * FROM households ORDER BY id")

@app.route("/api/transfers")
def transfers():
    """The 50 most recent transfers, newest first."""
    return _query("SELECT * FROM transfers ORDER BY id DESC LIMIT 50")

@app.route("/api/logs")
def logs():
    """The 100 most recent system log entries, newest first."""
    return _query("SELECT * FROM system_logs ORDER BY id DESC LIMIT 100")

@app.route("/api/trends")
def trends():
    """Trend points in ascending cycle order."""
    limit = request.args.get("limit", default=20, type=int)
    if limit <= 0:
        return jsonify({"error": "limit must be positive"}), 400
    return _query("SELECT * FROM trend_points ORDER BY cycle ASC, id ASC LIMIT ?", (limit,))

@app.route("/api/latest_trend")
def latest_trend():
    """Provides the most recent trend point from the database."""
    return _query("SELECT * FROM trend_points ORDER BY cycle DESC, id DESC LIMIT 1", one=True)

if __name__ == "__main__":
    print("Starting Flask server at http://127.0.0.1:5000/api/health")
    app.run(debug=True, port=5000)
