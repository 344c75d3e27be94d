"""SQLite storage of wave compare runs."""

from pathlib import Path
import sqlite3

from models import PersonMapping, RelationKind, WaveCompareResult


def create_database(db_path: Path | str) -> sqlite3.Connection:
    """Create SQLite database with run, mapping, unmatched and issue tables."""
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS run (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_file TEXT,
            destination_file TEXT,
            compared_at TEXT NOT NULL,
            anchor_source_id TEXT NOT NULL,
            anchor_destination_id TEXT NOT NULL,
            cancelled INTEGER NOT NULL DEFAULT 0
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS mapping (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER NOT NULL,
            source_id TEXT NOT NULL,
            destination_id TEXT NOT NULL,
            match_score INTEGER NOT NULL,
            level INTEGER NOT NULL,
            found_via TEXT NOT NULL,
            found_in_family_id TEXT,
            found_from_person_id TEXT,
            found_at TEXT,
            FOREIGN KEY (run_id) REFERENCES run(id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS unmatched (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER NOT NULL,
            side TEXT NOT NULL,
            person_id TEXT NOT NULL,
            summary TEXT,
            reason TEXT NOT NULL,
            nearest_matched_person_id TEXT,
            nearest_matched_level INTEGER,
            FOREIGN KEY (run_id) REFERENCES run(id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS issue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER NOT NULL,
            severity TEXT NOT NULL,
            type TEXT NOT NULL,
            source_id TEXT,
            destination_id TEXT,
            message TEXT,
            FOREIGN KEY (run_id) REFERENCES run(id)
        )
    """)

    conn.commit()
    return conn


def store_result(conn: sqlite3.Connection, result: WaveCompareResult) -> int:
    """Insert a compare result and return its run id."""
    cursor = conn.cursor()

    cursor.execute(
        """
        INSERT INTO run (source_file, destination_file, compared_at, anchor_source_id, anchor_destination_id, cancelled)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            result.source_file,
            result.destination_file,
            result.compared_at.isoformat(),
            result.anchors.source_id,
            result.anchors.destination_id,
            int(result.cancelled),
        ),
    )
    run_id = cursor.lastrowid

    # Insert mappings in discovery order
    cursor.executemany(
        """
        INSERT INTO mapping
        (run_id, source_id, destination_id, match_score, level, found_via, found_in_family_id, found_from_person_id, found_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                run_id,
                m.source_id,
                m.destination_id,
                m.match_score,
                m.level,
                m.found_via.value,
                m.found_in_family_id,
                m.found_from_person_id,
                m.found_at.isoformat(),
            )
            for m in result.mappings
        ],
    )

    unmatched = [("source", u) for u in result.unmatched_source]
    unmatched += [("destination", u) for u in result.unmatched_destination]
    cursor.executemany(
        """
        INSERT INTO unmatched
        (run_id, side, person_id, summary, reason, nearest_matched_person_id, nearest_matched_level)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (run_id, side, u.id, u.summary, u.reason.value, u.nearest_matched_person_id, u.nearest_matched_level)
            for side, u in unmatched
        ],
    )

    cursor.executemany(
        """
        INSERT INTO issue (run_id, severity, type, source_id, destination_id, message)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [
            (run_id, i.severity.value, i.type.value, i.source_id, i.destination_id, i.message)
            for i in result.validation_issues
        ],
    )

    conn.commit()
    return run_id


def load_mappings(conn: sqlite3.Connection, run_id: int | None = None) -> list[PersonMapping]:
    """Read the mappings of a run, the latest run by default."""
    cursor = conn.cursor()
    if run_id is None:
        cursor.execute("SELECT MAX(id) FROM run")
        run_id = cursor.fetchone()[0]
        if run_id is None:
            return []

    cursor.execute(
        """
        SELECT source_id, destination_id, match_score, level, found_via, found_in_family_id, found_from_person_id, found_at
        FROM mapping WHERE run_id = ? ORDER BY id
        """,
        (run_id,),
    )
    return [
        PersonMapping.from_dict(
            {
                "source_id": row[0],
                "destination_id": row[1],
                "match_score": row[2],
                "level": row[3],
                "found_via": RelationKind(row[4]).value,
                "found_in_family_id": row[5],
                "found_from_person_id": row[6],
                "found_at": row[7],
            }
        )
        for row in cursor.fetchall()
    ]
