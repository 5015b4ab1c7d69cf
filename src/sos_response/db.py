from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from sos_response.config import DB_PATH
from sos_response.models import EmergencyDescriptor, JourneyTracking, utcnow
from sos_response.stores import EmergencyStore, TrackingStore

PathLike = Union[str, Path]


def init_db(db_path: PathLike = DB_PATH) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS emergencies (
                emergency_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                trigger_time TEXT NOT NULL,
                document TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_emergencies_user ON emergencies(user_id, trigger_time)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS route_trackings (
                tracking_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                start_time TEXT NOT NULL,
                document TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trackings_user ON route_trackings(user_id, status)")


@contextmanager
def get_conn(db_path: PathLike = DB_PATH) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def now_iso() -> str:
    return utcnow().isoformat()


class SQLiteEmergencyStore(EmergencyStore):
    """Each emergency is one JSON document; save replaces it whole."""

    def __init__(self, db_path: PathLike = DB_PATH) -> None:
        self.db_path = db_path
        init_db(db_path)

    def create(self, emergency: EmergencyDescriptor) -> None:
        with get_conn(self.db_path) as conn:
            conn.execute(
                "INSERT INTO emergencies (emergency_id,user_id,status,trigger_time,document,updated_at) VALUES (?,?,?,?,?,?)",
                self._row(emergency),
            )

    def save(self, emergency: EmergencyDescriptor) -> None:
        with get_conn(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO emergencies (emergency_id,user_id,status,trigger_time,document,updated_at) VALUES (?,?,?,?,?,?)",
                self._row(emergency),
            )

    def find_by_id(self, emergency_id: str) -> Optional[EmergencyDescriptor]:
        with get_conn(self.db_path) as conn:
            row = conn.execute("SELECT document FROM emergencies WHERE emergency_id=?", (emergency_id,)).fetchone()
        return EmergencyDescriptor.from_dict(json.loads(row["document"])) if row else None

    def list_for_subject(self, subject_id: str, limit: int = 50) -> List[EmergencyDescriptor]:
        with get_conn(self.db_path) as conn:
            rows = conn.execute(
                "SELECT document FROM emergencies WHERE user_id=? ORDER BY trigger_time DESC LIMIT ?",
                (subject_id, limit),
            ).fetchall()
        return [EmergencyDescriptor.from_dict(json.loads(r["document"])) for r in rows]

    @staticmethod
    def _row(emergency: EmergencyDescriptor) -> tuple:
        return (
            emergency.emergency_id,
            emergency.subject_id,
            emergency.status.value,
            emergency.trigger_time.isoformat(),
            json.dumps(emergency.to_dict()),
            now_iso(),
        )


class SQLiteTrackingStore(TrackingStore):
    def __init__(self, db_path: PathLike = DB_PATH) -> None:
        self.db_path = db_path
        init_db(db_path)

    def save(self, tracking: JourneyTracking) -> None:
        with get_conn(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO route_trackings (tracking_id,user_id,status,start_time,document,updated_at) VALUES (?,?,?,?,?,?)",
                (
                    tracking.tracking_id,
                    tracking.subject_id,
                    tracking.status.value,
                    tracking.start_time.isoformat(),
                    json.dumps(tracking.to_dict()),
                    now_iso(),
                ),
            )

    def find_by_id(self, tracking_id: str) -> Optional[JourneyTracking]:
        with get_conn(self.db_path) as conn:
            row = conn.execute("SELECT document FROM route_trackings WHERE tracking_id=?", (tracking_id,)).fetchone()
        return JourneyTracking.from_dict(json.loads(row["document"])) if row else None

    def find_active(self, subject_id: str) -> Optional[JourneyTracking]:
        with get_conn(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM route_trackings WHERE user_id=? AND status != 'completed' ORDER BY start_time DESC LIMIT 1",
                (subject_id,),
            ).fetchone()
        return JourneyTracking.from_dict(json.loads(row["document"])) if row else None
