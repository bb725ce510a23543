"""
sheets_store.py — Google Sheets persistence for the studio
Circuit sessions, members, the exercise library and workout logs,
each kept in its own worksheet of one spreadsheet.
"""

import json
from datetime import date, datetime
from typing import Any, Optional

import gspread
import pandas as pd
from google.oauth2.service_account import Credentials
from gspread.exceptions import GSpreadException, WorksheetNotFound
from loguru import logger

from circuit_logic import (
    Member, SessionRecord, slots_from_json, waitlist_from_json, session_key,
)
from workout_logic import Exercise, GeneratedWorkout, exercise_from_file

# ─────────────────────────────────────────────
# Connection
# ─────────────────────────────────────────────

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

DEFAULT_SPREADSHEET = "Core Circuit Studio"

SESSIONS_TAB = "circuit_sessions"
MEMBERS_TAB = "members"
EXERCISES_TAB = "exercise_library"
LOGS_TAB = "workout_logs"

WORKSHEETS = {
    SESSIONS_TAB: ["Date", "Time", "End_Time", "Max_Capacity", "Slots_JSON",
                   "Waitlist_JSON", "Created_At"],
    MEMBERS_TAB: ["Id", "Name", "Client_Type", "Status", "Circuit_Strikes",
                  "Circuit_Ban_Until"],
    EXERCISES_TAB: ["Name", "Video_URL"],
    LOGS_TAB: ["Completed_At", "Member_Id", "Level", "Duration", "Exercise_Count",
               "Rounds", "Exercises_JSON"],
}


class FetchError(RuntimeError):
    """The spreadsheet could not be read or written."""


class ConfigError(FetchError):
    """Credentials or spreadsheet location are missing from secrets."""


def credentials_from_secrets(secrets) -> dict:
    """
    Pull the service account info out of Streamlit secrets.

    Supports TWO formats:
    1. Simple: gcp_service_account_json = '{...entire JSON key...}'
    2. Traditional: [gcp_service_account] section with individual fields
    """
    if "gcp_service_account_json" in secrets:
        try:
            return json.loads(secrets["gcp_service_account_json"])
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in gcp_service_account_json: {e}") from e
    if "gcp_service_account" in secrets:
        return dict(secrets["gcp_service_account"])
    raise ConfigError(
        "No Google credentials found in secrets. "
        "Add gcp_service_account_json or [gcp_service_account]."
    )


def open_spreadsheet(secrets):
    """Authorize with the service account and open the studio spreadsheet."""
    creds_dict = credentials_from_secrets(secrets)
    try:
        creds = Credentials.from_service_account_info(creds_dict, scopes=SCOPES)
        client = gspread.authorize(creds)
        sheet_url = secrets.get("sheet_url", "")
        sheet_id = secrets.get("sheet_id", "")
        if sheet_url:
            return client.open_by_url(sheet_url)
        if sheet_id:
            return client.open_by_key(sheet_id)
        return client.open(secrets.get("sheet_name", DEFAULT_SPREADSHEET))
    except (GSpreadException, OSError, ValueError) as e:
        logger.exception(f"[STORE] Could not open spreadsheet: {e!r}")
        raise FetchError(f"Could not open spreadsheet: {e}") from e


# ─────────────────────────────────────────────
# Cell helpers
# ─────────────────────────────────────────────

def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _datetime(value: Any) -> Optional[datetime]:
    raw = _text(value)
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        logger.warning(f"[STORE] Unparseable timestamp {raw!r}")
        return None
    if parsed.tzinfo is not None:
        # Everything else in the app is naive local time
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def session_from_row(row: dict) -> SessionRecord:
    return SessionRecord(
        date=date.fromisoformat(_text(row["Date"])),
        slots=slots_from_json(_text(row.get("Slots_JSON"))),
        waitlist=waitlist_from_json(_text(row.get("Waitlist_JSON"))),
        time=_text(row.get("Time")) or "09:00",
        end_time=_text(row.get("End_Time")) or "09:45",
        max_capacity=_int(row.get("Max_Capacity"), 8),
        created_at=_text(row.get("Created_At")) or None,
    )


def session_to_row(session: SessionRecord) -> list:
    return [
        session.key, session.time, session.end_time, session.max_capacity,
        session.slots_json(), session.waitlist_json(), session.created_at or "",
    ]


def member_from_row(row: dict) -> Member:
    return Member(
        id=_text(row["Id"]),
        name=_text(row.get("Name")),
        client_type=_text(row.get("Client_Type")) or "block",
        status=_text(row.get("Status")) or "active",
        circuit_strikes=_int(row.get("Circuit_Strikes")),
        circuit_ban_until=_datetime(row.get("Circuit_Ban_Until")),
    )


def member_to_row(member: Member) -> list:
    ban = member.circuit_ban_until.isoformat(timespec="seconds") if member.circuit_ban_until else ""
    return [member.id, member.name, member.client_type, member.status,
            member.circuit_strikes, ban]


# ─────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────

class StudioStore:
    """Typed reads and writes over the studio spreadsheet."""

    def __init__(self, spreadsheet):
        self.spreadsheet = spreadsheet
        self._ready = False

    def ensure_worksheets(self):
        """Make sure every required tab exists with headers."""
        if self._ready:
            return
        existing = [ws.title for ws in self.spreadsheet.worksheets()]
        for title, headers in WORKSHEETS.items():
            if title not in existing:
                ws = self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers))
                ws.append_row(headers)
                logger.info(f"[STORE] Created worksheet {title}")
        self._ready = True

    def _worksheet(self, title: str):
        try:
            self.ensure_worksheets()
            return self.spreadsheet.worksheet(title)
        except WorksheetNotFound as e:
            raise FetchError(f"Worksheet {title} is missing") from e
        except (GSpreadException, OSError) as e:
            logger.exception(f"[STORE] Could not open {title}: {e!r}")
            raise FetchError(f"Could not open {title}: {e}") from e

    def _records(self, title: str) -> list[dict]:
        ws = self._worksheet(title)
        try:
            return ws.get_all_records()
        except (GSpreadException, OSError) as e:
            logger.exception(f"[STORE] Could not read {title}: {e!r}")
            raise FetchError(f"Could not read {title}: {e}") from e

    def _upsert(self, title: str, key_column: str, key: str, values: list):
        ws = self._worksheet(title)
        try:
            records = ws.get_all_records()
            for i, row in enumerate(records):
                if _text(row.get(key_column)) == key:
                    # +2: one for the header row, one for 1-based rows
                    ws.update(range_name=f"A{i + 2}", values=[values])
                    return
            ws.append_row(values)
        except (GSpreadException, OSError) as e:
            logger.exception(f"[STORE] Could not write {title}/{key}: {e!r}")
            raise FetchError(f"Could not save to {title}: {e}") from e

    # -- circuit sessions ----------------------------------------------

    def list_sessions(self) -> list[SessionRecord]:
        sessions = []
        for row in self._records(SESSIONS_TAB):
            if not _text(row.get("Date")):
                continue
            try:
                sessions.append(session_from_row(row))
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"[STORE] Skipping bad session row {row.get('Date')!r}: {e}")
        return sorted(sessions, key=lambda s: s.date, reverse=True)

    def get_session(self, session_date: date) -> Optional[SessionRecord]:
        key = session_key(session_date)
        for session in self.list_sessions():
            if session.key == key:
                return session
        return None

    def save_session(self, session: SessionRecord):
        self._upsert(SESSIONS_TAB, "Date", session.key, session_to_row(session))

    # -- members ---------------------------------------------------------

    def list_members(self) -> list[Member]:
        return [member_from_row(r) for r in self._records(MEMBERS_TAB) if _text(r.get("Id"))]

    def get_member(self, member_id: str) -> Optional[Member]:
        return next((m for m in self.list_members() if m.id == member_id), None)

    def active_vips(self) -> list[Member]:
        return [
            m for m in self.list_members()
            if m.client_type == "circuit_vip" and m.status == "active"
        ]

    def save_member(self, member: Member):
        self._upsert(MEMBERS_TAB, "Id", member.id, member_to_row(member))

    # -- exercise library ----------------------------------------------

    def list_exercises(self) -> list[Exercise]:
        exercises = []
        for row in self._records(EXERCISES_TAB):
            url = _text(row.get("Video_URL"))
            name = _text(row.get("Name"))
            if name:
                exercises.append(Exercise(name=name, video_url=url))
            elif url:
                exercises.append(exercise_from_file(url.split("?", 1)[0], url))
        return exercises

    # -- workout logs ----------------------------------------------------

    def append_workout_log(self, member_id: str, workout: GeneratedWorkout,
                           completed_at: datetime):
        ws = self._worksheet(LOGS_TAB)
        try:
            ws.append_row([
                completed_at.isoformat(timespec="seconds"),
                member_id,
                workout.level.key,
                workout.duration_minutes,
                len(workout.exercises),
                workout.rounds,
                json.dumps(workout.exercise_names()),
            ])
        except (GSpreadException, OSError) as e:
            logger.exception(f"[STORE] Could not save workout log: {e!r}")
            raise FetchError(f"Could not save workout log: {e}") from e

    def load_workout_logs(self, member_id: str) -> pd.DataFrame:
        """Workout log rows for one member, newest first."""
        df = pd.DataFrame(self._records(LOGS_TAB))
        if df.empty:
            return df
        df = df[df["Member_Id"].astype(str) == member_id].copy()
        df["Completed_At"] = pd.to_datetime(df["Completed_At"], errors="coerce")
        return df.dropna(subset=["Completed_At"]).sort_values("Completed_At", ascending=False)
