"""
circuit_logic.py — The Saturday Circuit Brain
Cadence resolution, attendance & streak stats, strike/ban policy,
and the slot/waitlist booking rules for the weekly circuit class.
"""

import json
from dataclasses import dataclass, field, asdict, replace
from datetime import date, datetime, time, timedelta
from typing import Optional

import pandas as pd
from loguru import logger

# ─────────────────────────────────────────────
# Class Policy
# ─────────────────────────────────────────────

ANCHOR_WEEKDAY = 5                  # Saturday (Monday == 0)
CLASS_START = time(9, 0)
CLASS_END = time(9, 45)
CADENCE = timedelta(days=7)
MAX_CAPACITY = 8

STRIKE_LIMIT = 3
BAN_MONTHS = 1
BOOKING_CUTOFF_DAYS = 3             # bookings close Wednesday night
CANCEL_NOTICE = timedelta(hours=24)

AVAILABLE = "available"
BOOKED = "booked"
CONFIRMED = "confirmed"
ATTENDED = "attended"
NO_SHOW = "no-show"
CANCELLED = "cancelled"

SLOT_STATUSES = (AVAILABLE, BOOKED, CONFIRMED, ATTENDED, NO_SHOW, CANCELLED)
PRESENT_STATUSES = {CONFIRMED, ATTENDED}
OPEN_STATUSES = {AVAILABLE, CANCELLED}

MEMBER_TYPES = {
    "circuit_vip": "VIP",
    "circuit_dropin": "Drop-in",
    "block": "Block",
}


class BookingError(Exception):
    """A booking or admin action was refused; the message is user-facing."""


# ─────────────────────────────────────────────
# Data Models
# ─────────────────────────────────────────────

@dataclass
class Slot:
    slot_number: int
    member_id: Optional[str] = None
    member_name: Optional[str] = None
    member_type: Optional[str] = None
    status: str = AVAILABLE
    booked_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self):
        return asdict(self)


@dataclass
class WaitlistEntry:
    member_id: str
    member_name: str
    member_type: str = "block"
    added_at: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class SessionRecord:
    date: date
    slots: list[Slot] = field(default_factory=list)
    waitlist: list[WaitlistEntry] = field(default_factory=list)
    time: str = CLASS_START.strftime("%H:%M")
    end_time: str = CLASS_END.strftime("%H:%M")
    max_capacity: int = MAX_CAPACITY
    created_at: Optional[str] = None

    @property
    def key(self) -> str:
        return session_key(self.date)

    @property
    def available_count(self) -> int:
        return sum(1 for s in self.slots if s.is_open)

    @property
    def booked_count(self) -> int:
        return len(self.slots) - self.available_count

    @property
    def is_full(self) -> bool:
        return self.available_count == 0

    def slots_json(self) -> str:
        return json.dumps([s.to_dict() for s in self.slots])

    def waitlist_json(self) -> str:
        return json.dumps([w.to_dict() for w in self.waitlist])


@dataclass
class Member:
    id: str
    name: str
    client_type: str = "block"
    status: str = "active"
    circuit_strikes: int = 0
    circuit_ban_until: Optional[datetime] = None

    @property
    def type_label(self) -> str:
        return MEMBER_TYPES.get(self.client_type, "Block")


@dataclass
class AttendanceSummary:
    attended_count: int
    streak: int
    strikes: int
    ban_until: Optional[datetime] = None

    def is_banned(self, now: datetime) -> bool:
        return self.ban_until is not None and self.ban_until > now


def slots_from_json(raw: str) -> list[Slot]:
    if not raw:
        return []
    return [Slot(**item) for item in json.loads(raw)]


def waitlist_from_json(raw: str) -> list[WaitlistEntry]:
    if not raw:
        return []
    return [WaitlistEntry(**item) for item in json.loads(raw)]


# ─────────────────────────────────────────────
# Cadence
# ─────────────────────────────────────────────

def session_key(d: date) -> str:
    return d.isoformat()


def class_start(d: date) -> datetime:
    return datetime.combine(d, CLASS_START)


def next_cadence_point(now: datetime) -> datetime:
    """
    Start time of the next Saturday class. On a Saturday this is today's
    class until it has ended, then it rolls to next week.
    """
    days_until = (ANCHOR_WEEKDAY - now.weekday()) % 7
    if days_until == 0 and now > datetime.combine(now.date(), CLASS_END):
        days_until = 7
    return class_start(now.date() + timedelta(days=days_until))


def last_elapsed_cadence_point(now: datetime) -> datetime:
    """Start time of the most recent Saturday class that has already ended."""
    return next_cadence_point(now) - CADENCE


def time_until(target: datetime, now: datetime) -> dict[str, int]:
    """Days/hours/minutes/seconds left until `target`, never negative."""
    remaining = max(0, int((target - now).total_seconds()))
    days, rem = divmod(remaining, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    return {"days": days, "hours": hours, "minutes": minutes, "seconds": seconds}


def booking_deadline(class_date: date) -> datetime:
    cutoff = class_date - timedelta(days=BOOKING_CUTOFF_DAYS)
    return datetime.combine(cutoff, time.max)


def cancel_deadline(class_date: date) -> datetime:
    return class_start(class_date) - CANCEL_NOTICE


# ─────────────────────────────────────────────
# Attendance & Streak
# ─────────────────────────────────────────────

def find_my_slot(session: Optional[SessionRecord], member_id: str) -> Optional[Slot]:
    """First slot held by `member_id`, or None (also when there is no session)."""
    if session is None:
        return None
    for slot in session.slots:
        if slot.member_id == member_id:
            return slot
    return None


def attended_dates(sessions: list[SessionRecord], member_id: str, before: date) -> list[date]:
    """Dates earlier than `before` the member showed up on, most recent first."""
    dates = []
    for session in sessions:
        if session.date >= before:
            continue
        slot = find_my_slot(session, member_id)
        if slot is not None and slot.status in PRESENT_STATUSES:
            dates.append(session.date)
    return sorted(dates, reverse=True)


def attendance_count(sessions: list[SessionRecord], member_id: str, today: date) -> int:
    return len(attended_dates(sessions, member_id, today))


def compute_streak(dates: list[date], now: datetime) -> int:
    """Consecutive Saturdays attended, walking back from the last finished class."""
    present = set(dates)
    check = last_elapsed_cadence_point(now).date()
    streak = 0
    while check in present:
        streak += 1
        check -= CADENCE
    return streak


def attendance_summary(sessions: list[SessionRecord], member: Member,
                       now: datetime) -> AttendanceSummary:
    # A class counts towards the streak as soon as it ends, but only joins
    # the attended total from the following day.
    finished = last_elapsed_cadence_point(now).date() + timedelta(days=1)
    return AttendanceSummary(
        attended_count=attendance_count(sessions, member.id, now.date()),
        streak=compute_streak(attended_dates(sessions, member.id, finished), now),
        strikes=member.circuit_strikes,
        ban_until=member.circuit_ban_until,
    )


def is_banned(member: Member, now: datetime) -> bool:
    return member.circuit_ban_until is not None and member.circuit_ban_until > now


# ─────────────────────────────────────────────
# Sessions & Booking
# ─────────────────────────────────────────────

def _stamp(now: datetime) -> str:
    return now.isoformat(timespec="seconds")


def _fill(slot_number: int, member_id: str, member_name: str,
          member_type: str, now: datetime) -> Slot:
    return Slot(
        slot_number=slot_number,
        member_id=member_id,
        member_name=member_name,
        member_type=member_type or "block",
        status=CONFIRMED,
        booked_at=_stamp(now),
    )


def _empty(slot_number: int) -> Slot:
    return Slot(slot_number=slot_number)


def has_active_slot(session: SessionRecord, member_id: str) -> bool:
    return any(s.member_id == member_id and not s.is_open for s in session.slots)


def new_session(class_date: date, vips: list[Member], now: datetime,
                capacity: int = MAX_CAPACITY) -> SessionRecord:
    """Create a session with active VIPs pre-slotted and the rest left open."""
    slots = []
    for i in range(capacity):
        if i < len(vips):
            vip = vips[i]
            slots.append(_fill(i + 1, vip.id, vip.name, "circuit_vip", now))
        else:
            slots.append(_empty(i + 1))
    logger.info(f"[CIRCUIT] New session {class_date} with {min(len(vips), capacity)} VIPs")
    return SessionRecord(
        date=class_date,
        slots=slots,
        max_capacity=capacity,
        created_at=_stamp(now),
    )


def slot_missing_vips(session: SessionRecord, vips: list[Member],
                      now: datetime) -> tuple[SessionRecord, bool]:
    """Give open slots to VIPs who joined after the session was created."""
    slotted = {s.member_id for s in session.slots if s.member_id}
    slots = list(session.slots)
    changed = False
    for vip in vips:
        if vip.id in slotted:
            continue
        idx = next((i for i, s in enumerate(slots) if s.is_open), None)
        if idx is None:
            break
        slots[idx] = _fill(slots[idx].slot_number, vip.id, vip.name, "circuit_vip", now)
        changed = True
    return replace(session, slots=slots), changed


def _without_waitlist(session: SessionRecord, member_id: str) -> list[WaitlistEntry]:
    return [w for w in session.waitlist if w.member_id != member_id]


def _place(session: SessionRecord, slot_number: int, member: Member,
           now: datetime) -> SessionRecord:
    if has_active_slot(session, member.id):
        raise BookingError(f"{member.name} already has a slot")
    idx = next(
        (i for i, s in enumerate(session.slots)
         if s.slot_number == slot_number and s.is_open),
        None,
    )
    if idx is None:
        raise BookingError("Slot is no longer available")
    slots = list(session.slots)
    slots[idx] = _fill(slot_number, member.id, member.name, member.client_type, now)
    return replace(session, slots=slots, waitlist=_without_waitlist(session, member.id))


def book_slot(session: SessionRecord, member: Member, slot_number: int,
              now: datetime) -> SessionRecord:
    """A member books an open slot for themselves."""
    if is_banned(member, now):
        raise BookingError("You are currently suspended from booking")
    if now > booking_deadline(session.date):
        raise BookingError("Booking deadline has passed (Wednesday)")
    updated = _place(session, slot_number, member, now)
    logger.info(f"[CIRCUIT] {member.id} booked slot {slot_number} on {session.key}")
    return updated


def _vacate(session: SessionRecord, idx: int, now: datetime) -> SessionRecord:
    slot_number = session.slots[idx].slot_number
    slots = list(session.slots)
    waitlist = list(session.waitlist)
    if waitlist:
        nxt = waitlist.pop(0)
        slots[idx] = _fill(slot_number, nxt.member_id, nxt.member_name, nxt.member_type, now)
        logger.info(f"[CIRCUIT] Slot {slot_number} on {session.key} promoted {nxt.member_id}")
    else:
        slots[idx] = _empty(slot_number)
    return replace(session, slots=slots, waitlist=waitlist)


def release_slot(session: SessionRecord, member_id: str, now: datetime) -> SessionRecord:
    """A member gives up their slot; the head of the waitlist takes it."""
    if now > cancel_deadline(session.date):
        raise BookingError("Cancellation deadline passed (24hrs before class)")
    idx = next((i for i, s in enumerate(session.slots) if s.member_id == member_id), None)
    if idx is None:
        return session
    return _vacate(session, idx, now)


def join_waitlist(session: SessionRecord, member: Member, now: datetime) -> SessionRecord:
    if any(w.member_id == member.id for w in session.waitlist):
        raise BookingError("Already on the waitlist")
    if has_active_slot(session, member.id):
        raise BookingError("You already have a slot")
    entry = WaitlistEntry(
        member_id=member.id,
        member_name=member.name,
        member_type=member.client_type,
        added_at=_stamp(now),
    )
    return replace(session, waitlist=[*session.waitlist, entry])


def leave_waitlist(session: SessionRecord, member_id: str) -> SessionRecord:
    return replace(session, waitlist=_without_waitlist(session, member_id))


# ─────────────────────────────────────────────
# Admin Actions
# ─────────────────────────────────────────────

def add_to_slot(session: SessionRecord, slot_number: int, member: Member,
                now: datetime) -> SessionRecord:
    """Admin places a member into an open slot, bypassing deadlines and bans."""
    return _place(session, slot_number, member, now)


def remove_from_slot(session: SessionRecord, slot_number: int,
                     now: datetime) -> SessionRecord:
    idx = next((i for i, s in enumerate(session.slots) if s.slot_number == slot_number), None)
    if idx is None:
        raise BookingError(f"No slot {slot_number} in this session")
    return _vacate(session, idx, now)


def mark_attendance(session: SessionRecord, slot_number: int,
                    attended: bool) -> SessionRecord:
    idx = next((i for i, s in enumerate(session.slots) if s.slot_number == slot_number), None)
    if idx is None or session.slots[idx].member_id is None:
        raise BookingError(f"Slot {slot_number} has no member to mark")
    if session.slots[idx].status in (ATTENDED, NO_SHOW):
        raise BookingError(f"Slot {slot_number} is already marked as {session.slots[idx].status}")
    slots = list(session.slots)
    slots[idx] = replace(slots[idx], status=ATTENDED if attended else NO_SHOW)
    return replace(session, slots=slots)


def record_no_show(member: Member, now: datetime) -> Member:
    """Add a strike; the third strike becomes a one-month booking ban."""
    strikes = member.circuit_strikes + 1
    if strikes >= STRIKE_LIMIT:
        ban_until = (pd.Timestamp(now) + pd.DateOffset(months=BAN_MONTHS)).to_pydatetime()
        logger.warning(f"[CIRCUIT] {member.id} banned until {ban_until:%Y-%m-%d} ({strikes} strikes)")
        return replace(member, circuit_strikes=0, circuit_ban_until=ban_until)
    logger.info(f"[CIRCUIT] No-show for {member.id} ({strikes}/{STRIKE_LIMIT} strikes)")
    return replace(member, circuit_strikes=strikes)


def reset_strikes(member: Member) -> Member:
    """Clear strikes and lift any ban."""
    return replace(member, circuit_strikes=0, circuit_ban_until=None)
