"""Tests for cadence resolution, attendance stats and the booking rules.

Fixed calendar: Saturday 2026-10-24 is the upcoming class and
Saturday 2026-10-17 the last one, seen from Monday 2026-10-19.
"""

from datetime import date, datetime, timedelta

import pytest

from circuit_logic import (
    BookingError,
    Member,
    SessionRecord,
    Slot,
    WaitlistEntry,
    attendance_count,
    attendance_summary,
    book_slot,
    add_to_slot,
    booking_deadline,
    cancel_deadline,
    compute_streak,
    find_my_slot,
    is_banned,
    join_waitlist,
    last_elapsed_cadence_point,
    leave_waitlist,
    mark_attendance,
    new_session,
    next_cadence_point,
    record_no_show,
    release_slot,
    remove_from_slot,
    reset_strikes,
    slot_missing_vips,
    time_until,
)
from helpers import LAST_SATURDAY, MONDAY_MORNING, SATURDAY, attended_session


# ─────────────────────────────────────────────
# Cadence
# ─────────────────────────────────────────────

def test_next_cadence_point_midweek_is_coming_saturday():
    """From Monday, the next class is that week's Saturday at 9am."""
    assert next_cadence_point(MONDAY_MORNING) == datetime(2026, 10, 24, 9, 0)


def test_next_cadence_point_on_saturday_before_cutoff_is_today():
    """A Saturday before the class has ended still points at today's class."""
    assert next_cadence_point(datetime(2026, 10, 24, 7, 30)) == datetime(2026, 10, 24, 9, 0)
    assert next_cadence_point(datetime(2026, 10, 24, 9, 20)) == datetime(2026, 10, 24, 9, 0)
    assert next_cadence_point(datetime(2026, 10, 24, 9, 45)) == datetime(2026, 10, 24, 9, 0)


def test_next_cadence_point_just_after_cutoff_rolls_a_week():
    """One second past 9:45 on a Saturday rolls to the following Saturday."""
    result = next_cadence_point(datetime(2026, 10, 24, 9, 45, 1))
    assert result.date() == SATURDAY + timedelta(days=7)


def test_next_cadence_point_on_sunday():
    assert next_cadence_point(datetime(2026, 10, 25, 12, 0)).date() == date(2026, 10, 31)


def test_last_elapsed_cadence_point():
    """The last finished class is a week before the next one."""
    assert last_elapsed_cadence_point(MONDAY_MORNING).date() == LAST_SATURDAY
    assert last_elapsed_cadence_point(datetime(2026, 10, 24, 8, 0)).date() == LAST_SATURDAY
    assert last_elapsed_cadence_point(datetime(2026, 10, 24, 10, 0)).date() == SATURDAY


def test_time_until_splits_and_clamps():
    target = datetime(2026, 10, 24, 9, 0)
    left = time_until(target, datetime(2026, 10, 22, 7, 58, 30))
    assert left == {"days": 2, "hours": 1, "minutes": 1, "seconds": 30}
    assert time_until(target, target + timedelta(minutes=5)) == {
        "days": 0, "hours": 0, "minutes": 0, "seconds": 0,
    }


def test_deadlines():
    """Booking closes Wednesday night; cancelling closes 24h before class."""
    assert booking_deadline(SATURDAY) == datetime(2026, 10, 21, 23, 59, 59, 999999)
    assert cancel_deadline(SATURDAY) == datetime(2026, 10, 23, 9, 0)


# ─────────────────────────────────────────────
# Attendance & Streak
# ─────────────────────────────────────────────

def test_find_my_slot():
    session = SessionRecord(date=SATURDAY, slots=[Slot(slot_number=1, member_id="A", status="confirmed")])
    assert find_my_slot(session, "B") is None
    slot = find_my_slot(session, "A")
    assert slot is not None
    assert slot.slot_number == 1


def test_find_my_slot_without_session_is_not_booked():
    assert find_my_slot(None, "A") is None


def test_streak_counts_consecutive_saturdays_until_gap():
    """Attended D, D-7, D-14 with a gap at D-21 gives a streak of 3."""
    d = LAST_SATURDAY
    dates = [d, d - timedelta(days=7), d - timedelta(days=14), d - timedelta(days=28)]
    assert compute_streak(dates, MONDAY_MORNING) == 3


def test_streak_is_zero_without_attendance():
    assert compute_streak([], MONDAY_MORNING) == 0


def test_streak_breaks_when_last_saturday_missed():
    d = LAST_SATURDAY
    dates = [d - timedelta(days=7), d - timedelta(days=14)]
    assert compute_streak(dates, MONDAY_MORNING) == 0


def test_attendance_count_only_confirmed_or_attended_past_sessions(member):
    sessions = [
        attended_session(LAST_SATURDAY, member.id, "attended"),
        attended_session(LAST_SATURDAY - timedelta(days=7), member.id, "confirmed"),
        attended_session(LAST_SATURDAY - timedelta(days=14), member.id, "booked"),
        attended_session(LAST_SATURDAY - timedelta(days=21), member.id, "no-show"),
        attended_session(LAST_SATURDAY - timedelta(days=28), "someone-else", "attended"),
        attended_session(SATURDAY, member.id, "confirmed"),
    ]
    assert attendance_count(sessions, member.id, MONDAY_MORNING.date()) == 2


def test_attendance_summary(member):
    member.circuit_strikes = 2
    sessions = [
        attended_session(LAST_SATURDAY, member.id),
        attended_session(LAST_SATURDAY - timedelta(days=7), member.id),
        attended_session(LAST_SATURDAY - timedelta(days=21), member.id),
    ]
    summary = attendance_summary(sessions, member, MONDAY_MORNING)
    assert summary.attended_count == 3
    assert summary.streak == 2
    assert summary.strikes == 2
    assert not summary.is_banned(MONDAY_MORNING)


def test_same_day_class_joins_streak_after_it_ends(member):
    """After 9:45 on a Saturday, today's class extends the streak."""
    sessions = [
        attended_session(SATURDAY, member.id, "confirmed"),
        attended_session(LAST_SATURDAY, member.id),
    ]
    during = attendance_summary(sessions, member, datetime(2026, 10, 24, 9, 30))
    after = attendance_summary(sessions, member, datetime(2026, 10, 24, 11, 0))
    assert during.streak == 1
    assert after.streak == 2
    assert after.attended_count == 1


def test_future_session_never_counts(member):
    sessions = [attended_session(SATURDAY, member.id, "confirmed")]
    summary = attendance_summary(sessions, member, MONDAY_MORNING)
    assert summary.attended_count == 0
    assert summary.streak == 0


def test_is_banned_compares_against_now(member):
    member.circuit_ban_until = datetime(2026, 11, 1, 12, 0)
    assert is_banned(member, MONDAY_MORNING)
    assert not is_banned(member, datetime(2026, 11, 2))
    assert not is_banned(reset_strikes(member), MONDAY_MORNING)


# ─────────────────────────────────────────────
# Sessions & Booking
# ─────────────────────────────────────────────

def _vips(n):
    return [Member(id=f"vip-{i}", name=f"VIP {i}", client_type="circuit_vip") for i in range(n)]


def test_new_session_pre_slots_vips():
    session = new_session(SATURDAY, _vips(2), MONDAY_MORNING)
    assert len(session.slots) == 8
    assert [s.slot_number for s in session.slots] == list(range(1, 9))
    assert [s.member_id for s in session.slots[:2]] == ["vip-0", "vip-1"]
    assert all(s.status == "confirmed" for s in session.slots[:2])
    assert session.available_count == 6


def test_new_session_caps_vips_at_capacity():
    session = new_session(SATURDAY, _vips(10), MONDAY_MORNING)
    assert session.is_full
    assert len(session.slots) == 8


def test_slot_missing_vips_fills_open_slots():
    vips = _vips(3)
    session = new_session(SATURDAY, vips[:1], MONDAY_MORNING)
    updated, changed = slot_missing_vips(session, vips, MONDAY_MORNING)
    assert changed
    assert {s.member_id for s in updated.slots if s.member_id} == {"vip-0", "vip-1", "vip-2"}

    again, changed_again = slot_missing_vips(updated, vips, MONDAY_MORNING)
    assert not changed_again
    assert again.slots == updated.slots


def test_slot_missing_vips_reuses_cancelled_slots():
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    slots = [Slot(slot_number=s.slot_number, status="cancelled") for s in session.slots]
    session = SessionRecord(date=SATURDAY, slots=slots, waitlist=[])
    assert session.available_count == 8

    updated, changed = slot_missing_vips(session, _vips(1), MONDAY_MORNING)
    assert changed
    assert updated.slots[0].member_id == "vip-0"
    assert updated.slots[0].status == "confirmed"


def test_book_slot(member):
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    session = join_waitlist(session, member, MONDAY_MORNING)
    updated = book_slot(session, member, 3, MONDAY_MORNING)

    slot = find_my_slot(updated, member.id)
    assert slot.slot_number == 3
    assert slot.status == "confirmed"
    assert slot.member_type == "circuit_dropin"
    assert updated.waitlist == []
    # The original record is untouched
    assert find_my_slot(session, member.id) is None


def test_book_slot_refuses_banned_member(member):
    member.circuit_ban_until = MONDAY_MORNING + timedelta(days=10)
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    with pytest.raises(BookingError, match="suspended"):
        book_slot(session, member, 1, MONDAY_MORNING)


def test_book_slot_refuses_after_wednesday(member):
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    thursday = datetime(2026, 10, 22, 0, 0, 1)
    with pytest.raises(BookingError, match="deadline"):
        book_slot(session, member, 1, thursday)


def test_book_slot_refuses_second_slot(member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    with pytest.raises(BookingError, match="already has a slot"):
        book_slot(session, member, 2, MONDAY_MORNING)


def test_book_slot_refuses_taken_slot(member, other_member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    with pytest.raises(BookingError, match="no longer available"):
        book_slot(session, other_member, 1, MONDAY_MORNING)


def test_release_slot_promotes_waitlist_head(member, other_member):
    session = new_session(SATURDAY, _vips(7), MONDAY_MORNING)
    session = book_slot(session, member, 8, MONDAY_MORNING)
    session = join_waitlist(session, other_member, MONDAY_MORNING)

    released = release_slot(session, member.id, MONDAY_MORNING)
    slot = find_my_slot(released, other_member.id)
    assert slot.slot_number == 8
    assert slot.status == "confirmed"
    assert find_my_slot(released, member.id) is None
    assert released.waitlist == []


def test_release_slot_without_waitlist_frees_slot(member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 4, MONDAY_MORNING)
    released = release_slot(session, member.id, MONDAY_MORNING)
    assert released.slots[3] == Slot(slot_number=4)
    assert released.available_count == 8


def test_release_slot_refused_inside_24_hours(member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    with pytest.raises(BookingError, match="24hrs"):
        release_slot(session, member.id, datetime(2026, 10, 23, 9, 0, 1))


def test_release_slot_for_unbooked_member_is_noop(member):
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    assert release_slot(session, member.id, MONDAY_MORNING) is session


def test_waitlist_join_and_leave(member):
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    session = join_waitlist(session, member, MONDAY_MORNING)
    assert [w.member_id for w in session.waitlist] == [member.id]
    with pytest.raises(BookingError, match="Already on the waitlist"):
        join_waitlist(session, member, MONDAY_MORNING)
    assert leave_waitlist(session, member.id).waitlist == []


def test_join_waitlist_refused_when_holding_slot(member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    with pytest.raises(BookingError, match="already have a slot"):
        join_waitlist(session, member, MONDAY_MORNING)


# ─────────────────────────────────────────────
# Admin Actions
# ─────────────────────────────────────────────

def test_admin_add_to_slot_ignores_deadline(member):
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    friday = datetime(2026, 10, 23, 18, 0)
    updated = add_to_slot(session, 2, member, friday)
    assert find_my_slot(updated, member.id).slot_number == 2


def test_admin_remove_from_slot_promotes_waitlist(member, other_member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 5, MONDAY_MORNING)
    session.waitlist = [WaitlistEntry(member_id=other_member.id, member_name=other_member.name)]
    updated = remove_from_slot(session, 5, MONDAY_MORNING)
    assert updated.slots[4].member_id == other_member.id


def test_remove_from_unknown_slot():
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    with pytest.raises(BookingError):
        remove_from_slot(session, 42, MONDAY_MORNING)


def test_mark_attendance_sets_status(member):
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    assert mark_attendance(session, 1, True).slots[0].status == "attended"
    no_show = mark_attendance(session, 1, False)
    assert no_show.slots[0].status == "no-show"
    assert attendance_count([no_show], member.id, date(2026, 10, 25)) == 0


def test_mark_attendance_on_empty_slot_is_refused():
    session = new_session(SATURDAY, [], MONDAY_MORNING)
    with pytest.raises(BookingError, match="no member"):
        mark_attendance(session, 1, True)


def test_mark_attendance_twice_is_refused(member):
    """A slot already marked cannot be marked again, so one missed class is one strike."""
    session = book_slot(new_session(SATURDAY, [], MONDAY_MORNING), member, 1, MONDAY_MORNING)
    missed = mark_attendance(session, 1, False)
    with pytest.raises(BookingError, match="already marked as no-show"):
        mark_attendance(missed, 1, False)
    with pytest.raises(BookingError, match="already marked as no-show"):
        mark_attendance(missed, 1, True)

    attended = mark_attendance(session, 1, True)
    with pytest.raises(BookingError, match="already marked as attended"):
        mark_attendance(attended, 1, False)


def test_record_no_show_accrues_strikes(member):
    once = record_no_show(member, MONDAY_MORNING)
    twice = record_no_show(once, MONDAY_MORNING)
    assert once.circuit_strikes == 1
    assert twice.circuit_strikes == 2
    assert twice.circuit_ban_until is None


def test_third_strike_bans_for_a_month_and_resets(member):
    member.circuit_strikes = 2
    banned = record_no_show(member, datetime(2026, 1, 31, 10, 0))
    assert banned.circuit_strikes == 0
    assert banned.circuit_ban_until == datetime(2026, 2, 28, 10, 0)
    assert is_banned(banned, datetime(2026, 2, 1))


def test_reset_strikes_lifts_ban(member):
    member.circuit_strikes = 2
    member.circuit_ban_until = datetime(2026, 12, 1)
    cleared = reset_strikes(member)
    assert cleared.circuit_strikes == 0
    assert cleared.circuit_ban_until is None
