"""Dates and builders shared by the test modules."""

from datetime import date, datetime

from circuit_logic import SessionRecord, Slot

# Saturday 24 October 2026; the Monday before is 19 October.
SATURDAY = date(2026, 10, 24)
LAST_SATURDAY = date(2026, 10, 17)
MONDAY_MORNING = datetime(2026, 10, 19, 10, 0)


def attended_session(day: date, member_id: str, status: str = "attended") -> SessionRecord:
    """A session where `member_id` holds slot 1 with the given status."""
    slots = [Slot(slot_number=1, member_id=member_id, member_name="Member", status=status)]
    slots += [Slot(slot_number=n) for n in range(2, 9)]
    return SessionRecord(date=day, slots=slots)
