# app/services/schedule.py
"""
Pure slot arithmetic: weekly schedule -> slots for a date, and the slot-array
mutations the availability store applies under compare-and-swap.

Nothing here touches the database; every function returns a new list and
leaves its input alone.
"""
from __future__ import annotations

from typing import Iterable, Optional

from app.core.business import minutes_to_time, time_to_minutes
from app.core.errors import InvalidRequestError, SlotUnavailableError
from app.schemas.schedule import (
    AvailabilitySlot,
    BlockReason,
    ScheduleDay,
    SlotReason,
)


def _overlaps_break(slot_start: int, duration: int, breaks: Iterable[tuple[int, int]]) -> bool:
    return any(slot_start < b_end and slot_start + duration > b_start for b_start, b_end in breaks)


def generate_slots(day: ScheduleDay, slot_duration: int) -> list[AvailabilitySlot]:
    """
    Slots of ``slot_duration`` minutes across [start_time, end_time).

    The last slot is clipped to end_time. A slot whose nominal window
    [start, start + slot_duration) touches a break is emitted unavailable
    with reason "break".
    """
    if slot_duration <= 0:
        raise InvalidRequestError("slot_duration must be a positive number of minutes", slot_duration=slot_duration)
    if not day.is_available:
        return []

    start = time_to_minutes(day.start_time)
    end = time_to_minutes(day.end_time)
    if start >= end:
        return []

    breaks = [(time_to_minutes(b.start_time), time_to_minutes(b.end_time)) for b in day.breaks]

    slots: list[AvailabilitySlot] = []
    current = start
    while current < end:
        slot_end = min(current + slot_duration, end)
        if _overlaps_break(current, slot_duration, breaks):
            slot = AvailabilitySlot(
                start_time=minutes_to_time(current),
                end_time=minutes_to_time(slot_end),
                is_available=False,
                reason_unavailable=SlotReason.BREAK,
            )
        else:
            slot = AvailabilitySlot(start_time=minutes_to_time(current), end_time=minutes_to_time(slot_end))
        slots.append(slot)
        current += slot_duration
    return slots


def _contained(slot: AvailabilitySlot, start: int, end: int) -> bool:
    return slot.start_minutes >= start and slot.end_minutes <= end


def book_slots(slots: list[AvailabilitySlot], start_time: str, end_time: str, appointment_id: str) -> list[AvailabilitySlot]:
    """
    Mark every slot fully inside [start_time, end_time) as booked.

    Raises SlotUnavailableError when no slot lies inside the range or when
    any of them is already taken; the caller's array is never half-booked.
    """
    start, end = time_to_minutes(start_time), time_to_minutes(end_time)
    hits = [i for i, slot in enumerate(slots) if _contained(slot, start, end)]
    if not hits:
        raise SlotUnavailableError(
            "No slot fits the requested time", start_time=start_time, end_time=end_time
        )
    taken = [slots[i] for i in hits if not slots[i].is_available]
    if taken:
        raise SlotUnavailableError(
            start_time=start_time,
            end_time=end_time,
            conflicts=[f"{s.start_time}-{s.end_time}" for s in taken],
        )

    updated = list(slots)
    for i in hits:
        updated[i] = slots[i].booked(appointment_id)
    return updated


def release_slots(slots: list[AvailabilitySlot], appointment_id: str) -> list[AvailabilitySlot]:
    return [s.released() if s.booked_appointment_id == appointment_id else s for s in slots]


def block_slots(
    slots: list[AvailabilitySlot],
    start_time: str,
    end_time: str,
    reason: BlockReason,
    custom_reason: Optional[str] = None,
) -> list[AvailabilitySlot]:
    """Admin block over [start_time, end_time). Breaks stay breaks; booked slots refuse the block."""
    start, end = time_to_minutes(start_time), time_to_minutes(end_time)
    updated: list[AvailabilitySlot] = []
    for slot in slots:
        if not _contained(slot, start, end) or slot.reason_unavailable == SlotReason.BREAK:
            updated.append(slot)
            continue
        if slot.booked_appointment_id:
            raise SlotUnavailableError(
                "Cannot block a booked slot",
                start_time=slot.start_time,
                booked_appointment_id=slot.booked_appointment_id,
            )
        updated.append(slot.blocked(reason, custom_reason))
    return updated


def rebind_slots(slots: list[AvailabilitySlot], from_id: str, to_id: str) -> list[AvailabilitySlot]:
    return [s.booked(to_id) if s.booked_appointment_id == from_id else s for s in slots]


def booked_ids(slots: Iterable[AvailabilitySlot]) -> set[str]:
    return {s.booked_appointment_id for s in slots if s.booked_appointment_id}


def bookings_by_id(slots: Iterable[AvailabilitySlot]) -> dict[str, tuple[str, str]]:
    """booking id -> (earliest start, latest end) of the slots it holds."""
    spans: dict[str, tuple[str, str]] = {}
    for slot in slots:
        if not slot.booked_appointment_id:
            continue
        current = spans.get(slot.booked_appointment_id)
        if current is None:
            spans[slot.booked_appointment_id] = (slot.start_time, slot.end_time)
        else:
            spans[slot.booked_appointment_id] = (
                min(current[0], slot.start_time, key=time_to_minutes),
                max(current[1], slot.end_time, key=time_to_minutes),
            )
    return spans
