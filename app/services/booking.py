# app/services/booking.py
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.business import Clock, days_until, hours_until, parse_instant, split_instant, system_clock
from app.core.errors import (
    AdvanceWindowExceededError,
    ConfigNotFoundError,
    InvalidRequestError,
    InvalidStatusTransitionError,
    NotFoundError,
    PastDateError,
)
from app.core.logging import get_logger
from app.crud import appointment as appointment_crud
from app.crud import organization as org_crud
from app.db.models.appointment import Appointment
from app.schemas.appointment import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    AppointmentCreate,
    AppointmentStats,
    AppointmentStatus,
    AppointmentUpdate,
    Assignment,
    CancellationInfo,
    CancelledBy,
    ReschedulingRecord,
)
from app.schemas.business import BusinessConfiguration
from app.services import availability as availability_service
from app.services import reservations
from app.services.assignment import determine_assignment

logger = get_logger(__name__)


# ---------- Internal helpers ----------

async def _load_config(db: AsyncSession, org_id: str) -> BusinessConfiguration:
    config = await org_crud.get_business_configuration_by_org_id(db, org_id)
    if config is None:
        raise ConfigNotFoundError(org_id=org_id)
    return config


def _validate_timing(starts_at: str, config: BusinessConfiguration, clock: Clock) -> tuple[date, str]:
    """
    Past instants and instants beyond the advance window are refused.
    Returns the (date, "HH:MM") that keys the slot lookup.
    """
    day, start_time = split_instant(starts_at)
    instant = parse_instant(starts_at)
    now = clock.now()
    if instant < now:
        raise PastDateError(starts_at=starts_at)
    max_days = config.settings.max_advance_booking_days
    days_ahead = days_until(instant, now)
    if days_ahead > max_days:
        raise AdvanceWindowExceededError(
            f"Cannot book more than {max_days} days in advance",
            starts_at=starts_at,
            days_ahead=days_ahead,
            max_advance_booking_days=max_days,
        )
    return day, start_time


def _check_transition(current: str, target: AppointmentStatus) -> None:
    status = AppointmentStatus(current)
    if target not in ALLOWED_TRANSITIONS[status]:
        raise InvalidStatusTransitionError(
            f"Cannot move appointment from {status.value} to {target.value}",
            current_status=status.value,
            requested_status=target.value,
        )


def _entities(staff_id: Optional[str], resource_id: Optional[str]) -> list[tuple[str, str]]:
    pairs = []
    if staff_id:
        pairs.append(("staff", staff_id))
    if resource_id:
        pairs.append(("resource", resource_id))
    return pairs


async def _release_current(
    db: AsyncSession, *, org_id: str, appointment_id: str, day: date,
    staff_id: Optional[str], resource_id: Optional[str],
) -> None:
    for entity_type, entity_id in _entities(staff_id, resource_id):
        await availability_service.release_slot(
            db, org_id=org_id, entity_type=entity_type, entity_id=entity_id, day=day, appointment_id=appointment_id
        )


async def _book_for(
    db: AsyncSession, *, org_id: str, appointment_id: str, day: date, start_time: str,
    duration: int, assignment: Assignment, clock: Clock,
) -> None:
    """reserve -> commit under an existing appointment id; a failed commit releases the reservation."""
    token = await reservations.reserve(
        db, org_id=org_id, day=day, start_time=start_time, duration=duration, assignment=assignment, clock=clock
    )
    try:
        await reservations.commit(db, token.token, appointment_id)
    except Exception:
        await _safe_release(db, token.token)
        raise


async def _safe_release(db: AsyncSession, token: str) -> None:
    """Best-effort release used on failure paths; never raises."""
    try:
        await db.rollback()
        await reservations.release(db, token)
    except Exception as e:
        logger.error("reservation_release_failed", token=token, error=str(e), error_type=type(e).__name__)


async def _restore_booking(
    db: AsyncSession, *, org_id: str, appointment_id: str, day: date, start_time: str,
    duration: int, staff_id: Optional[str], resource_id: Optional[str], clock: Clock,
) -> None:
    try:
        await db.rollback()
        await _book_for(
            db, org_id=org_id, appointment_id=appointment_id, day=day, start_time=start_time,
            duration=duration, assignment=Assignment.derive(staff_id, resource_id), clock=clock,
        )
        logger.info("previous_booking_restored", appointment_id=appointment_id)
    except Exception as e:
        logger.error("previous_booking_restore_failed", appointment_id=appointment_id, error=str(e))


# ---------- Core orchestration ----------

async def create_appointment(
    db: AsyncSession,
    request: AppointmentCreate,
    *,
    clock: Clock = system_clock,
) -> Appointment:
    """
    1) Load the org's configuration and check timing
    2) Resolve who takes the booking
    3) Reserve slots under a token
    4) Persist the appointment and commit the reservation to its id
    Any failure after step 3 releases the reservation (best-effort) and
    removes a half-written appointment before the error propagates.
    """
    config = await _load_config(db, request.org_id)
    day, start_time = _validate_timing(request.starts_at, config, clock)
    assignment = await determine_assignment(db, request, config, day=day, start_time=start_time)

    token = await reservations.reserve(
        db,
        org_id=request.org_id,
        day=day,
        start_time=start_time,
        duration=request.duration,
        assignment=assignment,
        clock=clock,
    )

    initial = (
        AppointmentStatus.PENDING
        if config.settings.notification_settings.require_confirmation
        else AppointmentStatus.CONFIRMED
    )
    appointment_id: Optional[str] = None
    try:
        appt = await appointment_crud.create_appointment(
            db,
            org_id=request.org_id,
            staff_id=assignment.staff_id,
            resource_id=assignment.resource_id,
            client_info=request.client_info.model_dump(mode="json", exclude_none=True),
            service_info=request.service_info.model_dump(mode="json", exclude_none=True),
            starts_at=request.starts_at,
            appointment_date=day,
            duration=request.duration,
            status=initial.value,
            assignment_type=assignment.assignment_type.value,
            notes=request.notes,
            custom_fields=request.custom_fields,
        )
        # Cache plain strings immediately to avoid async lazy-load after a rollback
        appointment_id = appt.id
        await reservations.commit(db, token.token, appointment_id)
    except Exception as e:
        logger.error(
            "appointment_create_failed",
            org_id=request.org_id,
            token=token.token,
            appointment_id=appointment_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        await _safe_release(db, token.token)
        if appointment_id is not None:
            try:
                await appointment_crud.delete_appointment(db, appointment_id)
            except Exception as cleanup_error:
                logger.error("appointment_cleanup_failed", appointment_id=appointment_id, error=str(cleanup_error))
        raise

    logger.info(
        "appointment_created",
        org_id=request.org_id,
        appointment_id=appointment_id,
        staff_id=assignment.staff_id,
        resource_id=assignment.resource_id,
        date=day.isoformat(),
        start_time=start_time,
        status=initial.value,
    )
    return appt


async def get_appointment(db: AsyncSession, org_id: str, appointment_id: str) -> Appointment:
    appt = await appointment_crud.get_appointment(db, appointment_id, org_id=org_id)
    if appt is None:
        raise NotFoundError("Appointment not found", appointment_id=appointment_id)
    return appt


async def update_appointment(
    db: AsyncSession,
    org_id: str,
    appointment_id: str,
    updates: AppointmentUpdate,
    *,
    clock: Clock = system_clock,
) -> Appointment:
    appt = await get_appointment(db, org_id, appointment_id)
    if AppointmentStatus(appt.status) in TERMINAL_STATUSES:
        raise InvalidStatusTransitionError(
            "Appointment can no longer be modified", current_status=appt.status
        )

    changes = updates.model_dump(mode="json", exclude_unset=True, exclude_none=False)
    # required columns: an explicit null keeps the stored value
    for key in ("client_info", "service_info", "starts_at", "duration"):
        if key in changes and changes[key] is None:
            changes.pop(key)

    old = dict(
        starts_at=appt.starts_at,
        day=appt.appointment_date,
        duration=appt.duration,
        staff_id=appt.staff_id,
        resource_id=appt.resource_id,
    )
    new_starts_at = changes.get("starts_at") or old["starts_at"]
    new_duration = changes.get("duration") or old["duration"]
    new_staff = changes.get("staff_id", old["staff_id"])
    new_resource = changes.get("resource_id", old["resource_id"])

    moved = (
        new_starts_at != old["starts_at"]
        or new_duration != old["duration"]
        or new_staff != old["staff_id"]
        or new_resource != old["resource_id"]
    )
    if not moved:
        return await appointment_crud.update_appointment(db, appt, changes)

    try:
        assignment = Assignment.derive(new_staff, new_resource)
    except ValueError as e:
        raise InvalidRequestError(str(e))

    if new_starts_at != old["starts_at"]:
        day, start_time = _validate_timing(new_starts_at, await _load_config(db, org_id), clock)
    else:
        day, start_time = split_instant(new_starts_at)
    _, old_start_time = split_instant(old["starts_at"])

    await _release_current(
        db, org_id=org_id, appointment_id=appointment_id, day=old["day"],
        staff_id=old["staff_id"], resource_id=old["resource_id"],
    )
    try:
        await _book_for(
            db, org_id=org_id, appointment_id=appointment_id, day=day, start_time=start_time,
            duration=new_duration, assignment=assignment, clock=clock,
        )
    except Exception:
        await _restore_booking(
            db, org_id=org_id, appointment_id=appointment_id, day=old["day"], start_time=old_start_time,
            duration=old["duration"], staff_id=old["staff_id"], resource_id=old["resource_id"], clock=clock,
        )
        raise

    changes.update(
        starts_at=new_starts_at,
        appointment_date=day,
        duration=new_duration,
        staff_id=assignment.staff_id,
        resource_id=assignment.resource_id,
        assignment_type=assignment.assignment_type.value,
    )
    appt = await appointment_crud.update_appointment(db, appt, changes)
    logger.info("appointment_moved", org_id=org_id, appointment_id=appointment_id,
                date=day.isoformat(), start_time=start_time)
    return appt


async def cancel_appointment(
    db: AsyncSession,
    org_id: str,
    appointment_id: str,
    cancelled_by: CancelledBy,
    reason: Optional[str] = None,
    *,
    clock: Clock = system_clock,
) -> Appointment:
    appt = await get_appointment(db, org_id, appointment_id)
    _check_transition(appt.status, AppointmentStatus.CANCELLED)
    cancelled_by = CancelledBy(cancelled_by)

    await _release_current(
        db, org_id=org_id, appointment_id=appointment_id, day=appt.appointment_date,
        staff_id=appt.staff_id, resource_id=appt.resource_id,
    )

    config = await org_crud.get_business_configuration_by_org_id(db, org_id)
    now = clock.now()
    penalty_applied: float = 0
    if config is not None and cancelled_by == CancelledBy.CLIENT:
        policy = config.settings.cancellation_policy
        if hours_until(parse_instant(appt.starts_at), now) < policy.hours_before_appointment:
            penalty_applied = policy.penalty_percentage or 0

    info = CancellationInfo(
        cancelled_at=now,
        cancelled_by=cancelled_by,
        reason=reason,
        penalty_applied=penalty_applied,
    )
    appt = await appointment_crud.update_appointment(
        db, appt,
        {"status": AppointmentStatus.CANCELLED.value, "cancellation_info": info.model_dump(mode="json")},
    )
    logger.info("appointment_cancelled", org_id=org_id, appointment_id=appointment_id,
                cancelled_by=cancelled_by.value, penalty_applied=penalty_applied)
    return appt


async def reschedule_appointment(
    db: AsyncSession,
    org_id: str,
    appointment_id: str,
    new_starts_at: str,
    rescheduled_by: str,
    reason: Optional[str] = None,
    *,
    clock: Clock = system_clock,
) -> Appointment:
    """Move to a new instant keeping the same staff/resource; one history record per move."""
    appt = await get_appointment(db, org_id, appointment_id)
    _check_transition(appt.status, AppointmentStatus.RESCHEDULED)

    config = await org_crud.get_business_configuration_by_org_id(db, org_id)
    if config is not None:
        day, start_time = _validate_timing(new_starts_at, config, clock)
    else:
        day, start_time = split_instant(new_starts_at)

    old_starts_at = appt.starts_at
    old_day = appt.appointment_date
    _, old_start_time = split_instant(old_starts_at)
    duration = appt.duration
    staff_id, resource_id = appt.staff_id, appt.resource_id
    history = list(appt.rescheduling_history or [])

    await _release_current(
        db, org_id=org_id, appointment_id=appointment_id, day=old_day, staff_id=staff_id, resource_id=resource_id
    )
    try:
        await _book_for(
            db, org_id=org_id, appointment_id=appointment_id, day=day, start_time=start_time,
            duration=duration, assignment=Assignment.derive(staff_id, resource_id), clock=clock,
        )
    except Exception:
        await _restore_booking(
            db, org_id=org_id, appointment_id=appointment_id, day=old_day, start_time=old_start_time,
            duration=duration, staff_id=staff_id, resource_id=resource_id, clock=clock,
        )
        raise

    record = ReschedulingRecord(
        from_datetime=old_starts_at,
        to_datetime=new_starts_at,
        rescheduled_at=clock.now(),
        rescheduled_by=rescheduled_by,
        reason=reason,
    )
    history.append(record.model_dump(mode="json"))
    appt = await appointment_crud.update_appointment(
        db, appt,
        {
            "starts_at": new_starts_at,
            "appointment_date": day,
            "status": AppointmentStatus.RESCHEDULED.value,
            "rescheduling_history": history,
        },
    )
    logger.info("appointment_rescheduled", org_id=org_id, appointment_id=appointment_id,
                from_datetime=old_starts_at, to_datetime=new_starts_at)
    return appt


async def _set_status(db: AsyncSession, org_id: str, appointment_id: str, target: AppointmentStatus) -> Appointment:
    appt = await get_appointment(db, org_id, appointment_id)
    _check_transition(appt.status, target)
    appt = await appointment_crud.update_appointment(db, appt, {"status": target.value})
    logger.info("appointment_status_changed", org_id=org_id, appointment_id=appointment_id, status=target.value)
    return appt


async def confirm_appointment(db: AsyncSession, org_id: str, appointment_id: str) -> Appointment:
    return await _set_status(db, org_id, appointment_id, AppointmentStatus.CONFIRMED)


async def complete_appointment(db: AsyncSession, org_id: str, appointment_id: str) -> Appointment:
    return await _set_status(db, org_id, appointment_id, AppointmentStatus.COMPLETED)


async def mark_no_show(db: AsyncSession, org_id: str, appointment_id: str) -> Appointment:
    return await _set_status(db, org_id, appointment_id, AppointmentStatus.NO_SHOW)


async def get_appointments_by_date_range(
    db: AsyncSession,
    org_id: str,
    start: date,
    end: date,
    *,
    staff_id: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> Sequence[Appointment]:
    if end < start:
        raise InvalidRequestError("end date must be on or after start date")
    if staff_id:
        return await appointment_crud.list_appointments(db, org_id=org_id, start=start, end=end, staff_id=staff_id)
    if resource_id:
        return await appointment_crud.list_appointments(db, org_id=org_id, start=start, end=end, resource_id=resource_id)
    return await appointment_crud.list_appointments(db, org_id=org_id, start=start, end=end)


async def get_appointment_stats(db: AsyncSession, org_id: str, start: date, end: date) -> AppointmentStats:
    if end < start:
        raise InvalidRequestError("end date must be on or after start date")
    counts = await appointment_crud.count_by_status(db, org_id=org_id, start=start, end=end)
    by_status = {s.value: counts.get(s.value, 0) for s in AppointmentStatus}
    return AppointmentStats(total=sum(by_status.values()), by_status=by_status)
