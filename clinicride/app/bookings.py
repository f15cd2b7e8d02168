# app/bookings.py
"""Booking lifecycle: creation, single-winner assignment and guarded transitions.

Assignment and transitions are conditional UPDATEs checked by affected-row
count. Bookings are never locked or read-then-written by the application, so
concurrent callers can only ever observe one winner.
"""
import logging
from typing import Dict, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .access import (
    get_guardian_profile,
    has_approved_guardian_profile,
    has_patient_profile,
    is_assigned_guardian,
    is_owning_patient,
    is_participant,
)
from .eligibility import find_eligible_guardians
from .errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from .models import Booking, BookingStatus, Guardian, Hospital, Patient, PickupType, Service
from .schemas import BookingCreate, ResponseAction
from .security import Identity
from .utils import as_utc

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.REQUESTED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

STATUS_MESSAGES = {
    BookingStatus.IN_PROGRESS: "Session started! Safe travels.",
    BookingStatus.COMPLETED: "Session completed successfully!",
    BookingStatus.CANCELLED: "Booking has been cancelled.",
}

NO_ACCESS = "You don't have access to this booking"


def detail_options():
    return (
        selectinload(Booking.patient).selectinload(Patient.user),
        selectinload(Booking.guardian).selectinload(Guardian.user),
        selectinload(Booking.hospital),
        selectinload(Booking.services),
        selectinload(Booking.review),
    )


async def load_booking(session: AsyncSession, booking_id: str) -> Optional[Booking]:
    stmt = (
        sa.select(Booking)
        .where(Booking.id == booking_id)
        .options(*detail_options())
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


def _pickup_fields(data: BookingCreate) -> dict:
    if data.pickup_type == PickupType.HOSPITAL:
        # coordinates only make sense for a home pickup
        return {"pickup_lat": None, "pickup_lng": None, "pickup_address": None}

    errors: Dict[str, List[str]] = {}
    if data.pickup_lat is None or data.pickup_lng is None:
        errors["pickupLat"] = ["Pickup latitude is required for HOME pickup"]
        errors["pickupLng"] = ["Pickup longitude is required for HOME pickup"]
    if not (data.pickup_address or "").strip():
        errors["pickupAddress"] = ["Pickup address is required for HOME pickup"]
    if errors:
        raise ValidationError(errors)
    return {
        "pickup_lat": data.pickup_lat,
        "pickup_lng": data.pickup_lng,
        "pickup_address": data.pickup_address.strip(),
    }


async def _load_services(session: AsyncSession, service_ids: List[str]) -> List[Service]:
    wanted = list(dict.fromkeys(service_ids))
    if not wanted:
        return []
    rows = (await session.execute(sa.select(Service).where(Service.id.in_(wanted)))).scalars().all()
    found = {s.id: s for s in rows}
    missing = [sid for sid in wanted if sid not in found]
    if missing:
        raise ValidationError({"serviceIds": [f"Unknown service id: {sid}" for sid in missing]})
    return [found[sid] for sid in wanted]


async def create_booking(
    session: AsyncSession, identity: Identity, data: BookingCreate
) -> Tuple[Booking, List[Guardian]]:
    """Persist a REQUESTED booking and return it with the guardians who will see it."""
    patient = await has_patient_profile(session, identity.user_id)
    if patient is None:
        raise AuthorizationError("Only patients with completed profiles can create bookings")

    pickup = _pickup_fields(data)

    hospital = await session.get(Hospital, data.hospital_id)
    if hospital is None or not hospital.is_active:
        raise NotFoundError("Hospital not found or is inactive")

    services = await _load_services(session, data.service_ids)

    booking = Booking(
        patient_id=patient.id,
        hospital_id=hospital.id,
        guardian_id=None,
        status=BookingStatus.REQUESTED,
        pickup_type=data.pickup_type,
        scheduled_at=as_utc(data.scheduled_at),
        notes=data.notes,
        **pickup,
    )
    booking.services = services
    session.add(booking)
    await session.commit()

    eligible = await find_eligible_guardians(session, hospital.id)
    logger.info(
        "Booking %s requested by patient %s at hospital %s (%d eligible guardians)",
        booking.id, patient.id, hospital.id, len(eligible),
    )
    return await load_booking(session, booking.id), eligible


async def accept_booking(session: AsyncSession, identity: Identity, booking_id: str) -> Booking:
    guardian = await has_approved_guardian_profile(session, identity.user_id)
    if guardian is None:
        raise AuthorizationError("Only verified guardians can respond to requests")
    # rollback expires loaded instances; keep the plain id
    guardian_id = guardian.id

    stmt = (
        sa.update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.REQUESTED,
            Booking.guardian_id.is_(None),
        )
        .values(guardian_id=guardian_id, status=BookingStatus.ACCEPTED)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        logger.warning("Guardian %s lost the assignment of booking %s", guardian_id, booking_id)
        raise ConflictError()
    await session.commit()

    logger.info("Booking %s assigned to guardian %s", booking_id, guardian_id)
    return await load_booking(session, booking_id)


async def reject_booking(session: AsyncSession, identity: Identity, booking_id: str) -> None:
    """Pass on a request. Nothing is recorded; the booking stays in the pending list."""
    guardian = await has_approved_guardian_profile(session, identity.user_id)
    if guardian is None:
        raise AuthorizationError("Only verified guardians can respond to requests")

    stmt = sa.select(Booking).where(
        Booking.id == booking_id,
        Booking.status == BookingStatus.REQUESTED,
        Booking.guardian_id.is_(None),
    )
    booking = (await session.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found or already assigned")

    if booking.hospital_id not in {h.id for h in guardian.preferred_hospitals}:
        raise AuthorizationError("This hospital is not in your preferred list")

    logger.info("Guardian %s passed on booking %s", guardian.id, booking_id)


async def respond_to_booking(
    session: AsyncSession, identity: Identity, booking_id: str, action: ResponseAction
) -> Optional[Booking]:
    if action == ResponseAction.ACCEPT:
        return await accept_booking(session, identity, booking_id)
    await reject_booking(session, identity, booking_id)
    return None


def _authorize_transition(booking: Booking, user_id: str, target: BookingStatus) -> None:
    is_patient = is_owning_patient(booking, user_id)
    is_guardian = is_assigned_guardian(booking, user_id)

    if not (is_patient or is_guardian):
        raise AuthorizationError(NO_ACCESS)
    if is_patient and target != BookingStatus.CANCELLED:
        raise AuthorizationError("Patients can only cancel bookings")
    if target in (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED) and not is_guardian:
        raise AuthorizationError("Only the assigned guardian can update this status")


async def update_status(
    session: AsyncSession, identity: Identity, booking_id: str, target: BookingStatus
) -> Booking:
    booking = await load_booking(session, booking_id)
    if booking is None:
        raise AuthorizationError(NO_ACCESS)

    _authorize_transition(booking, identity.user_id, target)

    source = booking.status
    if target not in TRANSITIONS[source]:
        raise InvalidTransitionError(source.value, target.value)

    stmt = (
        sa.update(Booking)
        .where(Booking.id == booking_id, Booking.status == source)
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Booking status changed meanwhile; reload and try again")
    await session.commit()

    logger.info("Booking %s moved %s -> %s by user %s", booking_id, source.value, target.value, identity.user_id)
    return await load_booking(session, booking_id)


async def get_booking(session: AsyncSession, identity: Identity, booking_id: str) -> Booking:
    # missing and foreign bookings look the same to the caller
    booking = await load_booking(session, booking_id)
    if booking is None or not is_participant(booking, identity.user_id):
        raise AuthorizationError(NO_ACCESS)
    return booking


async def get_my_bookings(session: AsyncSession, identity: Identity) -> List[Booking]:
    patient = await has_patient_profile(session, identity.user_id)
    guardian = await get_guardian_profile(session, identity.user_id)
    if patient is None and guardian is None:
        raise AuthorizationError("Only patients and guardians can view bookings")

    owned = []
    if patient is not None:
        owned.append(Booking.patient_id == patient.id)
    if guardian is not None:
        owned.append(Booking.guardian_id == guardian.id)

    stmt = (
        sa.select(Booking)
        .where(sa.or_(*owned))
        .options(*detail_options())
        .order_by(Booking.created_at.desc())
    )
    return list((await session.execute(stmt)).scalars().all())
