# app/api_routes.py
from typing import Union

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from . import bookings
from .access import has_approved_guardian_profile
from .db import get_session
from .eligibility import list_pending
from .errors import AuthorizationError
from .models import Booking
from .schemas import (
    AcceptResponse,
    BookingCreate,
    BookingDetailResponse,
    BookingListResponse,
    BookingOut,
    CreateBookingResponse,
    GuardianResponse,
    HospitalOut,
    MessageResponse,
    PatientContact,
    PendingBookingOut,
    PendingListResponse,
    PickupDetails,
    StatusUpdate,
    StatusUpdateResponse,
    pickup_location,
)
from .security import Identity, current_identity
from .ws import relay

router = APIRouter()


def _booking_event(kind: str, booking: Booking) -> dict:
    return {"type": kind, "bookingId": booking.id, "status": booking.status.value}


@router.post("/booking", status_code=201, response_model=CreateBookingResponse)
async def create_booking(
    body: BookingCreate,
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    booking, eligible = await bookings.create_booking(session, identity, body)

    event = _booking_event("booking_requested", booking)
    for guardian in eligible:
        relay.broadcast_to_user(guardian.user_id, event)

    return CreateBookingResponse(
        message="Booking request created successfully",
        booking=BookingOut.model_validate(booking),
        eligible_guardians_count=len(eligible),
        next_step=(
            "Waiting for a guardian to accept your request"
            if eligible
            else "No guardians available in your area. We'll notify you when one becomes available."
        ),
    )


@router.get("/booking/pending", response_model=PendingListResponse)
async def pending_bookings(
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    guardian = await has_approved_guardian_profile(session, identity.user_id)
    if guardian is None:
        raise AuthorizationError("Only verified guardians can view pending requests")
    rows = await list_pending(session, guardian)
    return PendingListResponse(count=len(rows), bookings=[PendingBookingOut.from_booking(b) for b in rows])


@router.post("/booking/respond", response_model=Union[AcceptResponse, MessageResponse])
async def respond(
    body: GuardianResponse,
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    booking = await bookings.respond_to_booking(session, identity, body.booking_id, body.action)
    if booking is None:
        return MessageResponse(message="Booking rejected. The request will be shown to other guardians.")

    event = _booking_event("booking_accepted", booking)
    event["guardianId"] = booking.guardian_id
    relay.broadcast_to_user(booking.patient.user_id, event)
    relay.broadcast_to_room(booking.id, event)

    patient = booking.patient
    return AcceptResponse(
        message="Booking accepted! Session will begin soon.",
        booking=BookingOut.model_validate(booking),
        patient_contact=PatientContact(
            name=patient.user.full_name,
            mobile=patient.user.mobile,
            emergency_phone=patient.emergency_phone,
        ),
        pickup_details=PickupDetails(
            type=booking.pickup_type,
            hospital=HospitalOut.model_validate(booking.hospital),
            location=pickup_location(booking),
            scheduled_at=booking.scheduled_at,
        ),
    )


@router.patch("/booking/{booking_id}/status", response_model=StatusUpdateResponse)
async def update_status(
    booking_id: str,
    body: StatusUpdate,
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    booking = await bookings.update_status(session, identity, booking_id, body.status)
    relay.broadcast_to_room(booking.id, _booking_event("booking_status_changed", booking))
    return StatusUpdateResponse(
        message=bookings.STATUS_MESSAGES[booking.status],
        booking=BookingOut.model_validate(booking),
    )


# declared before /booking/{booking_id} so "my" is not taken for an id
@router.get("/booking/my", response_model=BookingListResponse)
async def my_bookings(
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    rows = await bookings.get_my_bookings(session, identity)
    return BookingListResponse(bookings=[BookingOut.model_validate(b) for b in rows])


@router.get("/booking/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: str,
    identity: Identity = Depends(current_identity),
    session: AsyncSession = Depends(get_session),
):
    booking = await bookings.get_booking(session, identity, booking_id)
    return BookingDetailResponse(booking=BookingOut.model_validate(booking))
