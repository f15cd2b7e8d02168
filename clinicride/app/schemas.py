# app/schemas.py
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import BookingStatus, PickupType, VerificationStatus
from .utils import as_utc


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Requests ---


class BookingCreate(CamelModel):
    hospital_id: str = Field(min_length=1)
    pickup_type: PickupType
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    pickup_address: Optional[str] = Field(None, max_length=500)
    scheduled_at: datetime
    notes: Optional[str] = Field(None, max_length=500)
    service_ids: List[str] = []


class ResponseAction(str, enum.Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class GuardianResponse(CamelModel):
    booking_id: str = Field(min_length=1)
    action: ResponseAction


class StatusUpdate(CamelModel):
    status: BookingStatus


class LocationIn(BaseModel):
    """Relay payload; any client ``timestamp`` is replaced by the server clock."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    speed: Optional[float] = None
    heading: Optional[float] = None
    timestamp: Optional[float] = None


# --- Responses ---


class UserContact(CamelModel):
    id: str
    full_name: str
    mobile: Optional[str] = None
    email: Optional[str] = None


class HospitalOut(CamelModel):
    id: str
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None


class ServiceOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None


class PatientOut(CamelModel):
    id: str
    age: Optional[int] = None
    gender: Optional[str] = None
    emergency_phone: Optional[str] = None
    user: UserContact


class GuardianOut(CamelModel):
    id: str
    verification_status: VerificationStatus
    user: UserContact


class ReviewOut(CamelModel):
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class PickupLocation(CamelModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None


class BookingOut(CamelModel):
    id: str
    status: BookingStatus
    patient_id: str
    hospital_id: str
    guardian_id: Optional[str] = None
    pickup_type: PickupType
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    pickup_address: Optional[str] = None
    scheduled_at: datetime
    notes: Optional[str] = None
    created_at: datetime
    hospital: Optional[HospitalOut] = None
    patient: Optional[PatientOut] = None
    guardian: Optional[GuardianOut] = None
    services: List[ServiceOut] = []
    review: Optional[ReviewOut] = None

    @field_validator("scheduled_at", "created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class PendingPatient(CamelModel):
    name: str
    mobile: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None


class PendingBookingOut(CamelModel):
    id: str
    patient: PendingPatient
    hospital: HospitalOut
    pickup_type: PickupType
    pickup_location: Optional[PickupLocation] = None
    scheduled_at: datetime
    notes: Optional[str] = None
    services: List[ServiceOut] = []
    created_at: datetime

    @classmethod
    def from_booking(cls, booking) -> "PendingBookingOut":
        user = booking.patient.user
        return cls(
            id=booking.id,
            patient=PendingPatient(
                name=user.full_name, mobile=user.mobile, age=booking.patient.age, gender=booking.patient.gender
            ),
            hospital=HospitalOut.model_validate(booking.hospital),
            pickup_type=booking.pickup_type,
            pickup_location=pickup_location(booking),
            scheduled_at=as_utc(booking.scheduled_at),
            notes=booking.notes,
            services=[ServiceOut.model_validate(s) for s in booking.services],
            created_at=as_utc(booking.created_at),
        )


def pickup_location(booking) -> Optional[PickupLocation]:
    if booking.pickup_type != PickupType.HOME:
        return None
    return PickupLocation(lat=booking.pickup_lat, lng=booking.pickup_lng, address=booking.pickup_address)


class CreateBookingResponse(CamelModel):
    message: str
    booking: BookingOut
    eligible_guardians_count: int
    next_step: str


class PendingListResponse(CamelModel):
    count: int
    bookings: List[PendingBookingOut]


class PatientContact(CamelModel):
    name: str
    mobile: Optional[str] = None
    emergency_phone: Optional[str] = None


class PickupDetails(CamelModel):
    type: PickupType
    hospital: HospitalOut
    location: Optional[PickupLocation] = None
    scheduled_at: datetime

    @field_validator("scheduled_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class AcceptResponse(CamelModel):
    message: str
    booking: BookingOut
    patient_contact: PatientContact
    pickup_details: PickupDetails


class MessageResponse(CamelModel):
    message: str


class StatusUpdateResponse(CamelModel):
    message: str
    booking: BookingOut


class BookingListResponse(CamelModel):
    bookings: List[BookingOut]


class BookingDetailResponse(CamelModel):
    booking: BookingOut
