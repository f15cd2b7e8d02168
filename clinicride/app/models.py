# app/models.py
import enum
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    PATIENT = "PATIENT"
    GUARDIAN = "GUARDIAN"
    DOCTOR = "DOCTOR"


class VerificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PickupType(str, enum.Enum):
    HOSPITAL = "HOSPITAL"
    HOME = "HOME"


class BookingStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"        # waiting for a guardian
    ACCEPTED = "ACCEPTED"          # guardian assigned
    IN_PROGRESS = "IN_PROGRESS"    # trip started
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


guardian_preferred_hospitals = sa.Table(
    "guardian_preferred_hospitals",
    Base.metadata,
    sa.Column("guardian_id", sa.String(36), sa.ForeignKey("guardians.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("hospital_id", sa.String(36), sa.ForeignKey("hospitals.id", ondelete="CASCADE"), primary_key=True),
)

# one row per distinct (booking, service)
booking_services = sa.Table(
    "booking_services",
    Base.metadata,
    sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("service_id", sa.String(36), sa.ForeignKey("services.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    full_name = sa.Column(sa.String(120), nullable=False)
    mobile = sa.Column(sa.String(20), nullable=True, unique=True)
    email = sa.Column(sa.String(255), nullable=True, unique=True)
    role = sa.Column(sa.Enum(Role, name="user_role"), nullable=False)
    created_at = sa.Column(sa.DateTime(timezone=True), nullable=False, default=utcnow)

    patient = relationship("Patient", back_populates="user", uselist=False)
    guardian = relationship("Guardian", back_populates="user", uselist=False)


class Patient(Base):
    __tablename__ = "patients"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    user_id = sa.Column(sa.String(36), sa.ForeignKey("users.id"), nullable=False, unique=True)
    age = sa.Column(sa.Integer, nullable=True)
    gender = sa.Column(sa.String(20), nullable=True)
    blood_group = sa.Column(sa.String(5), nullable=True)
    emergency_phone = sa.Column(sa.String(20), nullable=True)

    user = relationship("User", back_populates="patient")
    bookings = relationship("Booking", back_populates="patient")


class Guardian(Base):
    __tablename__ = "guardians"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    user_id = sa.Column(sa.String(36), sa.ForeignKey("users.id"), nullable=False, unique=True)
    bio = sa.Column(sa.Text, nullable=True)
    verification_status = sa.Column(
        sa.Enum(VerificationStatus, name="verification_status"),
        nullable=False,
        default=VerificationStatus.PENDING,
    )

    user = relationship("User", back_populates="guardian")
    preferred_hospitals = relationship("Hospital", secondary=guardian_preferred_hospitals)
    bookings = relationship("Booking", back_populates="guardian")


class Hospital(Base):
    __tablename__ = "hospitals"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    name = sa.Column(sa.String(200), nullable=False)
    address = sa.Column(sa.Text, nullable=True)
    city = sa.Column(sa.String(100), nullable=True)
    state = sa.Column(sa.String(100), nullable=True)
    latitude = sa.Column(sa.Float, nullable=True)
    longitude = sa.Column(sa.Float, nullable=True)
    phone = sa.Column(sa.String(20), nullable=True)
    email = sa.Column(sa.String(255), nullable=True)
    is_active = sa.Column(sa.Boolean, nullable=False, default=True)


class Service(Base):
    __tablename__ = "services"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    name = sa.Column(sa.String(120), nullable=False, unique=True)
    description = sa.Column(sa.Text, nullable=True)


class Booking(Base):
    __tablename__ = "bookings"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    patient_id = sa.Column(sa.String(36), sa.ForeignKey("patients.id"), nullable=False, index=True)
    hospital_id = sa.Column(sa.String(36), sa.ForeignKey("hospitals.id"), nullable=False, index=True)
    guardian_id = sa.Column(sa.String(36), sa.ForeignKey("guardians.id"), nullable=True, index=True)
    pickup_type = sa.Column(sa.Enum(PickupType, name="pickup_type"), nullable=False)
    pickup_lat = sa.Column(sa.Float, nullable=True)
    pickup_lng = sa.Column(sa.Float, nullable=True)
    pickup_address = sa.Column(sa.Text, nullable=True)
    scheduled_at = sa.Column(sa.DateTime(timezone=True), nullable=False, index=True)
    notes = sa.Column(sa.String(500), nullable=True)
    status = sa.Column(
        sa.Enum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.REQUESTED,
        index=True,
    )
    created_at = sa.Column(sa.DateTime(timezone=True), nullable=False, default=utcnow)

    patient = relationship("Patient", back_populates="bookings")
    guardian = relationship("Guardian", back_populates="bookings")
    hospital = relationship("Hospital")
    services = relationship("Service", secondary=booking_services)
    review = relationship("Review", back_populates="booking", uselist=False)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, guardian={self.guardian_id})>"


class Review(Base):
    __tablename__ = "reviews"
    id = sa.Column(sa.String(36), primary_key=True, default=_uuid)
    booking_id = sa.Column(sa.String(36), sa.ForeignKey("bookings.id"), nullable=False, unique=True)
    rating = sa.Column(sa.Integer, nullable=False)
    comment = sa.Column(sa.Text, nullable=True)
    created_at = sa.Column(sa.DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="review")

    __table_args__ = (sa.CheckConstraint("rating BETWEEN 1 AND 5", name="check_review_rating"),)
