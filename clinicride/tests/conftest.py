from datetime import timedelta
from types import SimpleNamespace

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.models import (
    Base,
    Booking,
    BookingStatus,
    Guardian,
    Hospital,
    Patient,
    PickupType,
    Role,
    Service,
    User,
    VerificationStatus,
)
from app.security import Identity
from app.utils import utcnow


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # file-backed so concurrent sessions really use separate connections
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'clinicride.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


def _guardian(name, status, hospitals):
    user = User(full_name=name, role=Role.GUARDIAN)
    return Guardian(user=user, verification_status=status, preferred_hospitals=list(hospitals))


@pytest_asyncio.fixture
async def world(session_factory):
    """One active hospital with two eligible guardians, plus the awkward cases."""
    async with session_factory() as s:
        hospital = Hospital(name="City Care Hospital", city="Hyderabad", is_active=True)
        other = Hospital(name="Apollo Health City", city="Hyderabad", is_active=True)
        closed = Hospital(name="Old Wing", city="Hyderabad", is_active=False)
        wheelchair = Service(name="Wheelchair Assistance")
        oxygen = Service(name="Oxygen Support")

        patient_user = User(full_name="Ravi Kumar", mobile="9000000001", role=Role.PATIENT)
        patient = Patient(user=patient_user, age=67, gender="MALE", emergency_phone="9000000099")
        other_patient = Patient(user=User(full_name="Sita Devi", role=Role.PATIENT))
        doctor = User(full_name="Dr. Rao", role=Role.DOCTOR)

        g1 = _guardian("Guardian One", VerificationStatus.APPROVED, [hospital])
        g2 = _guardian("Guardian Two", VerificationStatus.APPROVED, [hospital, other])
        g3 = _guardian("Guardian Three", VerificationStatus.APPROVED, [other])
        g4 = _guardian("Guardian Pending", VerificationStatus.PENDING, [hospital])

        s.add_all([hospital, other, closed, wheelchair, oxygen, patient, other_patient, doctor, g1, g2, g3, g4])
        await s.commit()

        def ident(user, role):
            return Identity(user_id=user.id, role=role)

        return SimpleNamespace(
            hospital=hospital,
            other_hospital=other,
            closed_hospital=closed,
            services=[wheelchair, oxygen],
            patient=patient,
            other_patient=other_patient,
            g1=g1,
            g2=g2,
            g3=g3,
            g4=g4,
            patient_id=ident(patient_user, Role.PATIENT),
            other_patient_id=ident(other_patient.user, Role.PATIENT),
            doctor_id=ident(doctor, Role.DOCTOR),
            g1_id=ident(g1.user, Role.GUARDIAN),
            g2_id=ident(g2.user, Role.GUARDIAN),
            g3_id=ident(g3.user, Role.GUARDIAN),
            g4_id=ident(g4.user, Role.GUARDIAN),
        )


@pytest_asyncio.fixture
async def make_booking(session_factory, world):
    """Insert a booking directly in any state, bypassing the engine."""

    async def _make(status=BookingStatus.REQUESTED, guardian=None, hospital=None, scheduled_in=timedelta(hours=1),
                    patient=None):
        async with session_factory() as s:
            booking = Booking(
                patient_id=(patient or world.patient).id,
                hospital_id=(hospital or world.hospital).id,
                guardian_id=guardian.id if guardian is not None else None,
                pickup_type=PickupType.HOSPITAL,
                scheduled_at=utcnow() + scheduled_in,
                status=status,
            )
            s.add(booking)
            await s.commit()
            return booking

    return _make
