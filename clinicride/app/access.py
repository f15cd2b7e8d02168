# app/access.py
"""Ownership and profile predicates shared by the booking engine and the relay.

The booking-level checks expect ``booking.patient`` and ``booking.guardian`` to
be loaded already; the profile lookups are plain reads.
"""
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Booking, Guardian, Patient, Role, User, VerificationStatus


def is_owning_patient(booking: Booking, user_id: str) -> bool:
    return booking.patient is not None and booking.patient.user_id == user_id


def is_assigned_guardian(booking: Booking, user_id: str) -> bool:
    return booking.guardian is not None and booking.guardian.user_id == user_id


def is_participant(booking: Booking, user_id: str) -> bool:
    return is_owning_patient(booking, user_id) or is_assigned_guardian(booking, user_id)


async def has_patient_profile(session: AsyncSession, user_id: str) -> Optional[Patient]:
    stmt = (
        sa.select(Patient)
        .join(User, Patient.user_id == User.id)
        .where(User.id == user_id, User.role == Role.PATIENT)
        .options(selectinload(Patient.user))
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_guardian_profile(session: AsyncSession, user_id: str) -> Optional[Guardian]:
    stmt = (
        sa.select(Guardian)
        .join(User, Guardian.user_id == User.id)
        .where(User.id == user_id, User.role == Role.GUARDIAN)
        .options(selectinload(Guardian.user), selectinload(Guardian.preferred_hospitals))
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def has_approved_guardian_profile(session: AsyncSession, user_id: str) -> Optional[Guardian]:
    guardian = await get_guardian_profile(session, user_id)
    if guardian is None or guardian.verification_status != VerificationStatus.APPROVED:
        return None
    return guardian


async def can_join_booking_room(session: AsyncSession, booking_id: str, user_id: str) -> bool:
    stmt = (
        sa.select(Booking)
        .where(Booking.id == booking_id)
        .options(selectinload(Booking.patient), selectinload(Booking.guardian))
    )
    booking = (await session.execute(stmt)).scalar_one_or_none()
    return booking is not None and is_participant(booking, user_id)
