# app/eligibility.py
from typing import List

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .errors import AuthorizationError
from .models import (
    Booking,
    BookingStatus,
    Guardian,
    Patient,
    VerificationStatus,
    guardian_preferred_hospitals,
)


async def find_eligible_guardians(session: AsyncSession, hospital_id: str) -> List[Guardian]:
    """Approved guardians whose preferred hospitals include ``hospital_id``."""
    stmt = (
        sa.select(Guardian)
        .join(guardian_preferred_hospitals, guardian_preferred_hospitals.c.guardian_id == Guardian.id)
        .where(
            Guardian.verification_status == VerificationStatus.APPROVED,
            guardian_preferred_hospitals.c.hospital_id == hospital_id,
        )
        .options(selectinload(Guardian.user))
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_pending(session: AsyncSession, guardian: Guardian) -> List[Booking]:
    """Unassigned requests in the guardian's area, soonest scheduled first."""
    if guardian.verification_status != VerificationStatus.APPROVED:
        raise AuthorizationError("Only verified guardians can view pending requests")

    preferred = sa.select(guardian_preferred_hospitals.c.hospital_id).where(
        guardian_preferred_hospitals.c.guardian_id == guardian.id
    )
    stmt = (
        sa.select(Booking)
        .where(
            Booking.status == BookingStatus.REQUESTED,
            Booking.guardian_id.is_(None),
            Booking.hospital_id.in_(preferred),
        )
        .options(
            selectinload(Booking.patient).selectinload(Patient.user),
            selectinload(Booking.hospital),
            selectinload(Booking.services),
        )
        .order_by(Booking.scheduled_at.asc())
    )
    return list((await session.execute(stmt)).scalars().all())
