# scripts/seed_db.py
"""Seed a development database and print bearer tokens for the seeded users.

Run from the project root: ``python clinicride/scripts/seed_db.py``
"""
import asyncio
import os
import sys

from dotenv import load_dotenv

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
load_dotenv()

from app import db  # noqa: E402
from app.models import (  # noqa: E402
    Base,
    Guardian,
    Hospital,
    Patient,
    Role,
    Service,
    User,
    VerificationStatus,
)
from app.security import issue_token  # noqa: E402

SERVICES = [
    ("Wheelchair Assistance", "Assistance with wheelchair"),
    ("Oxygen Support", "Oxygen tank and mask support"),
    ("Bedridden Transport", "Stretcher and bed-to-bed transport"),
    ("Language Translator", "Assistance with local language"),
]

HOSPITALS = [
    ("City Care Hospital", "123 Health Ave, Ameerpet", 17.4375, 78.4482, "040-12345678"),
    ("Apollo Health City", "Jubilee Hills Check Post", 17.4255, 78.4115, "040-87654321"),
    ("Care Hospitals", "Banjara Hills Rd No 1", 17.4124, 78.4483, "040-11223344"),
]


async def seed():
    await db.init_db(create_all=False)
    if db.engine is None:
        raise SystemExit("Set DATABASE_URL before seeding")

    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with db.AsyncSessionLocal() as session:
        services = [Service(name=n, description=d) for n, d in SERVICES]
        hospitals = [
            Hospital(name=n, address=a, city="Hyderabad", state="Telangana", latitude=lat, longitude=lng, phone=p)
            for n, a, lat, lng, p in HOSPITALS
        ]
        session.add_all(services + hospitals)

        patient_user = User(full_name="Ravi Kumar", mobile="9000000001", role=Role.PATIENT)
        patient = Patient(user=patient_user, age=67, gender="MALE", emergency_phone="9000000099")

        guardians = []
        for i, prefs in enumerate([hospitals[:2], hospitals[1:]], start=1):
            user = User(full_name=f"Guardian {i}", mobile=f"900000001{i}", role=Role.GUARDIAN)
            guardians.append(
                Guardian(user=user, verification_status=VerificationStatus.APPROVED, preferred_hospitals=list(prefs))
            )
        session.add_all([patient] + guardians)
        await session.commit()

        print(f"seeded {len(services)} services, {len(hospitals)} hospitals, 1 patient, {len(guardians)} guardians")
        print(f"patient  {patient_user.full_name}: {issue_token(patient_user.id, Role.PATIENT, 86400)}")
        for g in guardians:
            print(f"guardian {g.user.full_name}: {issue_token(g.user.id, Role.GUARDIAN, 86400)}")
        for h in hospitals:
            print(f"hospital {h.name}: {h.id}")

    await db.close_db()


if __name__ == "__main__":
    asyncio.run(seed())
