"""
Register the demo accounts (one per role) and give the doctor a few patients.
Idempotent: accounts that already exist are left alone.
Run with: python -m scripts.seed_demo
"""

import asyncio
import logging

from clinic.config import configure_logging
from clinic.database import engine, get_directory, init_models
from clinic.services.roster import DoctorRosterManager, PatientRosterManager
from clinic.services.session import ACTIVE, SessionContext

logger = logging.getLogger("scripts.seed_demo")

DEMO_PASSWORD = "Demo@123"

DEMO_USERS = [
    {"identifier": "dr.mehta@example.com", "role": "doctor", "full_name": "Dr. Arjun Mehta",
     "mobile": "9800000001", "specialization": "Cardiologist"},
    {"identifier": "priya@example.com", "role": "patient", "full_name": "Priya Sharma",
     "mobile": "9800000002"},
    {"identifier": "admin@citycare.example.com", "role": "hospitalAdmin", "hospital_name": "CityCare",
     "state": "Maharashtra", "city": "Pune", "mobile": "9800000003"},
]

DEMO_PATIENTS = [
    {"name": "Ramesh Iyer", "address": "12 MG Road", "disease": "Hypertension", "mobile": "9811111111"},
    {"name": "Anjali Rao", "address": "4 Park Street", "disease": "Asthma", "mobile": "9822222222",
     "prescription": "Salbutamol inhaler"},
]

DEMO_DOCTORS = [
    {"name": "Dr. Sneha Patel", "specialization": "Pediatrician", "experience": "8 years", "degree": "MD"},
    {"name": "Dr. Karan Gupta", "specialization": "Dermatologist", "experience": "5 years", "degree": "MBBS"},
]


async def seed():
    await init_models(engine)
    directory = get_directory()
    for user in DEMO_USERS:
        async with SessionContext(directory) as session:
            state = await session.sign_in(user["identifier"], DEMO_PASSWORD)
            if state == ACTIVE:
                logger.info("%s already registered", user["identifier"])
                continue
            fields = dict(user)
            identifier, role = fields.pop("identifier"), fields.pop("role")
            state = await session.register(identifier, DEMO_PASSWORD, role, **fields)
            if state != ACTIVE:
                logger.error("Could not register demo user: %s", session.notices.latest)
                continue

            if session.role == "doctor":
                async with PatientRosterManager(directory, session.identity.id, session.profile.display_name) as roster:
                    if not roster.cache:
                        for patient in DEMO_PATIENTS:
                            await roster.add(patient)
            elif session.role == "hospitalAdmin":
                async with DoctorRosterManager(directory, session.identity.id) as roster:
                    if not roster.cache:
                        for doctor in DEMO_DOCTORS:
                            await roster.add(doctor)
            logger.info("Seeded %s (%s)", session.identity.identifier, session.role)
    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed())
