from clinic.services.directory import join_path

PROFILES = "profiles"
HOSPITALS = "hospitals"
GLOBAL_PATIENTS = "patients"


def profile_path(identity_id: str) -> str:
    return join_path(PROFILES, identity_id)


def hospital_path(hospital_id: str) -> str:
    return join_path(HOSPITALS, hospital_id)


def patient_roster_path(doctor_id: str) -> str:
    return join_path("doctors", doctor_id, "patients")


def doctor_roster_path(hospital_id: str) -> str:
    return join_path(HOSPITALS, hospital_id, "doctors")


def global_patient_path(mobile: str) -> str:
    return join_path(GLOBAL_PATIENTS, mobile.strip())
