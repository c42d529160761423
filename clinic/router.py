from typing import Optional

from clinic.schemas.profile import DOCTOR, HOSPITAL_ADMIN, PATIENT

LOGIN = "Login"
REGISTER = "Register"
DOCTOR_DASHBOARD = "DoctorDashboard"
PATIENT_DASHBOARD = "PatientDashboard"
HOSPITAL_DASHBOARD = "HospitalDashboard"

DASHBOARDS = {
    DOCTOR: DOCTOR_DASHBOARD,
    PATIENT: PATIENT_DASHBOARD,
    HOSPITAL_ADMIN: HOSPITAL_DASHBOARD,
}


def landing_screen(state: str, role: Optional[str] = None) -> str:
    """Screen to show for a session state ("signed_out", "unregistered", "active")."""
    if state == "unregistered":
        return REGISTER
    if state != "active" or role is None:
        return LOGIN
    try:
        return DASHBOARDS[role]
    except KeyError:
        raise ValueError(f"Unknown role '{role}'") from None
