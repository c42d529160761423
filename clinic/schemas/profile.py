"""
Profile records, one variant per role.

Stored records use camelCase keys (``fullName``, ``hospitalName``); the
models expose snake_case attributes and dump back with aliases. ``role`` is
the discriminator, so ``parse_profile`` hands back the right variant and
every consumer can dispatch on the concrete class.
"""

from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

DOCTOR = "doctor"
PATIENT = "patient"
HOSPITAL_ADMIN = "hospitalAdmin"
ROLES = (DOCTOR, PATIENT, HOSPITAL_ADMIN)

SPECIALIZATIONS = (
    "Cardiologist",
    "Dermatologist",
    "Neurologist",
    "Pediatrician",
    "General Physician",
    "Orthopedic",
    "Ayurveda",
    "Homeopathy",
)


class ProfileBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    # Fields the owner may change from the profile screen.
    editable_fields: ClassVar[tuple[str, ...]] = ()
    # Profiles that must keep an email or a mobile number on save.
    requires_contact: ClassVar[bool] = False

    id: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def display_name(self) -> str:
        return ""

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


class DoctorProfile(ProfileBase):
    editable_fields: ClassVar[tuple[str, ...]] = ("fullName", "email", "mobile", "specialization")
    requires_contact: ClassVar[bool] = True

    role: Literal["doctor"] = DOCTOR
    full_name: str = ""
    specialization: str = ""

    @property
    def display_name(self) -> str:
        return self.full_name


class PatientProfile(ProfileBase):
    editable_fields: ClassVar[tuple[str, ...]] = ("fullName", "email", "mobile")
    requires_contact: ClassVar[bool] = True

    role: Literal["patient"] = PATIENT
    full_name: str = ""

    @property
    def display_name(self) -> str:
        return self.full_name


class HospitalAdminProfile(ProfileBase):
    editable_fields: ClassVar[tuple[str, ...]] = ("hospitalName", "state", "city", "email", "mobile")

    role: Literal["hospitalAdmin"] = HOSPITAL_ADMIN
    hospital_name: str = ""
    state: str = ""
    city: str = ""

    @property
    def display_name(self) -> str:
        return self.hospital_name


Profile = Annotated[
    Union[DoctorProfile, PatientProfile, HospitalAdminProfile],
    Field(discriminator="role"),
]

_profile_adapter = TypeAdapter(Profile)

PROFILE_TYPES: dict[str, type[ProfileBase]] = {
    DOCTOR: DoctorProfile,
    PATIENT: PatientProfile,
    HOSPITAL_ADMIN: HospitalAdminProfile,
}


def parse_profile(profile_id: str, data: dict[str, Any]) -> ProfileBase:
    """Build the role-specific profile from a stored record."""
    return _profile_adapter.validate_python({**data, "id": profile_id})


def profile_type(role: str) -> type[ProfileBase]:
    try:
        return PROFILE_TYPES[role]
    except KeyError:
        raise ValueError(f"Unknown role '{role}'") from None
