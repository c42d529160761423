from datetime import datetime
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RosterEntryBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    required_fields: ClassVar[tuple[str, ...]] = ()
    editable_fields: ClassVar[tuple[str, ...]] = ()

    id: Optional[str] = None
    name: str = ""
    mobile: str = ""
    email: str = ""
    attachment_url: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PatientEntry(RosterEntryBase):
    required_fields: ClassVar[tuple[str, ...]] = ("name", "address", "disease", "mobile")
    editable_fields: ClassVar[tuple[str, ...]] = (
        "name", "address", "disease", "cause", "prescription", "mobile", "email", "attachmentUrl",
    )

    address: str = ""
    disease: str = ""
    cause: str = ""
    prescription: str = ""


class DoctorEntry(RosterEntryBase):
    required_fields: ClassVar[tuple[str, ...]] = ("name", "specialization")
    editable_fields: ClassVar[tuple[str, ...]] = (
        "name", "specialization", "experience", "degree", "gender", "currentlyWorking",
        "mobile", "email", "attachmentUrl",
    )

    specialization: str = ""
    experience: str = ""
    degree: str = ""
    gender: str = ""
    currently_working: bool = True


class Visit(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    doctor_id: str
    doctor_name: str
    date: str


class GlobalPatientRecord(BaseModel):
    """Cross-doctor record keyed by the patient's mobile number."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    mobile: str
    name: str = ""
    address: str = ""
    email: str = ""
    linked_doctors: list[str] = []
    visit_history: list[Visit] = []
    created_at: Optional[str] = None
    last_updated: Optional[str] = None

    def link(self, doctor_id: str, doctor_name: str, when: datetime) -> "GlobalPatientRecord":
        """Union the doctor into ``linked_doctors`` and append one visit."""
        linked = list(self.linked_doctors)
        if doctor_id not in linked:
            linked.append(doctor_id)
        visits = list(self.visit_history) + [
            Visit(doctor_id=doctor_id, doctor_name=doctor_name, date=when.isoformat())
        ]
        return self.model_copy(update={"linked_doctors": linked, "visit_history": visits})

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
