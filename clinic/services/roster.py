"""
RosterManager: a live-synced list of subordinate records.

A doctor manages patients under ``doctors/{doctorId}/patients``; a hospital
admin manages doctors under ``hospitals/{hospitalId}/doctors``. The cache is
filled by one subscription on that collection and is only read locally for
search and edits. Writes go to the backend and come back through the
subscription.

Adding a patient also links them in the shared ``patients/{mobile}`` record:
the doctor is unioned into ``linkedDoctors`` and a visit is appended. That
second write is its own transaction; if it fails the roster entry stays and
the user gets a notice.
"""

import enum
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from clinic.exceptions import ClinicError, ValidationError, WriteError
from clinic.paths import GLOBAL_PATIENTS, doctor_roster_path, global_patient_path, patient_roster_path
from clinic.schemas.directory import Record
from clinic.schemas.roster import DoctorEntry, GlobalPatientRecord, PatientEntry, RosterEntryBase
from clinic.services.directory import SERVER_TIMESTAMP, RemoteDirectory, Subscription, join_path
from clinic.services.notices import NoticeBoard

logger = logging.getLogger(__name__)

# Also the document id of the shared record, so it must be path-safe.
MOBILE_PATTERN = re.compile(r"^\+?[0-9][0-9 ()-]*$")


class RosterView(enum.Flag):
    HIDDEN = 0
    FORM_OPEN = enum.auto()
    LIST_OPEN = enum.auto()


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _created_dates(entry: dict) -> list[str]:
    """The entry's creation date as ``YYYY-MM-DD`` and as ``M/D/YYYY``."""
    raw = entry.get("createdAt")
    if not raw:
        return []
    try:
        created = datetime.fromisoformat(raw)
    except (TypeError, ValueError):
        return []
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return [created.date().isoformat(), f"{created.month}/{created.day}/{created.year}"]


def matches(entry: dict, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    haystack = [str(entry.get(key) or "").lower() for key in ("name", "address", "mobile", "email")]
    return any(q in value for value in haystack + _created_dates(entry))


class RosterManager:
    entry_type: type[RosterEntryBase] = RosterEntryBase
    label = "Entry"

    def __init__(self, directory: RemoteDirectory, owner_id: str, notices: Optional[NoticeBoard] = None):
        self.directory = directory
        self.owner_id = owner_id
        self.notices = notices or NoticeBoard()
        self.collection_path = self.roster_path(owner_id)

        self.cache: dict[str, dict[str, Any]] = {}
        self.loaded = False

        self.form: dict[str, Any] = {}
        self.editing_id: Optional[str] = None
        self.form_visible = False
        self.list_visible = False
        self.search_query = ""

        self.uploading = False
        self.submitting = False
        self._subscription: Optional[Subscription] = None

    @classmethod
    def roster_path(cls, owner_id: str) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "RosterManager":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    @property
    def mounted(self) -> bool:
        return self._subscription is not None

    async def mount(self) -> None:
        if self._subscription is None:
            self._subscription = await self.directory.subscribe(
                self.collection_path, self._on_snapshot, self._on_error
            )

    async def unmount(self) -> None:
        try:
            if self._subscription is not None:
                self._subscription()
        finally:
            self._subscription = None
            self.cache = {}
            self.loaded = False

    def _on_snapshot(self, records: list[Record]) -> None:
        self.cache = {record.id: record.as_entry() for record in records}
        self.loaded = True

    def _on_error(self, error) -> None:
        logger.warning("Roster %s unavailable: %s", self.collection_path, error)
        self.cache = {}
        self.loaded = False

    # ------------------------------------------------------------------
    # Screen state
    # ------------------------------------------------------------------

    @property
    def view(self) -> RosterView:
        view = RosterView.HIDDEN
        if self.form_visible:
            view |= RosterView.FORM_OPEN
        if self.list_visible:
            view |= RosterView.LIST_OPEN
        return view

    def open_add_form(self) -> None:
        self.reset_form()
        self.form_visible = True

    def open_edit_form(self, entry_id: str) -> None:
        if entry_id not in self.cache:
            raise ValidationError(None, f"{self.label} not found.")
        entry = self.cache[entry_id]
        self.form = {k: entry[k] for k in self.entry_type.editable_fields if k in entry}
        self.editing_id = entry_id
        self.form_visible = True

    def close_form(self) -> None:
        self.reset_form()
        self.form_visible = False

    def toggle_form(self) -> None:
        if self.form_visible:
            self.close_form()
        else:
            self.open_add_form()

    def toggle_list(self) -> None:
        self.list_visible = not self.list_visible

    def reset_form(self) -> None:
        self.form = {}
        self.editing_id = None

    def set_field(self, name: str, value: Any) -> None:
        if name not in self.entry_type.editable_fields:
            raise ValidationError(name, f"'{name}' is not a {self.label.lower()} field.")
        self.form[name] = value

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, query: Optional[str] = None) -> list[dict[str, Any]]:
        """Cached entries matching ``query`` (the current search box when omitted)."""
        query = self.search_query if query is None else query
        return [dict(entry) for entry in self.cache.values() if matches(entry, query)]

    def entries(self, query: str = "") -> list[RosterEntryBase]:
        return [self.entry_type.model_validate(entry) for entry in self.search(query)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def validate(self, fields: dict[str, Any]) -> None:
        unknown = [k for k in fields if k not in self.entry_type.editable_fields]
        if unknown:
            raise ValidationError(unknown[0], f"'{unknown[0]}' is not a {self.label.lower()} field.")
        for name in self.entry_type.required_fields:
            if _blank(fields.get(name)):
                raise ValidationError(name, "Please fill in all required fields.")

    async def add(self, fields: dict[str, Any]) -> Record:
        """Validate and store a new entry. Raises ValidationError or WriteError."""
        fields = dict(fields)
        self.validate(fields)
        record = await self.directory.add(self.collection_path, {**fields, "createdAt": SERVER_TIMESTAMP})
        logger.info("Added %s %s under %s", self.label.lower(), record.id, self.collection_path)
        await self._after_add(record, fields)
        return record

    async def edit(self, entry_id: str, patch: dict[str, Any]) -> Record:
        """Replace the given fields of a cached entry. Raises ValidationError or WriteError."""
        if entry_id not in self.cache:
            raise ValidationError(None, f"{self.label} not found.")
        patch = dict(patch)
        current = {k: v for k, v in self.cache[entry_id].items() if k in self.entry_type.editable_fields}
        self.validate({**current, **patch})
        record = await self.directory.write(
            join_path(self.collection_path, entry_id),
            {**patch, "updatedAt": SERVER_TIMESTAMP},
            merge=True,
        )
        await self._after_edit(record, patch)
        return record

    async def _after_add(self, record: Record, fields: dict[str, Any]) -> None:
        pass

    async def _after_edit(self, record: Record, patch: dict[str, Any]) -> None:
        pass

    async def submit(self) -> bool:
        """Save the open form as a new entry or as an edit; failures become notices."""
        if self.submitting or not self.form_visible:
            return False
        self.submitting = True
        try:
            if self.editing_id is not None:
                await self.edit(self.editing_id, self.form)
                message = f"{self.label} details updated successfully."
            else:
                await self.add(self.form)
                message = f"{self.label} added successfully."
        except ValidationError as e:
            self.notices.report("Error", e)
            return False
        except ClinicError as e:
            logger.error("Saving %s under %s failed: %s", self.label.lower(), self.collection_path, e)
            self.notices.report("Error", e)
            return False
        finally:
            self.submitting = False

        self.notices.success("Success", message)
        self.close_form()
        self.list_visible = True
        return True

    async def attach(self, data: bytes, filename: str) -> Optional[str]:
        """Upload a file and put its URL on the open form."""
        if self.uploading:
            return None
        if not self.form_visible:
            self.notices.post("Error", "Open a form before attaching a file.", level="error")
            return None

        self.uploading = True
        try:
            blob = await self.directory.upload_blob(data, filename)
        except ClinicError as e:
            logger.error("Attachment upload %s failed: %s", filename, e)
            if self.mounted:
                self.notices.post("Error", "Failed to upload attachment", level="error", retryable=True)
            return None
        finally:
            self.uploading = False

        if not self.mounted or not self.form_visible:
            logger.info("Upload %s finished after its form closed, dropping it", filename)
            return blob.url
        self.form["attachmentUrl"] = blob.url
        self.notices.success("File Uploaded", "Attachment uploaded successfully!")
        return blob.url


class PatientRosterManager(RosterManager):
    """A doctor's patients, optionally linked into the shared patient records."""

    entry_type = PatientEntry
    label = "Patient"

    def __init__(
        self,
        directory: RemoteDirectory,
        doctor_id: str,
        doctor_name: str = "Unknown Doctor",
        notices: Optional[NoticeBoard] = None,
        link_global: bool = True,
    ):
        super().__init__(directory, doctor_id, notices)
        self.doctor_name = doctor_name or "Unknown Doctor"
        self.link_global = link_global

    @classmethod
    def roster_path(cls, owner_id: str) -> str:
        return patient_roster_path(owner_id)

    def validate(self, fields: dict[str, Any]) -> None:
        super().validate(fields)
        if not MOBILE_PATTERN.match(str(fields["mobile"]).strip()):
            raise ValidationError("mobile", "Enter a valid mobile number.")

    async def _after_add(self, record: Record, fields: dict[str, Any]) -> None:
        if not self.link_global:
            return
        mobile = fields["mobile"].strip()
        visited = datetime.now(timezone.utc)

        def link(current: Optional[dict]) -> dict:
            if current is None:
                shared = GlobalPatientRecord(
                    mobile=mobile,
                    name=fields.get("name", ""),
                    address=fields.get("address", ""),
                    email=fields.get("email", ""),
                )
                stamps = {"createdAt": SERVER_TIMESTAMP, "lastUpdated": SERVER_TIMESTAMP}
                return {**shared.link(self.owner_id, self.doctor_name, visited).to_record(), **stamps}
            shared = GlobalPatientRecord.model_validate({"mobile": mobile, **current})
            linked = shared.link(self.owner_id, self.doctor_name, visited).to_record()
            return {
                **current,
                "linkedDoctors": linked["linkedDoctors"],
                "visitHistory": linked["visitHistory"],
                "lastUpdated": SERVER_TIMESTAMP,
            }

        await self._update_shared(mobile, link)

    async def _after_edit(self, record: Record, patch: dict[str, Any]) -> None:
        if not self.link_global:
            return
        scalars = {k: patch[k] for k in ("name", "address", "email") if k in patch}
        mobile = (record.data.get("mobile") or "").strip()
        if not scalars or not mobile:
            return

        def propagate(current: Optional[dict]) -> Optional[dict]:
            if current is None:
                logger.info("No shared record for %s, skipping propagation", mobile)
                return None
            # last writer wins on the scalar fields
            return {**current, **scalars, "lastUpdated": SERVER_TIMESTAMP}

        await self._update_shared(mobile, propagate)

    async def _update_shared(self, mobile: str, fn) -> None:
        try:
            await self.directory.transact(global_patient_path(mobile), fn)
        except (WriteError, ValueError) as e:
            logger.error("Shared record %s not updated after roster write: %s", mobile, e)
            self.notices.post(
                "Warning",
                "Patient saved, but the shared patient record could not be updated.",
                level="error",
                retryable=True,
            )

    async def shared_record(self, mobile: str) -> Optional[GlobalPatientRecord]:
        record = await self.directory.read_once(global_patient_path(mobile))
        if record is None:
            return None
        return GlobalPatientRecord.model_validate({"mobile": record.id, **record.data})

    async def shared_patients(self) -> list[GlobalPatientRecord]:
        """Shared records this doctor is linked to, from any roster."""
        records = await self.directory.query(GLOBAL_PATIENTS, "linkedDoctors", self.owner_id)
        return [GlobalPatientRecord.model_validate({"mobile": r.id, **r.data}) for r in records]


class DoctorRosterManager(RosterManager):
    """A hospital's doctors."""

    entry_type = DoctorEntry
    label = "Doctor"

    @classmethod
    def roster_path(cls, owner_id: str) -> str:
        return doctor_roster_path(owner_id)
