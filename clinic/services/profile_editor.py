"""
ProfileEditor: reconciles the live profile snapshot with a local edit buffer.

Two states. In *viewing*, every pushed snapshot replaces ``display``. In
*editing*, pushes still refresh ``latest_snapshot`` but never touch ``draft``
or ``display``; the draft only meets the stored record when ``save`` writes
it back. Cancel throws the draft away and shows the latest snapshot again.
"""

import logging
from typing import Any, Optional

from clinic.exceptions import ClinicError, ValidationError
from clinic.paths import profile_path
from clinic.schemas.directory import Record
from clinic.schemas.profile import ROLES, ProfileBase, parse_profile, profile_type
from clinic.services.directory import DELETE_FIELD, SERVER_TIMESTAMP, RemoteDirectory, Subscription
from clinic.services.notices import NoticeBoard

logger = logging.getLogger(__name__)

VIEWING = "viewing"
EDITING = "editing"


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ProfileEditor:
    def __init__(self, directory: RemoteDirectory, identity_id: str, notices: Optional[NoticeBoard] = None):
        self.directory = directory
        self.identity_id = identity_id
        self.path = profile_path(identity_id)
        self.notices = notices or NoticeBoard()

        self.state = VIEWING
        self.latest_snapshot: dict[str, Any] = {}
        self.display: dict[str, Any] = {}
        self.draft: Optional[dict[str, Any]] = None
        self.saving = False
        self._subscription: Optional[Subscription] = None

    async def __aenter__(self) -> "ProfileEditor":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def mount(self) -> None:
        if self._subscription is None:
            self._subscription = await self.directory.subscribe(self.path, self._on_snapshot, self._on_error)

    async def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription()
            self._subscription = None

    def _on_snapshot(self, record: Optional[Record]) -> None:
        self.latest_snapshot = dict(record.data) if record is not None else {}
        if self.state == VIEWING:
            self.display = dict(self.latest_snapshot)

    def _on_error(self, error) -> None:
        logger.warning("Profile %s snapshot failed: %s", self.identity_id, error)

    @property
    def role(self) -> Optional[str]:
        return self.latest_snapshot.get("role")

    @property
    def profile(self) -> Optional[ProfileBase]:
        """``display`` as a typed profile, or None before the first snapshot."""
        if not self.display.get("role"):
            return None
        return parse_profile(self.identity_id, self.display)

    @property
    def editable_fields(self) -> tuple[str, ...]:
        return profile_type(self.role).editable_fields if self.role in ROLES else ()

    def begin_edit(self) -> bool:
        if self.state == EDITING:
            return True
        if not self.role:
            self.notices.post("Error", "Profile is still loading.", level="error")
            return False
        self.draft = dict(self.latest_snapshot)
        self.state = EDITING
        return True

    def set_field(self, name: str, value: Any) -> None:
        if self.state != EDITING:
            raise ValidationError(name, "Start editing before changing the profile.")
        if name not in self.editable_fields:
            raise ValidationError(name, f"'{name}' cannot be changed here.")
        self.draft[name] = value

    def validate(self) -> None:
        if self.role not in ROLES:
            raise ValidationError(None, "This profile is no longer available.")
        if profile_type(self.role).requires_contact:
            if _is_empty(self.draft.get("email")) and _is_empty(self.draft.get("mobile")):
                raise ValidationError("email", "Enter an email address or a mobile number.")

    def changes(self) -> dict[str, Any]:
        """The write ``save`` sends: editable fields, with empty ones deleted."""
        fields = {}
        for name in self.editable_fields:
            value = self.draft.get(name)
            if _is_empty(value):
                fields[name] = DELETE_FIELD
            else:
                fields[name] = value.strip() if isinstance(value, str) else value
        fields["updatedAt"] = SERVER_TIMESTAMP
        return fields

    async def save(self) -> bool:
        if self.state != EDITING:
            return False
        if self.saving:
            logger.info("Save for %s already in flight, ignoring", self.identity_id)
            return False

        try:
            self.validate()
        except ValidationError as e:
            self.notices.report("Error", e)
            return False

        changes = self.changes()
        self.saving = True
        try:
            await self.directory.write(self.path, changes, merge=True)
        except ClinicError as e:
            logger.error("Saving profile %s failed: %s", self.identity_id, e)
            self.notices.report("Error", e)
            return False
        finally:
            self.saving = False

        if self.state != EDITING:
            # cancelled while the write was in flight
            return True
        self.display = {
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in self.draft.items()
            if not _is_empty(v)
        }
        self.draft = None
        self.state = VIEWING
        self.notices.success("Profile Updated", "Your profile was saved.")
        return True

    def cancel(self) -> None:
        self.draft = None
        self.display = dict(self.latest_snapshot)
        self.state = VIEWING
