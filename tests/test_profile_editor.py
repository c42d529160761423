import asyncio

import pytest

from clinic.exceptions import ValidationError, WriteError
from clinic.schemas.profile import DoctorProfile
from clinic.services.directory import SqlDirectory
from clinic.services.profile_editor import EDITING, VIEWING, ProfileEditor

DOCTOR_PATH = "profiles/D1"


class RejectingWrites(SqlDirectory):
    async def write(self, path, fields, merge=False):
        raise WriteError(path, "permission denied")


class GatedWrites(SqlDirectory):
    """Holds every write until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()
        self.writes = 0

    async def write(self, path, fields, merge=False):
        self.writes += 1
        await self.gate.wait()
        return await super().write(path, fields, merge)


@pytest.fixture
async def doctor_profile(directory):
    return await directory.write(DOCTOR_PATH, {
        "role": "doctor",
        "fullName": "Gregory House",
        "email": "house@example.com",
        "mobile": "5550001",
        "specialization": "General Physician",
    })


@pytest.fixture
async def editor(directory, doctor_profile):
    async with ProfileEditor(directory, "D1") as editor:
        yield editor


async def test_viewing_mirrors_snapshot(editor, directory):
    assert editor.state == VIEWING
    assert editor.display["fullName"] == "Gregory House"
    assert isinstance(editor.profile, DoctorProfile)

    await directory.write(DOCTOR_PATH, {"fullName": "G. House"}, merge=True)
    assert editor.display["fullName"] == "G. House"


async def test_cancel_restores_snapshot(editor):
    before = dict(editor.latest_snapshot)
    editor.begin_edit()
    editor.set_field("fullName", "Someone Else")
    editor.set_field("email", "")
    editor.set_field("mobile", "")

    editor.cancel()
    assert editor.state == VIEWING
    assert editor.draft is None
    assert editor.display == before


async def test_pushes_while_editing_do_not_touch_draft(editor, directory):
    editor.begin_edit()
    editor.set_field("specialization", "Neurologist")
    await directory.write(DOCTOR_PATH, {"fullName": "Pushed Name"}, merge=True)

    assert editor.latest_snapshot["fullName"] == "Pushed Name"
    assert editor.draft["fullName"] == "Gregory House"
    assert editor.display["fullName"] == "Gregory House"

    editor.cancel()
    assert editor.display["fullName"] == "Pushed Name"


async def test_save_without_contact_is_rejected(editor, directory):
    editor.begin_edit()
    editor.set_field("email", "  ")
    editor.set_field("mobile", "")

    assert await editor.save() is False
    assert editor.state == EDITING
    assert editor.notices.latest.field == "email"
    stored = (await directory.read_once(DOCTOR_PATH)).data
    assert stored["email"] == "house@example.com"
    assert "updatedAt" not in stored


async def test_save_deletes_empty_fields(editor, directory):
    editor.begin_edit()
    editor.set_field("mobile", "")
    editor.set_field("fullName", " Gregory  House ")

    assert await editor.save() is True
    assert editor.state == VIEWING
    assert "mobile" not in editor.display
    assert editor.display["fullName"] == "Gregory  House"

    stored = (await directory.read_once(DOCTOR_PATH)).data
    assert "mobile" not in stored
    assert stored["role"] == "doctor"
    assert stored["email"] == "house@example.com"
    assert "updatedAt" in stored


async def test_role_is_not_editable(editor):
    editor.begin_edit()
    with pytest.raises(ValidationError):
        editor.set_field("role", "patient")
    with pytest.raises(ValidationError):
        editor.set_field("hospitalName", "Mercy")


async def test_set_field_requires_editing(editor):
    with pytest.raises(ValidationError):
        editor.set_field("fullName", "Nope")


async def test_write_failure_keeps_draft(make_directory, doctor_profile):
    async with ProfileEditor(make_directory(RejectingWrites), "D1") as editor:
        editor.begin_edit()
        editor.set_field("fullName", "Unsaved")

        assert await editor.save() is False
        assert editor.state == EDITING
        assert editor.draft["fullName"] == "Unsaved"
        assert editor.notices.latest.retryable


async def test_second_save_while_in_flight_is_ignored(make_directory, doctor_profile):
    gated = make_directory(GatedWrites)
    async with ProfileEditor(gated, "D1") as editor:
        editor.begin_edit()
        editor.set_field("fullName", "Dr. House")

        first = asyncio.create_task(editor.save())
        await asyncio.sleep(0)
        assert editor.saving
        assert await editor.save() is False

        gated.gate.set()
        assert await first is True
        assert gated.writes == 1


async def test_hospital_admin_may_save_without_contact(directory):
    await directory.write("profiles/H1", {
        "role": "hospitalAdmin", "hospitalName": "Mercy", "state": "Kerala", "city": "Kochi",
        "mobile": "5559999",
    })
    async with ProfileEditor(directory, "H1") as editor:
        editor.begin_edit()
        editor.set_field("mobile", "")
        editor.set_field("city", "Ernakulam")
        assert await editor.save() is True

    stored = (await directory.read_once("profiles/H1")).data
    assert stored["city"] == "Ernakulam"
    assert "mobile" not in stored


async def test_begin_edit_before_snapshot(directory):
    async with ProfileEditor(directory, "missing") as editor:
        assert editor.begin_edit() is False
        assert editor.state == VIEWING


async def test_unmount_releases_subscription(directory, doctor_profile):
    editor = ProfileEditor(directory, "D1")
    await editor.mount()
    await editor.mount()
    assert directory.hub.count(DOCTOR_PATH) == 1
    await editor.unmount()
    assert directory.hub.count(DOCTOR_PATH) == 0


async def test_save_after_profile_loses_role(editor, directory):
    editor.begin_edit()
    editor.set_field("fullName", "Dr. House")
    await directory.write(DOCTOR_PATH, {"fullName": "No Role"})

    assert editor.role is None
    assert await editor.save() is False
    assert editor.state == EDITING
    assert editor.notices.latest.level == "error"
    assert editor.notices.latest.message == "This profile is no longer available."
