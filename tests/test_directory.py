import asyncio
import os
import time
from datetime import datetime

import pytest

from clinic.exceptions import AuthError, SubscriptionError
from clinic.services.directory import DELETE_FIELD, SERVER_TIMESTAMP, join_path


class TestDocuments:
    async def test_write_then_read(self, directory):
        await directory.write("profiles/u1", {"fullName": "Ada", "role": "doctor"})
        record = await directory.read_once("profiles/u1")
        assert record.id == "u1"
        assert record.data == {"fullName": "Ada", "role": "doctor"}
        assert record.created_at is not None

    async def test_read_missing_returns_none(self, directory):
        assert await directory.read_once("profiles/nobody") is None

    async def test_set_replaces_and_merge_keeps(self, directory):
        await directory.write("profiles/u1", {"fullName": "Ada", "mobile": "555"})
        await directory.write("profiles/u1", {"email": "ada@example.com"}, merge=True)
        assert (await directory.read_once("profiles/u1")).data == {
            "fullName": "Ada", "mobile": "555", "email": "ada@example.com",
        }
        await directory.write("profiles/u1", {"fullName": "Ada L."})
        assert (await directory.read_once("profiles/u1")).data == {"fullName": "Ada L."}

    async def test_delete_field_is_not_empty_string(self, directory):
        await directory.write("profiles/u1", {"email": "a@b.co", "mobile": "555"})
        await directory.write("profiles/u1", {"mobile": DELETE_FIELD, "email": ""}, merge=True)
        data = (await directory.read_once("profiles/u1")).data
        assert "mobile" not in data
        assert data["email"] == ""

    async def test_server_timestamp_resolved(self, directory):
        record = await directory.write("profiles/u1", {"createdAt": SERVER_TIMESTAMP})
        stamp = datetime.fromisoformat(record.data["createdAt"])
        assert stamp.tzinfo is not None

    async def test_add_generates_id(self, directory):
        first = await directory.add("doctors/D1/patients", {"name": "Jane"})
        second = await directory.add("doctors/D1/patients", {"name": "John"})
        assert first.id != second.id
        assert first.path == join_path("doctors/D1/patients", first.id)

    async def test_collection_path_rejected_for_write(self, directory):
        with pytest.raises(ValueError):
            await directory.write("doctors/D1/patients", {"name": "Jane"})
        with pytest.raises(ValueError):
            await directory.add("profiles/u1", {"name": "Jane"})

    async def test_query_equality_and_membership(self, directory):
        await directory.write("patients/111", {"name": "A", "linkedDoctors": ["D1", "D2"]})
        await directory.write("patients/222", {"name": "B", "linkedDoctors": ["D2"]})
        await directory.write("patients/333", {"name": "A", "linkedDoctors": []})

        by_doctor = await directory.query("patients", "linkedDoctors", "D1")
        assert [r.id for r in by_doctor] == ["111"]
        by_name = await directory.query("patients", "name", "A")
        assert sorted(r.id for r in by_name) == ["111", "333"]

    async def test_transact_serializes_concurrent_updates(self, directory):
        def bump(current):
            current = current or {"count": 0}
            return {"count": current["count"] + 1}

        await asyncio.gather(*(directory.transact("counters/visits", bump) for _ in range(10)))
        assert (await directory.read_once("counters/visits")).data == {"count": 10}

    async def test_transact_returning_none_leaves_document(self, directory):
        assert await directory.transact("patients/404", lambda current: None) is None
        assert await directory.read_once("patients/404") is None


class TestSubscriptions:
    async def test_document_subscription_follows_writes(self, directory):
        seen = []
        unsubscribe = await directory.subscribe("profiles/u1", seen.append)
        await directory.write("profiles/u1", {"fullName": "Ada"})
        await directory.write("profiles/u1", {"fullName": "Ada L."})

        assert seen[0] is None
        assert [r.data["fullName"] for r in seen[1:]] == ["Ada", "Ada L."]

        unsubscribe()
        unsubscribe()
        await directory.write("profiles/u1", {"fullName": "Ignored"})
        assert len(seen) == 3
        assert directory.hub.count() == 0

    async def test_collection_subscription_delivers_full_snapshots(self, directory):
        snapshots = []
        await directory.subscribe("doctors/D1/patients", snapshots.append)
        await directory.add("doctors/D1/patients", {"name": "Jane"})
        await directory.add("doctors/D1/patients", {"name": "John"})
        await directory.add("doctors/D2/patients", {"name": "Other doctor"})

        assert [[r.data["name"] for r in snap] for snap in snapshots] == [
            [], ["Jane"], ["Jane", "John"],
        ]

    async def test_failing_listener_reports_error_and_writer_succeeds(self, directory):
        errors = []

        def explode(snapshot):
            if snapshot is not None:
                raise RuntimeError("render failed")

        await directory.subscribe("profiles/u1", explode, errors.append)
        record = await directory.write("profiles/u1", {"fullName": "Ada"})

        assert record.data["fullName"] == "Ada"
        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionError)
        assert errors[0].path == "profiles/u1"


class TestBlobs:
    async def test_upload_blob(self, directory, settings):
        blob = await directory.upload_blob(b"%PDF-1.4", "lab report.pdf")
        assert blob.url.startswith("http://files.test/attachments/")
        assert blob.url.endswith("_lab_report.pdf")
        assert blob.file_size == 8
        path = os.path.join(settings.upload_dir, *blob.name.split("/"))
        with open(path, "rb") as f:
            assert f.read() == b"%PDF-1.4"


class TestIdentity:
    async def test_register_and_authenticate(self, directory):
        identity = await directory.register("Ada@Example.com", "s3cret!")
        assert identity.auth_method == "email"
        assert identity.identifier == "ada@example.com"

        token = await directory.authenticate("ada@example.com", "s3cret!")
        assert token.identity.id == identity.id
        assert (await directory.verify_token(token.access_token)).id == identity.id

    async def test_mobile_identifier(self, directory):
        identity = await directory.register("5551234567", "s3cret!")
        assert identity.auth_method == "mobile"

    @pytest.mark.parametrize(
        "identifier, secret, code",
        [
            ("not-an-id", "s3cret!", AuthError.INVALID_IDENTIFIER),
            ("ada@example.com", "123", AuthError.WEAK_SECRET),
        ],
    )
    async def test_register_rejects(self, directory, identifier, secret, code):
        with pytest.raises(AuthError) as exc:
            await directory.register(identifier, secret)
        assert exc.value.code == code

    async def test_duplicate_identifier(self, directory):
        await directory.register("ada@example.com", "s3cret!")
        with pytest.raises(AuthError) as exc:
            await directory.register("ada@example.com", "other-secret")
        assert exc.value.code == AuthError.IDENTIFIER_IN_USE

    async def test_unknown_identifier(self, directory):
        with pytest.raises(AuthError) as exc:
            await directory.authenticate("ghost@example.com", "whatever")
        assert exc.value.code == AuthError.UNKNOWN_IDENTIFIER

    async def test_throttled_after_repeated_failures(self, directory):
        await directory.register("ada@example.com", "s3cret!")
        for _ in range(3):
            with pytest.raises(AuthError) as exc:
                await directory.authenticate("ada@example.com", "wrong")
            assert exc.value.code == AuthError.INVALID_CREDENTIALS

        with pytest.raises(AuthError) as exc:
            await directory.authenticate("ada@example.com", "s3cret!")
        assert exc.value.code == AuthError.THROTTLED

    async def test_expired_failures_are_pruned(self, directory):
        directory._failures["stale@example.com"] = [time.monotonic() - 301]
        await directory.register("ada@example.com", "s3cret!")

        with pytest.raises(AuthError):
            await directory.authenticate("ada@example.com", "wrong")
        assert "stale@example.com" not in directory._failures
        assert len(directory._failures["ada@example.com"]) == 1

    async def test_invalid_token(self, directory):
        assert await directory.verify_token("not-a-jwt") is None
