"""
Image-set reconciler tests.

Covers single-slot replacement, sub-service array reconciliation, id/slug
validation and the upload journal used for rollback.
"""

import pytest

from service_catalog.core.errors import ErrorCode, StorageWriteError, ValidationError
from service_catalog.schemas.service_category import ImageAttachment, SubService
from service_catalog.services.image_reconciler import ImageSetReconciler, remove_attachments
from tests.conftest import make_entry, make_upload


FOLDER = "services/sub"


async def seed(store, label: str) -> ImageAttachment:
    return await store.put(label.encode(), f"{label}.png", FOLDER)


@pytest.mark.unit
class TestReconcileSingle:
    async def test_no_upload_keeps_previous(self, memory_store):
        previous = await seed(memory_store, "old")
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_single(previous, None, "services/main")

        assert final == previous
        assert to_delete is None
        assert reconciler.uploaded == []

    async def test_upload_replaces_previous(self, memory_store):
        previous = await seed(memory_store, "old")
        reconciler = ImageSetReconciler(memory_store)
        upload = make_upload("new")

        final, to_delete = await reconciler.reconcile_single(previous, upload, "services/main")

        assert final != previous
        assert to_delete == previous
        assert memory_store.resolve(final.locator) == upload.data
        assert final.deletion_handle.startswith("services/main/")
        assert reconciler.uploaded == [final]
        # Deleting is the caller's job, after the new state is committed.
        assert memory_store.holds(previous)

    async def test_upload_without_previous(self, memory_store):
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_single(None, make_upload("first"), "services/main")

        assert final is not None
        assert to_delete is None

    async def test_failed_upload_raises_write_error(self, memory_store):
        memory_store.fail_put_calls = {1}
        reconciler = ImageSetReconciler(memory_store)

        with pytest.raises(StorageWriteError):
            await reconciler.reconcile_single(None, make_upload(), "services/main")

        assert reconciler.uploaded == []


@pytest.mark.unit
class TestReconcileArray:
    async def make_previous(self, store):
        return [
            SubService(id="a", name="Logo", slug="logo", description="Logos", image=await seed(store, "a")),
            SubService(id="b", name="Brand", slug="brand", description="Brands", image=await seed(store, "b")),
            SubService(id="c", name="Print", slug="print", description="Print", image=None),
        ]

    async def test_untouched_entries_keep_images(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [make_entry(item.name, item.slug, id=item.id) for item in previous]
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert [item.id for item in final] == ["a", "b", "c"]
        assert [item.image for item in final] == [item.image for item in previous]
        assert to_delete == []
        assert reconciler.uploaded == []

    async def test_upload_replaces_only_that_entry(self, memory_store):
        previous = await self.make_previous(memory_store)
        upload = make_upload("b2")
        incoming = [
            make_entry("Logo", "logo", id="a"),
            make_entry("Brand", "brand", id="b", upload=upload),
            make_entry("Print", "print", id="c"),
        ]
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert final[0].image == previous[0].image
        assert memory_store.resolve(final[1].image.locator) == upload.data
        assert final[2].image is None
        assert to_delete == [previous[1].image]

    async def test_dropped_entries_release_their_images(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [make_entry("Print", "print", id="c")]
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert [item.id for item in final] == ["c"]
        assert set(to_delete) == {previous[0].image, previous[1].image}

    async def test_explicit_empty_image_url_removes_image(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [
            make_entry("Logo", "logo", id="a", image_url=""),
            make_entry("Brand", "brand", id="b"),
        ]
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert final[0].image is None
        assert final[1].image == previous[1].image
        # "c" is dropped but had no image.
        assert to_delete == [previous[0].image]

    async def test_echoed_image_url_keeps_image(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [make_entry("Logo", "logo", id="a", image_url=previous[0].image.locator)]
        reconciler = ImageSetReconciler(memory_store)

        final, _ = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert final[0].image == previous[0].image

    async def test_new_entries_get_fresh_ids(self, memory_store):
        upload = make_upload("new")
        incoming = [make_entry("Motion", upload=upload), make_entry("Copy")]
        reconciler = ImageSetReconciler(memory_store)

        final, to_delete = await reconciler.reconcile_array([], incoming, FOLDER)

        assert len({item.id for item in final}) == 2
        assert memory_store.resolve(final[0].image.locator) == upload.data
        assert final[1].image is None
        assert to_delete == []

    async def test_output_follows_incoming_order(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [
            make_entry("Print", "print", id="c"),
            make_entry("Logo", "logo", id="a"),
        ]
        reconciler = ImageSetReconciler(memory_store)

        final, _ = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert [item.slug for item in final] == ["print", "logo"]

    async def test_scalar_fields_come_from_incoming(self, memory_store):
        previous = await self.make_previous(memory_store)
        incoming = [make_entry("Logo Design", "logo-design", id="a", description="New copy")]
        reconciler = ImageSetReconciler(memory_store)

        final, _ = await reconciler.reconcile_array(previous, incoming, FOLDER)

        assert final[0].name == "Logo Design"
        assert final[0].slug == "logo-design"
        assert final[0].description == "New copy"
        assert final[0].image == previous[0].image


@pytest.mark.unit
class TestValidateIncoming:
    async def test_unknown_id_rejected_before_upload(self, memory_store):
        reconciler = ImageSetReconciler(memory_store)

        with pytest.raises(ValidationError) as exc_info:
            await reconciler.reconcile_array(
                [], [make_entry("Logo", id="missing", upload=make_upload())], FOLDER
            )

        assert exc_info.value.code == ErrorCode.VAL_UNKNOWN_SUB_SERVICE
        assert memory_store.put_calls == 0

    async def test_repeated_id_rejected(self, memory_store):
        previous = [SubService(id="a", name="Logo", slug="logo", description="Logos")]

        with pytest.raises(ValidationError) as exc_info:
            ImageSetReconciler.validate_incoming(
                previous,
                [make_entry("Logo", "logo", id="a"), make_entry("Logo 2", "logo-2", id="a")],
            )

        assert exc_info.value.code == ErrorCode.VAL_INVALID_SUB_SERVICES

    async def test_repeated_slug_rejected(self, memory_store):
        with pytest.raises(ValidationError) as exc_info:
            ImageSetReconciler.validate_incoming([], [make_entry("Logo", "logo"), make_entry("Logos", "logo")])

        assert exc_info.value.details == {"slug": "logo"}


@pytest.mark.unit
class TestJournalAndRollback:
    async def test_partial_failure_journals_successes(self, memory_store):
        memory_store.fail_put_calls = {2}
        incoming = [make_entry(f"Item {i}", upload=make_upload(f"u{i}")) for i in range(3)]
        reconciler = ImageSetReconciler(memory_store)

        with pytest.raises(StorageWriteError):
            await reconciler.reconcile_array([], incoming, FOLDER)

        assert len(reconciler.uploaded) == 2
        assert all(memory_store.holds(attachment) for attachment in reconciler.uploaded)

    async def test_rollback_removes_every_upload(self, memory_store):
        reconciler = ImageSetReconciler(memory_store)
        await reconciler.reconcile_single(None, make_upload("m"), "services/main")
        await reconciler.reconcile_array([], [make_entry("Logo", upload=make_upload("s"))], FOLDER)
        uploaded = reconciler.uploaded

        await reconciler.rollback()

        assert len(uploaded) == 2
        assert memory_store.objects == {}
        assert reconciler.uploaded == []

    async def test_rollback_survives_delete_failures(self, memory_store):
        reconciler = ImageSetReconciler(memory_store)
        await reconciler.reconcile_single(None, make_upload(), "services/main")
        memory_store.fail_removes = True

        await reconciler.rollback()

    async def test_unexpected_put_error_is_wrapped(self, memory_store):
        async def broken_put(data, suggested_name, folder):
            raise RuntimeError("boom")

        memory_store.put = broken_put
        reconciler = ImageSetReconciler(memory_store)

        with pytest.raises(StorageWriteError) as exc_info:
            await reconciler.reconcile_single(None, make_upload(), "services/main")

        assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.unit
class TestRemoveAttachments:
    async def test_counts_failures_without_raising(self, memory_store):
        attachments = [await seed(memory_store, "x"), await seed(memory_store, "y")]
        memory_store.fail_removes = True

        failed = await remove_attachments(memory_store, attachments, reason="test")

        assert failed == 2
        assert all(memory_store.holds(attachment) for attachment in attachments)

    async def test_removes_everything(self, memory_store):
        attachments = [await seed(memory_store, "x"), await seed(memory_store, "y")]

        failed = await remove_attachments(memory_store, attachments, reason="test")

        assert failed == 0
        assert memory_store.objects == {}

    async def test_empty_is_noop(self, memory_store):
        assert await remove_attachments(memory_store, [], reason="test") == 0

    async def test_unexpected_error_logged_not_raised(self, memory_store):
        attachment = await seed(memory_store, "x")

        async def broken_remove(handle):
            raise RuntimeError(f"denied: {handle}")

        memory_store.remove = broken_remove

        assert await remove_attachments(memory_store, [attachment], reason="test") == 1
