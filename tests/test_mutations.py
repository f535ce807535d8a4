import asyncio

from PySide6.QtCore import QCoreApplication

from event_gallery.commands import ToggleLikeCommand
from event_gallery.domain import EventContext, Principal
from event_gallery.mutations import MutationCoordinator, can_delete, storage_path_from_url
from event_gallery.notifications import Level, NotificationBus
from event_gallery.repository import MediaRepository
from event_gallery.selection import SelectionModel

CREATOR = Principal(id="u-creator", email="carol@example.com")


def _setup(backend):
    app = QCoreApplication.instance() or QCoreApplication([])
    repo = MediaRepository(backend.rows, backend.identity)
    asyncio.run(repo.reload("evt-1"))
    bus = NotificationBus()
    coordinator = MutationCoordinator(repo, backend.objects, backend.identity, bus=bus)
    return repo, coordinator, bus


def _likes(backend):
    return {(r["media_id"], r["user_id"]) for r in backend.rows.tables.get("likes", [])}


def test_like_is_optimistic_and_persisted(gallery):
    repo, coordinator, _ = _setup(gallery)
    reloads_before = gallery.rows.count("select", "events")

    assert asyncio.run(coordinator.toggle_like("m3"))

    item = repo.get("m3")
    assert (item.likes_count, item.user_has_liked) == (1, True)
    assert ("m3", "u-me") in _likes(gallery)
    # No reload on success
    assert gallery.rows.count("select", "events") == reloads_before


def test_unlike(gallery):
    repo, coordinator, _ = _setup(gallery)

    assert asyncio.run(coordinator.toggle_like("m2"))

    item = repo.get("m2")
    assert (item.likes_count, item.user_has_liked) == (1, False)
    assert ("m2", "u-me") not in _likes(gallery)


def test_failed_like_reverts(gallery):
    repo, coordinator, bus = _setup(gallery)
    gallery.rows.fail_on("likes", "insert")
    seen = []
    repo.items_changed.connect(lambda items: seen.append(next(i for i in items if i.id == "m3").likes_count))

    assert not asyncio.run(coordinator.toggle_like("m3"))

    # Incremented immediately, then reverted
    assert seen == [1, 0]
    item = repo.get("m3")
    assert (item.likes_count, item.user_has_liked) == (0, False)
    assert bus.last.level is Level.ERROR
    assert bus.last.title == "Like failed"


def test_taps_while_in_flight_are_ignored(gallery):
    repo, coordinator, _ = _setup(gallery)

    async def double_tap():
        return await asyncio.gather(coordinator.toggle_like("m3"), coordinator.toggle_like("m3"))

    assert asyncio.run(double_tap()) == [True, False]
    assert repo.get("m3").likes_count == 1


def test_like_requires_principal(gallery):
    repo, coordinator, bus = _setup(gallery)
    gallery.identity.principal = None

    assert not asyncio.run(coordinator.toggle_like("m3"))
    assert repo.get("m3").likes_count == 0
    assert bus.last.level is Level.ERROR


def test_like_unknown_item(gallery):
    _, coordinator, _ = _setup(gallery)
    assert not asyncio.run(coordinator.toggle_like("nope"))


def test_toggle_like_command_undo(gallery):
    repo, _, _ = _setup(gallery)
    cmd = ToggleLikeCommand(repo, "m1")
    cmd.execute()
    assert cmd.liked_after
    assert repo.get("m1").likes_count == 2
    cmd.undo()
    assert (repo.get("m1").likes_count, repo.get("m1").user_has_liked) == (1, False)


def test_owner_deletes_own_photo(gallery):
    gallery.add_media("mine", "u-me", 20)
    repo, coordinator, bus = _setup(gallery)
    path = "evt-1/photos/u-me_20.jpg"

    outcome = asyncio.run(coordinator.delete("mine"))

    assert outcome.ok and outcome.blob_deleted
    assert path not in gallery.objects.blobs
    assert "mine" not in gallery.media_ids()
    assert repo.get("mine") is None
    assert bus.last.level is Level.SUCCESS


def test_delete_of_someone_elses_photo_is_refused(gallery):
    repo, coordinator, bus = _setup(gallery)

    outcome = asyncio.run(coordinator.delete("m2"))

    assert not outcome.ok
    assert outcome.error == "not allowed"
    assert "m2" in gallery.media_ids()
    assert repo.get("m2") is not None
    assert bus.last.level is Level.ERROR


def test_blob_failure_still_deletes_row(gallery):
    gallery.identity.principal = CREATOR
    repo, coordinator, bus = _setup(gallery)
    gallery.objects.fail_remove.add("evt-1/photos/u-bob_2.jpg")

    outcome = asyncio.run(coordinator.delete("m2"))

    assert outcome.ok
    assert not outcome.blob_deleted
    assert outcome.error.startswith("storage:")
    assert "m2" not in gallery.media_ids()
    assert repo.get("m2") is None
    # The user hears about the leftover file, not a plain success
    assert [n.level for n in bus.history] == [Level.ERROR]
    assert "file could not be deleted" in bus.last.message
    assert "storage:" in bus.last.message


def test_row_failure_keeps_item(gallery):
    gallery.identity.principal = CREATOR
    repo, coordinator, _ = _setup(gallery)
    gallery.rows.fail_on("media", "delete")

    outcome = asyncio.run(coordinator.delete("m2"))

    assert not outcome.ok
    assert outcome.blob_deleted
    assert "row:" in outcome.error
    assert repo.get("m2") is not None


def test_bulk_delete_continues_past_blob_failure(gallery):
    gallery.identity.principal = CREATOR
    repo, coordinator, bus = _setup(gallery)
    selection = SelectionModel()
    selection.enter_mode()
    selection.set(["m1", "m2", "m3"])
    gallery.objects.fail_remove.add("evt-1/photos/u-bob_2.jpg")
    reloads_before = gallery.rows.count("select", "events")

    summary = asyncio.run(coordinator.bulk_delete(selection.selected(), selection))

    assert (summary.succeeded, summary.failed, summary.total) == (3, 0, 3)
    assert not summary.outcomes[1].blob_deleted
    assert gallery.media_ids() == set()
    assert selection.selected() == []
    assert not selection.selection_mode
    assert gallery.rows.count("select", "events") == reloads_before + 1
    assert repo.items == []
    assert bus.last.message == "3 of 3 succeeded"


def test_bulk_delete_reports_partial_failure(gallery):
    repo, coordinator, bus = _setup(gallery)
    gallery.add_media("mine", "u-me", 20)
    asyncio.run(repo.reload("evt-1"))

    summary = asyncio.run(coordinator.bulk_delete(["mine", "m1", "ghost"]))

    assert (summary.succeeded, summary.failed) == (1, 2)
    assert [o.error for o in summary.outcomes[1:]] == ["not allowed", "not found"]
    assert summary.message == "1 of 3 photos deleted"
    assert bus.last.level is Level.ERROR
    assert bus.last.message == "1 of 3 succeeded"


def test_can_delete_rule():
    event = EventContext(id="evt-1", created_by="u-creator")
    repo_item = type("Item", (), {"user_id": "u-bob"})()
    assert can_delete(repo_item, "u-creator", event)
    assert can_delete(repo_item, "u-bob", event)
    assert not can_delete(repo_item, "u-me", event)
    assert not can_delete(repo_item, None, event)


def test_storage_path_from_url():
    url = "https://cdn.test/storage/v1/object/public/media/evt-1/photos/u%201_5_0.jpg"
    assert storage_path_from_url(url) == "evt-1/photos/u 1_5_0.jpg"
    assert storage_path_from_url("evt-1/photos/a.jpg") == "evt-1/photos/a.jpg"
    assert storage_path_from_url("https://elsewhere.test/img.jpg") == ""
    assert storage_path_from_url("") == ""
