import pytest

from errors import NotFound, ValidationFailed
from realtime import NEW_NOTIFICATION, user_scope


def test_notify_persists_then_pushes_to_user_room(services, broadcaster, db):
    doc = services.notifications.notify("u1", "Hello", "Welcome aboard", "system")

    assert doc["is_read"] is False
    assert doc["priority"] == "medium"
    assert db["notification"].count_documents({"user_id": "u1"}) == 1
    assert broadcaster.named(NEW_NOTIFICATION) == [(user_scope("u1"), doc)]


def test_notify_rejects_unknown_type_without_raising(services, db):
    assert services.notifications.notify("u1", "Hello", "x", "bogus-type") is None
    assert db["notification"].count_documents({}) == 0


def test_list_for_user_with_filters_and_unread_count(services):
    n = services.notifications
    first = n.notify("u1", "A", "a", "message")
    n.notify("u1", "B", "b", "food-claimed")
    n.notify("u1", "C", "c", "message")
    n.notify("u2", "D", "d", "message")
    n.mark_read(first["_id"], "u1")

    everything = n.list_for_user("u1")
    assert everything["pagination"]["total_items"] == 3
    assert everything["unread_count"] == 2

    unread_messages = n.list_for_user("u1", is_read=False, notification_type="message")
    assert [x["title"] for x in unread_messages["notifications"]] == ["C"]


def test_mark_read_checks_owner(services):
    doc = services.notifications.notify("u1", "A", "a", "system")
    with pytest.raises(NotFound):
        services.notifications.mark_read(doc["_id"], "u2")
    with pytest.raises(NotFound):
        services.notifications.mark_read("garbage", "u1")
    with pytest.raises(ValidationFailed):
        services.notifications.mark_read(doc["_id"], "")

    assert services.notifications.mark_read(doc["_id"], "u1")["is_read"] is True


def test_mark_all_read(services):
    n = services.notifications
    for i in range(3):
        n.notify("u1", f"N{i}", "x", "system")
    assert n.mark_all_read("u1") == 3
    assert n.mark_all_read("u1") == 0
    assert n.list_for_user("u1")["unread_count"] == 0
