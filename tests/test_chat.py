import pytest

from errors import ActorNotFound, NotFound, ValidationFailed
from realtime import NEW_MESSAGE, listing_scope


def test_sender_role_is_derived_from_listing(services, people, listing):
    from_donor = services.chat.send(listing["_id"], people["donor"], "Still available!")
    from_ngo = services.chat.send(listing["_id"], people["ngo"], "Can we pick up at 7?")

    assert from_donor["sender_type"] == "donor"
    assert from_donor["sender_name"] == "Dana Donor"
    assert from_ngo["sender_type"] == "recipient"


def test_message_is_broadcast_to_listing_room(services, people, listing, broadcaster):
    msg = services.chat.send(listing["_id"], people["ngo"], "Hi")
    assert broadcaster.named(NEW_MESSAGE) == [(listing_scope(listing["_id"]), msg)]


def test_recipient_message_notifies_donor(services, people, listing, db):
    services.chat.send(listing["_id"], people["ngo"], "x" * 80)

    note = db["notification"].find_one({"user_id": people["donor"], "type": "message"})
    assert note["related_id"] == listing["_id"]
    assert note["message"] == "City Food Bank: " + "x" * 50 + "..."


def test_donor_message_notifies_live_claimant_only(services, people, listing, db):
    services.chat.send(listing["_id"], people["donor"], "Anyone?")
    assert db["notification"].count_documents({"type": "message"}) == 0

    services.workflow.reserve(listing["_id"], people["worker"])
    services.chat.send(listing["_id"], people["donor"], "See you soon")
    assert db["notification"].count_documents({"type": "message", "user_id": people["worker"]}) == 1

    # once picked up there is no live claimant left to tell
    services.workflow.claim(listing["_id"], people["worker"])
    services.chat.send(listing["_id"], people["donor"], "Enjoy")
    assert db["notification"].count_documents({"type": "message"}) == 1


def test_send_validation(services, people, listing):
    with pytest.raises(ValidationFailed):
        services.chat.send(listing["_id"], people["ngo"], "")
    with pytest.raises(ActorNotFound):
        services.chat.send(listing["_id"], "ghost", "hello")
    with pytest.raises(NotFound):
        services.chat.send("64b7f0000000000000000000", people["ngo"], "hello")


def test_history_is_chronological_and_paginated(services, people, listing):
    for i in range(5):
        services.chat.send(listing["_id"], people["ngo"], f"m{i}")

    page = services.chat.history(listing["_id"], limit=3)
    assert [m["message"] for m in page["messages"]] == ["m0", "m1", "m2"]
    assert page["pagination"]["total_items"] == 5
    rest = services.chat.history(listing["_id"], limit=3, page=2)
    assert [m["message"] for m in rest["messages"]] == ["m3", "m4"]


def test_mark_read_is_bulk_and_idempotent(services, people, listing, db):
    services.chat.send(listing["_id"], people["ngo"], "one")
    services.chat.send(listing["_id"], people["ngo"], "two")
    services.chat.send(listing["_id"], people["donor"], "reply")

    assert services.chat.mark_read(listing["_id"], people["donor"]) == 2
    read_once = {m["message"] for m in db["chatmessage"].find({"is_read": True})}

    assert services.chat.mark_read(listing["_id"], people["donor"]) == 0
    read_twice = {m["message"] for m in db["chatmessage"].find({"is_read": True})}

    assert read_once == read_twice == {"one", "two"}
