import asyncio

import pytest
from starlette.websockets import WebSocketDisconnect

from realtime import Connection, listing_scope, user_scope

DONOR = "donor-1"
NGO_ID = "ngo-1"


def test_donor_room_receives_status_then_notification(client, services, people, listing):
    with client.websocket_connect(f"/ws?user_id={DONOR}") as ws:
        ws.send_json({"event": "join-user-room", "data": DONOR})
        assert ws.receive_json() == {"event": "joined", "data": {"room": user_scope(DONOR)}}

        services.workflow.reserve(listing["_id"], people["ngo"])

        status = ws.receive_json()
        assert status["event"] == "food-status-updated"
        assert status["data"]["listing_id"] == listing["_id"]
        assert status["data"]["new_status"] == "reserved"

        note = ws.receive_json()
        assert note["event"] == "new-notification"
        assert note["data"]["user_id"] == DONOR
        assert note["data"]["type"] == "food-claimed"


def test_typing_reaches_others_in_the_room_only(client, people, listing):
    room = listing_scope(listing["_id"])
    with client.websocket_connect(f"/ws?user_id={DONOR}") as donor, \
            client.websocket_connect(f"/ws?user_id={NGO_ID}") as ngo:
        for ws in (donor, ngo):
            ws.send_json({"event": "join-food-room", "data": listing["_id"]})
            assert ws.receive_json()["data"] == {"room": room}

        donor.send_json({"event": "typing", "data": {"listing_id": listing["_id"], "is_typing": True}})
        assert ngo.receive_json() == {
            "event": "user-typing",
            "data": {"user_id": DONOR, "user_name": "Dana Donor", "is_typing": True},
        }

        # the sender's next frame is the reply to its next event, not its own echo
        donor.send_json({"event": "wave"})
        assert donor.receive_json()["event"] == "error"


def test_location_shared_with_room(client, people, listing):
    with client.websocket_connect(f"/ws?user_id={DONOR}") as donor, \
            client.websocket_connect(f"/ws?user_id={NGO_ID}") as ngo:
        for ws in (donor, ngo):
            ws.send_json({"event": "join-food-room", "data": listing["_id"]})
            ws.receive_json()

        ngo.send_json({
            "event": "share-location",
            "data": {"listing_id": listing["_id"], "latitude": 18.5, "longitude": 73.9},
        })
        frame = donor.receive_json()
        assert frame["event"] == "location-shared"
        assert frame["data"]["user_name"] == "City Food Bank"
        assert frame["data"]["latitude"] == 18.5


def test_signals_require_joining_the_room(client, people, listing):
    with client.websocket_connect(f"/ws?user_id={DONOR}") as ws:
        ws.send_json({"event": "typing", "data": {"listing_id": listing["_id"], "is_typing": True}})
        assert ws.receive_json()["event"] == "error"


def test_cannot_join_someone_elses_room(client, people):
    with client.websocket_connect(f"/ws?user_id={NGO_ID}") as ws:
        ws.send_json({"event": "join-user-room", "data": DONOR})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["message"] == "Not allowed to join this room"


def test_anonymous_socket_gets_global_events_only(client, services, people, listing):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "join-user-room", "data": DONOR})
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"event": "join-food-room", "data": "64b7f0000000000000000000"})
        assert ws.receive_json()["data"]["message"] == "Food listing not found"

        services.workflow.delete_listing(listing["_id"], DONOR)
        assert ws.receive_json() == {"event": "food-listing-deleted", "data": {"id": listing["_id"]}}


def test_unknown_user_is_refused(client, people):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws?user_id=ghost") as ws:
            ws.receive_json()
    assert excinfo.value.code == 1008


def test_room_messages_arrive_over_the_socket(client, services, people, listing):
    with client.websocket_connect(f"/ws?user_id={DONOR}") as ws:
        ws.send_json({"event": "join-food-room", "data": listing["_id"]})
        ws.receive_json()

        services.chat.send(listing["_id"], people["worker"], "On my way")
        frame = ws.receive_json()
        assert frame["event"] == "new-message"
        assert frame["data"]["message"] == "On my way"
        assert frame["data"]["sender_type"] == "recipient"


def test_malformed_frames_get_errors_without_dropping_the_socket(client, people, listing):
    with client.websocket_connect(f"/ws?user_id={DONOR}") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["data"]["message"] == "Frames must be JSON"

        ws.send_json(["join-food-room", listing["_id"]])
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"event": "typing", "data": "oops"})
        frame = ws.receive_json()
        assert frame == {"event": "error", "data": {"event": "typing", "message": "Malformed event data"}}

        # the connection is still usable afterwards
        ws.send_json({"event": "join-food-room", "data": listing["_id"]})
        assert ws.receive_json() == {"event": "joined", "data": {"room": listing_scope(listing["_id"])}}


class StalledSocket:
    """Accepts close() but never drains; stands in for a client that stopped reading."""

    def __init__(self):
        self.close_codes = []

    async def close(self, code=1000):
        self.close_codes.append(code)


def test_stalled_client_is_closed_when_its_queue_fills():
    async def scenario():
        socket = StalledSocket()
        conn = Connection(socket, asyncio.get_running_loop(), user_id="slow", max_pending=2)
        for i in range(4):
            conn.push("new-food-listing", {"n": i})
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return socket, conn

    socket, conn = asyncio.run(scenario())

    assert conn.closed is True
    assert socket.close_codes == [1013]
    assert [f["data"]["n"] for f in (conn.queue.get_nowait(), conn.queue.get_nowait())] == [0, 1]
