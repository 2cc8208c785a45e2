"""Tests for the room WebSocket protocol and room lookup endpoint."""
from air_exchange.rooms.schemas import DEFAULT_EXPIRY_MS

from conftest import START_MS


def join(ws, room_id, client_id=None):
    """Join a room and return the init snapshot."""
    data = {"roomId": room_id}
    if client_id:
        data["clientId"] = client_id
    ws.send_json({"type": "joinRoom", "data": data})
    count = ws.receive_json()
    assert count["type"] == "userCountUpdate"
    init = ws.receive_json()
    assert init["type"] == "init"
    return init["data"]


def send(ws, event, data=None):
    ws.send_json({"type": event, "data": data})


class TestJoin:
    """Tests for joining rooms and presence counts."""

    def test_join_new_room_gets_empty_snapshot(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            init = join(ws, "abc", "alice")
            assert init == {
                "text": "",
                "lastTextUpdate": None,
                "files": [],
                "savedTexts": [],
                "expiry": DEFAULT_EXPIRY_MS,
                "userCount": 1,
            }

    def test_join_with_bare_room_id(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            send(ws, "joinRoom", "abc")
            assert ws.receive_json() == {"type": "userCountUpdate", "data": 1}
            assert ws.receive_json()["type"] == "init"

    def test_second_user_and_disconnect(self, api_client, services):
        with api_client.websocket_connect("/ws") as first:
            join(first, "abc", "alice")
            with api_client.websocket_connect("/ws") as second:
                init = join(second, "abc", "bob")
                assert init["userCount"] == 2
                assert first.receive_json() == {"type": "userCountUpdate", "data": 2}
                second.close()
                assert first.receive_json() == {"type": "userCountUpdate", "data": 1}

            assert services.registry.get("abc").users == {"alice"}

    def test_room_pruned_after_last_user_leaves(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
        assert "abc" not in services.registry
        assert api_client.get("/rooms/abc").status_code == 404

    def test_join_sees_existing_text(self, api_client):
        with api_client.websocket_connect("/ws") as first:
            join(first, "abc", "alice")
            send(first, "textUpdate", "shared")
            send(first, "saveText", "sync")
            first.receive_json()
            with api_client.websocket_connect("/ws") as second:
                init = join(second, "abc", "bob")
                assert init["text"] == "shared"
                assert init["lastTextUpdate"] == START_MS

    def test_join_without_room_id_is_error(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            send(ws, "joinRoom", {"clientId": "alice"})
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["data"]["message"] == "Room ID required"


class TestTextEvents:
    """Tests for shared text and cursor events."""

    def test_text_update_reaches_others_but_not_sender(self, api_client):
        with api_client.websocket_connect("/ws") as sender, \
                api_client.websocket_connect("/ws") as receiver:
            join(sender, "abc", "alice")
            join(receiver, "abc", "bob")
            sender.receive_json()  # userCountUpdate for bob

            send(sender, "textUpdate", "<b>hi</b>")
            assert receiver.receive_json() == {"type": "textUpdate", "data": "<b>hi</b>"}

            # The next frame the sender sees is the clear, not an echo.
            send(sender, "clearText")
            assert sender.receive_json() == {"type": "clearText", "data": None}
            assert receiver.receive_json() == {"type": "clearText", "data": None}

    def test_text_update_stays_in_room(self, api_client):
        with api_client.websocket_connect("/ws") as sender, \
                api_client.websocket_connect("/ws") as outsider:
            join(sender, "one", "alice")
            join(outsider, "two", "bob")

            send(sender, "textUpdate", "private")
            send(sender, "clearText")
            assert sender.receive_json()["type"] == "clearText"

            send(outsider, "clearText")
            assert outsider.receive_json() == {"type": "clearText", "data": None}

    def test_clear_text_resets_room(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "textUpdate", "hello")
            send(ws, "clearText")
            assert ws.receive_json()["type"] == "clearText"
            room = services.registry.get("abc")
            assert room.text == ""
            assert room.lastTextUpdate is None

    def test_cursor_update_carries_client_id(self, api_client):
        with api_client.websocket_connect("/ws") as sender, \
                api_client.websocket_connect("/ws") as receiver:
            join(sender, "abc", "alice")
            join(receiver, "abc", "bob")

            send(sender, "cursorUpdate", {"line": 3, "ch": 7})
            assert receiver.receive_json() == {
                "type": "cursorUpdate",
                "data": {"id": "alice", "position": {"line": 3, "ch": 7}},
            }


class TestRoomSettings:
    """Tests for expiry and saved texts."""

    def test_set_expiry_broadcasts(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "setExpiry", {"roomId": "abc", "expiryTime": 60_000})
            assert ws.receive_json() == {"type": "expiryUpdate", "data": 60_000}
            assert services.registry.get("abc").expiry == 60_000

    def test_set_expiry_bare_value_uses_joined_room(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "setExpiry", 1000)
            assert ws.receive_json() == {"type": "expiryUpdate", "data": 1000}

    def test_set_expiry_rejects_non_positive(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "setExpiry", {"expiryTime": 0})
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["data"]["event"] == "setExpiry"
            assert services.registry.get("abc").expiry == DEFAULT_EXPIRY_MS

    def test_set_expiry_unknown_room(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            send(ws, "setExpiry", {"roomId": "ghost", "expiryTime": 1000})
            assert ws.receive_json()["type"] == "error"

    def test_save_and_delete_saved_text(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "saveText", "remember me")
            assert ws.receive_json() == {
                "type": "savedText",
                "data": {"text": "remember me", "timestamp": START_MS, "expiry": DEFAULT_EXPIRY_MS},
            }

            send(ws, "saveText", {"text": "short", "expiry": 5000})
            assert ws.receive_json()["data"]["expiry"] == 5000

            send(ws, "deleteSavedText", 0)
            assert ws.receive_json() == {"type": "deleteSavedText", "data": 0}
            assert [s.text for s in services.registry.get("abc").savedTexts] == ["short"]

    def test_fractional_index_rejected(self, api_client, services):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "saveText", "first")
            send(ws, "saveText", "second")
            ws.receive_json()
            ws.receive_json()

            send(ws, "deleteSavedText", 1.9)
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["data"]["message"] == "index must be a whole number"
            assert len(services.registry.get("abc").savedTexts) == 2

            send(ws, "deleteSavedText", 1.0)
            assert ws.receive_json() == {"type": "deleteSavedText", "data": 1}

    def test_delete_saved_text_out_of_range(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "deleteSavedText", {"index": 3})
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["data"]["event"] == "deleteSavedText"


class TestProtocolErrors:
    """Tests for malformed and out-of-order frames."""

    def test_invalid_json(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid JSON"}}

    def test_binary_frame(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid frame"}}
            join(ws, "abc", "alice")

    def test_missing_type(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_json({"data": "x"})
            assert ws.receive_json()["type"] == "error"

    def test_event_before_join(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            send(ws, "textUpdate", "hi")
            assert ws.receive_json() == {
                "type": "error",
                "data": {"message": "Join a room first", "event": "textUpdate"},
            }

    def test_unknown_event(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            join(ws, "abc", "alice")
            send(ws, "bogus")
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["data"]["message"] == "Unknown event: bogus"

    def test_connection_survives_errors(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_text("{")
            ws.receive_json()
            join(ws, "abc", "alice")


def test_get_room_snapshot(api_client):
    with api_client.websocket_connect("/ws") as ws:
        join(ws, "abc", "alice")
        send(ws, "textUpdate", "hello")
        send(ws, "saveText", "kept")
        ws.receive_json()

        response = api_client.get("/rooms/abc")
        assert response.status_code == 200
        body = response.json()
        assert body["text"] == "hello"
        assert body["userCount"] == 1
        assert body["savedTexts"][0]["text"] == "kept"


def test_get_unknown_room(api_client):
    response = api_client.get("/rooms/nope")
    assert response.status_code == 404
