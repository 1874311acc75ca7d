"""API tests for the live-channel binding (/ws)."""

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}
CANDIDATE = {"candidate": "candidate:1 1 udp 2130706431 10.0.0.2 50000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}


def connect(ws):
    frame = ws.receive_json()
    assert frame["event"] == "connected"
    return frame["data"]["peerId"]


def join(ws, room_id="abcd1234"):
    ws.send_json({"event": "join-room", "data": room_id})
    return ws.receive_json()


def test_handshake_between_two_peers(client):
    with client.websocket_connect("/ws") as ws_a:
        a = connect(ws_a)
        assert join(ws_a) == {"event": "room-joined", "data": {"roomId": "abcd1234", "peers": []}}

        with client.websocket_connect("/ws") as ws_b:
            b = connect(ws_b)
            assert join(ws_b) == {"event": "room-joined", "data": {"roomId": "abcd1234", "peers": [a]}}
            assert ws_a.receive_json() == {"event": "new-participant", "data": b}

            ws_a.send_json({"event": "offer", "data": {"targetId": b, "offer": OFFER}})
            assert ws_b.receive_json() == {"event": "offer", "data": {"callerId": a, "offer": OFFER}}

            ws_b.send_json({"event": "answer", "data": {"targetId": a, "answer": ANSWER}})
            assert ws_a.receive_json() == {"event": "answer", "data": {"responderId": b, "answer": ANSWER}}

            ws_a.send_json({"event": "ice-candidate", "data": {"targetId": b, "candidate": CANDIDATE}})
            assert ws_b.receive_json() == {"event": "ice-candidate", "data": {"fromId": a, "candidate": CANDIDATE}}

        # b's socket is gone
        assert ws_a.receive_json() == {"event": "peer-disconnected", "data": b}


def test_explicit_leave_announces_departure(client):
    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
        a = connect(ws_a)
        b = connect(ws_b)
        join(ws_a)
        join(ws_b)
        ws_a.receive_json()  # new-participant

        ws_b.send_json({"event": "leave-room"})

        assert ws_a.receive_json() == {"event": "peer-disconnected", "data": b}


def test_messages_in_send_order(client):
    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
        a = connect(ws_a)
        b = connect(ws_b)
        join(ws_a)
        join(ws_b)
        ws_a.receive_json()

        for index in range(5):
            candidate = dict(CANDIDATE, sdpMLineIndex=index)
            ws_a.send_json({"event": "ice-candidate", "data": {"targetId": b, "candidate": candidate}})

        received = [ws_b.receive_json()["data"]["candidate"]["sdpMLineIndex"] for _ in range(5)]
        assert received == [0, 1, 2, 3, 4]


def test_bad_frames_get_error_and_connection_survives(client):
    with client.websocket_connect("/ws") as ws:
        connect(ws)

        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Frame is not valid JSON"}}

        ws.send_json({"event": "join-room", "data": ""})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Missing roomId"}}

        assert join(ws)["event"] == "room-joined"


def test_relay_to_unknown_peer_is_dropped(client):
    with client.websocket_connect("/ws") as ws:
        a = connect(ws)
        join(ws)

        ws.send_json({"event": "offer", "data": {"targetId": "nobody", "offer": OFFER}})
        ws.send_json({"event": "offer", "data": {"targetId": a, "offer": OFFER}})
        ws.send_json({"event": "shout"})

        # Nothing came back for the two offers; the next frame is the error
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: shout"}}


def test_room_details_lists_live_peers(client):
    with client.websocket_connect("/ws") as ws:
        a = connect(ws)
        join(ws, "room-one")

        details = client.get("/rooms/room-one").json()

    assert details["peers"] == [a]
    assert details["peer_count"] == 1


def test_binary_frame_is_rejected_without_leaving_room(client):
    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
        a = connect(ws_a)
        b = connect(ws_b)
        join(ws_a)
        join(ws_b)
        ws_a.receive_json()  # new-participant

        ws_b.send_bytes(b"\x00\x01")
        assert ws_b.receive_json() == {"event": "error", "data": {"message": "Frames must be text"}}

        ws_b.send_json({"event": "answer", "data": {"targetId": a, "answer": ANSWER}})
        assert ws_a.receive_json() == {"event": "answer", "data": {"responderId": b, "answer": ANSWER}}
        assert sorted(client.get("/rooms/abcd1234").json()["peers"]) == sorted([a, b])
