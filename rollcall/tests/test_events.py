import asyncio

from rollcall.services.events import ATTENDANCE_UPDATED, OTP_ENABLED, EventBroadcaster


class _FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def test_broadcast_drops_dead_connections():
    hub = EventBroadcaster()
    alive, dead = _FakeSocket(), _FakeSocket(fail=True)

    async def scenario():
        await hub.connect(alive)
        await hub.connect(dead)
        return await hub.broadcast(ATTENDANCE_UPDATED, {"lesson_id": 3})

    delivered = asyncio.run(scenario())
    assert delivered == 1
    assert alive.accepted is True
    assert alive.sent == [{"event": "attendance-updated", "data": {"lesson_id": 3}}]
    assert hub.connection_count == 1


def test_websocket_ping(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_lesson_events_are_pushed(client, unit_id, student_ids):
    with client.websocket_connect("/ws") as ws:
        # round-trip once so the socket is registered before anything is broadcast
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        res = client.post("/api/lessons/start", json={"unit_id": unit_id, "venue": "Hall B"})
        lesson_id = res.json()["lesson_id"]
        assert ws.receive_json() == {"event": ATTENDANCE_UPDATED, "data": {"lesson_id": lesson_id}}

        client.post(f"/api/lessons/{lesson_id}/enable-otp")
        assert ws.receive_json() == {"event": OTP_ENABLED, "data": {"lesson_id": lesson_id}}

        lesson = client.get("/api/lessons/active").json()
        row = lesson["attendance"][0]
        client.post(
            "/api/attendance/mark",
            json={"lesson_id": lesson_id, "student_id": row["student_id"], "otp": row["otp"]},
        )
        assert ws.receive_json() == {
            "event": ATTENDANCE_UPDATED,
            "data": {"lesson_id": lesson_id, "student_id": row["student_id"], "status": "present"},
        }


def test_roster_changes_are_pushed(client, unit_id, student_ids):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        client.put(
            f"/api/students/{student_ids[0]}",
            json={"name": "Amina W.", "admission_number": "ADM/001"},
        )
        assert ws.receive_json() == {"event": ATTENDANCE_UPDATED, "data": {"student_id": student_ids[0]}}

        client.delete(f"/api/students/{student_ids[1]}")
        assert ws.receive_json() == {"event": ATTENDANCE_UPDATED, "data": {"student_id": student_ids[1]}}

        client.put(f"/api/units/{unit_id}", json={"name": "Algorithms", "lecturer": "Dr. Otieno"})
        assert ws.receive_json() == {"event": ATTENDANCE_UPDATED, "data": {"unit_id": unit_id}}

        client.delete(f"/api/units/{unit_id}")
        assert ws.receive_json() == {"event": ATTENDANCE_UPDATED, "data": {"unit_id": unit_id}}
