from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient

import rollcall.main as main
import rollcall.routers.core as core
import database.db as db


def _count(sql: str, params: tuple = ()) -> int:
    conn = db.connect_db()
    cur = conn.cursor()
    cur.execute(sql, params)
    value = int(cur.fetchone()[0])
    conn.close()
    return value


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client):
    res = client.get("/debug/dbpath")
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_when_enabled(client, monkeypatch):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 200
    assert res.json()["db_path"].endswith("rollcall_test.db")


def test_session_config_reports_defaults(client):
    res = client.get("/config/session")
    assert res.status_code == 200
    assert res.json() == {
        "otp_window_minutes": 20,
        "active_lesson_hours": 24,
        "default_duration_minutes": 60,
    }


def test_create_and_list_students(client):
    client.post("/api/students", json={"name": "Zawadi Moraa", "admission_number": "ADM/100"})
    res = client.post("/api/students", json={"name": " Abel Mutua ", "admission_number": " ADM/101 "})
    assert res.status_code == 200
    data = res.json()
    assert data["id"] >= 1
    assert data["name"] == "Abel Mutua"
    assert data["admission_number"] == "ADM/101"
    assert data["lesson_id"] is None
    assert data["attendance_status"] is None

    res = client.get("/api/students")
    assert res.status_code == 200
    assert [r["name"] for r in res.json()] == ["Abel Mutua", "Zawadi Moraa"]


def test_duplicate_admission_number_is_rejected(client):
    payload = {"name": "First", "admission_number": "ADM/200"}
    assert client.post("/api/students", json=payload).status_code == 200

    res = client.post("/api/students", json={"name": "Second", "admission_number": "ADM/200"})
    assert res.status_code == 409
    assert res.json()["detail"] == "Admission number already exists."


def test_blank_student_fields_are_rejected(client):
    res = client.post("/api/students", json={"name": "  ", "admission_number": "ADM/300"})
    assert res.status_code == 400


def test_update_student(client, student_ids):
    res = client.put(
        f"/api/students/{student_ids[0]}",
        json={"name": "Amina W. Kamau", "admission_number": "ADM/001"},
    )
    assert res.status_code == 200
    assert client.get(f"/api/students/{student_ids[0]}").json()["name"] == "Amina W. Kamau"

    res = client.put(
        f"/api/students/{student_ids[0]}",
        json={"name": "Amina", "admission_number": "ADM/002"},
    )
    assert res.status_code == 409

    res = client.put("/api/students/9999", json={"name": "Ghost", "admission_number": "ADM/999"})
    assert res.status_code == 404


def test_delete_student_cascades_attendance(client, unit_id, student_ids):
    res = client.post("/api/lessons/start", json={"unit_id": unit_id, "venue": "LT 2"})
    assert res.status_code == 200
    assert _count("SELECT COUNT(1) FROM attendance WHERE student_id = ?", (student_ids[1],)) == 1

    res = client.delete(f"/api/students/{student_ids[1]}")
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert _count("SELECT COUNT(1) FROM attendance WHERE student_id = ?", (student_ids[1],)) == 0
    assert _count("SELECT COUNT(1) FROM attendance") == 2

    res = client.delete(f"/api/students/{student_ids[1]}")
    assert res.status_code == 404


def test_units_crud(client):
    res = client.post("/api/units", json={"name": "Operating Systems", "lecturer": "Prof. Njeri"})
    assert res.status_code == 200
    new_id = res.json()["id"]

    res = client.put(f"/api/units/{new_id}", json={"name": "Operating Systems II", "lecturer": "Prof. Njeri"})
    assert res.status_code == 200

    rows = client.get("/api/units").json()
    assert rows == [{"id": new_id, "name": "Operating Systems II", "lecturer": "Prof. Njeri"}]

    assert client.put("/api/units/9999", json={"name": "X", "lecturer": "Y"}).status_code == 404
    assert client.post("/api/units", json={"name": "", "lecturer": "Y"}).status_code == 400


def test_delete_unit_cascades_lessons_and_attendance(client, unit_id, student_ids):
    client.post("/api/lessons/start", json={"unit_id": unit_id, "venue": "LT 1"})
    client.post("/api/lessons/start", json={"unit_id": unit_id, "venue": "LT 1"})

    res = client.delete(f"/api/units/{unit_id}")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "lessons_deleted": 2, "attendance_deleted": 6}

    assert _count("SELECT COUNT(1) FROM lessons") == 0
    assert _count("SELECT COUNT(1) FROM attendance") == 0
    assert _count("SELECT COUNT(1) FROM students") == 3
    assert client.get("/api/lessons/active").json() is None

    assert client.delete(f"/api/units/{unit_id}").status_code == 404


def test_rep_name_round_trip(client):
    assert client.get("/api/settings/rep-name").json() == {"name": ""}

    res = client.post("/api/settings/rep-name", json={"name": " Faith Chebet "})
    assert res.status_code == 200
    assert client.get("/api/settings/rep-name").json() == {"name": "Faith Chebet"}

    client.post("/api/settings/rep-name", json={"name": "Kevin Omondi"})
    assert client.get("/api/settings/rep-name").json() == {"name": "Kevin Omondi"}


def test_license_status_is_seeded_on_startup(client):
    res = client.get("/api/license/status")
    assert res.status_code == 200
    body = res.json()
    assert body["is_valid"] is True
    assert body["days_left"] in (29, 30)
    assert body["expiry"]


def test_license_status_expired(client):
    past = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat(timespec="seconds")
    db.set_setting(db.LICENSE_EXPIRY_KEY, past)

    body = client.get("/api/license/status").json()
    assert body["is_valid"] is False
    assert body["days_left"] == 0


def test_create_tables_migrates_old_lessons_table(client):
    conn = db.connect_db()
    conn.execute("DROP TABLE attendance")
    conn.execute("DROP TABLE lessons")
    conn.execute("""
        CREATE TABLE lessons (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            unit_id INTEGER,
            date TEXT NOT NULL,
            venue TEXT NOT NULL,
            duration INTEGER,
            start_time TEXT
        )
    """)
    conn.commit()
    conn.close()

    db.create_tables()

    conn = db.connect_db()
    cols = {row[1] for row in conn.execute("PRAGMA table_info(lessons)").fetchall()}
    conn.close()
    assert {name for name, _ in db.LESSON_MIGRATION_COLUMNS}.issubset(cols)


def test_mount_client_serves_index_fallback(tmp_path):
    (tmp_path / "assets").mkdir()
    (tmp_path / "index.html").write_text("<html>rollcall</html>", encoding="utf-8")
    (tmp_path / "assets" / "app.js").write_text("console.log('ok')", encoding="utf-8")

    app = FastAPI()
    assert main.mount_client(app, tmp_path) is True

    with TestClient(app) as c:
        assert c.get("/lecturer-portal").text == "<html>rollcall</html>"
        assert c.get("/rep-portal-access").text == "<html>rollcall</html>"
        assert c.get("/assets/app.js").text == "console.log('ok')"
        assert c.get("/api/missing").status_code == 404


def test_mount_client_without_build(tmp_path):
    assert main.mount_client(FastAPI(), tmp_path / "dist") is False


def test_writes_continue_after_rejected_student_update(client, student_ids):
    res = client.put(
        f"/api/students/{student_ids[0]}",
        json={"name": "Amina", "admission_number": "ADM/002"},
    )
    assert res.status_code == 409

    res = client.post("/api/units", json={"name": "Networks", "lecturer": "Dr. Kamau"})
    assert res.status_code == 200

    res = client.put(
        f"/api/students/{student_ids[0]}",
        json={"name": "Amina", "admission_number": "ADM/010"},
    )
    assert res.status_code == 200
    assert client.get(f"/api/students/{student_ids[0]}").json()["admission_number"] == "ADM/010"


def test_deletes_on_schema_without_cascades(client):
    # tables as created by the first release: plain foreign keys, no ON DELETE CASCADE
    conn = db.connect_db()
    conn.executescript("""
        DROP TABLE attendance;
        DROP TABLE lessons;
        DROP TABLE students;
        DROP TABLE units;
        CREATE TABLE students (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            admission_number TEXT UNIQUE NOT NULL
        );
        CREATE TABLE units (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            lecturer TEXT NOT NULL
        );
        CREATE TABLE lessons (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            unit_id INTEGER,
            date TEXT NOT NULL,
            venue TEXT NOT NULL,
            duration INTEGER,
            start_time TEXT,
            FOREIGN KEY(unit_id) REFERENCES units(id)
        );
        CREATE TABLE attendance (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            lesson_id INTEGER,
            student_id INTEGER,
            otp TEXT NOT NULL,
            status TEXT DEFAULT 'pending',
            marked_at TEXT,
            FOREIGN KEY(lesson_id) REFERENCES lessons(id),
            FOREIGN KEY(student_id) REFERENCES students(id)
        );
    """)
    conn.commit()
    conn.close()
    db.create_tables()

    unit = client.post("/api/units", json={"name": "Compilers", "lecturer": "Dr. Wafula"}).json()["id"]
    first = client.post("/api/students", json={"name": "Halima", "admission_number": "ADM/400"}).json()["id"]
    client.post("/api/students", json={"name": "Ian", "admission_number": "ADM/401"})
    assert client.post("/api/lessons/start", json={"unit_id": unit, "venue": "LT 3"}).status_code == 200

    res = client.delete(f"/api/students/{first}")
    assert res.status_code == 200
    assert _count("SELECT COUNT(1) FROM attendance WHERE student_id = ?", (first,)) == 0

    res = client.delete(f"/api/units/{unit}")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "lessons_deleted": 1, "attendance_deleted": 1}
    assert _count("SELECT COUNT(1) FROM lessons") == 0
    assert _count("SELECT COUNT(1) FROM attendance") == 0
