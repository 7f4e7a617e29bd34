import pytest
from fastapi.testclient import TestClient

import rollcall.config as config
import rollcall.main as main
import rollcall.routers.core as core
import database.db as db


@pytest.fixture()
def client(tmp_path, monkeypatch):
    test_db = tmp_path / "rollcall_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)
    monkeypatch.setattr(main, "DB_PATH", test_db, raising=False)
    monkeypatch.setattr(core, "DB_PATH", test_db)

    db.create_tables()

    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def unit_id(client):
    res = client.post("/api/units", json={"name": "Data Structures", "lecturer": "Dr. Otieno"})
    assert res.status_code == 200
    return res.json()["id"]


@pytest.fixture()
def student_ids(client):
    ids = []
    for name, adm in [("Amina Wanjiru", "ADM/001"), ("Brian Kiptoo", "ADM/002"), ("Cynthia Achieng", "ADM/003")]:
        res = client.post("/api/students", json={"name": name, "admission_number": adm})
        assert res.status_code == 200
        ids.append(res.json()["id"])
    return ids
