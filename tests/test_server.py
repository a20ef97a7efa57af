import os

import numpy as np
import pytest

from boss_lab.config import LabConfig
from boss_lab.server import LabSession, SimulationThread, create_app


@pytest.fixture
def session(tmp_path):
    s = LabSession(LabConfig(seed=0, background_training=False, export_dir=str(tmp_path)))
    yield s
    s.close()


@pytest.fixture
def client(session):
    app = create_app(session)
    app.config["TESTING"] = True
    return app.test_client()


def fill(session, n=10):
    rng = np.random.default_rng(1)
    m = session.controller.morphology
    for _ in range(n):
        session.controller.add_training_sample(rng.normal(size=m.sensor_count),
                                               rng.uniform(-1, 1, m.motor_count), 75.0)


def test_index(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"Boss Lab" in r.data


def test_status_after_some_frames(client, session):
    for _ in range(10):
        session.step(1 / 60)
    data = client.get("/status").get_json()
    assert data["controller"]["robot"] == "biped"
    assert data["controller"]["initialized"]
    assert data["telemetry"] is not None
    assert len(data["telemetry"]["sensors"]) == 28
    assert set(data["robots"]) == {"biped", "quadruped", "spider"}
    assert data["logs"]


def test_train_now_without_data(client):
    data = client.post("/train").get_json()
    assert data["status"] == "insufficient_data"


def test_train_now_with_data(client, session):
    fill(session)
    data = client.post("/train").get_json()
    assert data["status"] == "trained"
    assert data["samples"] == 10


def test_toggle_training(client, session):
    assert client.post("/training").get_json()["training_active"] is False
    assert session.controller.training_active is False
    assert client.post("/training", json={"active": True}).get_json()["training_active"] is True


def test_switch_robot(client, session):
    old = session.controller
    r = client.post("/robot", json={"robot": "spider"})
    assert r.status_code == 200
    assert session.controller is not old
    assert session.controller.morphology.motor_count == 18
    assert session.world.morphology.id == "spider"


def test_unknown_robot(client, session):
    r = client.post("/robot", json={"robot": "tripod"})
    assert r.status_code == 400
    assert "tripod" in r.get_json()["error"]
    assert session.controller.morphology.id == "biped"


def test_speed_is_clamped(client, session):
    assert client.post("/speed", json={"speed": 10}).get_json()["simulation_speed"] == 4.0
    assert session.scheduler.simulation_speed == 4.0
    assert client.post("/speed", json={"speed": 0.01}).get_json()["simulation_speed"] == 0.25
    assert client.post("/speed", json={"speed": "fast"}).status_code == 400


def test_export_without_training(client):
    r = client.get("/export")
    assert r.status_code == 400
    assert r.get_json()["success"] is False


def test_export_and_import(client, session, tmp_path):
    fill(session)
    client.post("/train")
    r = client.get("/export")
    assert r.status_code == 200
    assert "attachment" in r.headers["Content-Disposition"]
    doc = r.get_json()
    assert doc["metadata"]["robot_type"] == "biped"
    assert any(name.endswith(".safetensors.json") for name in os.listdir(tmp_path))

    client.post("/reset_model")
    assert client.post("/import", json=doc).status_code == 200
    x = np.zeros(28)
    assert session.controller.brain.predict(x).shape == (8,)


def test_import_rejects_garbage(client):
    assert client.post("/import", json={"nope": 1}).status_code == 400


@pytest.mark.parametrize("doc", [
    {"tensors": []},
    {"tensors": {}, "metadata": []},
    {"tensors": {"layer_0_0.weight": {"dtype": "F32", "shape": 5, "data": [0.0]}}},
    {"tensors": {"layer_0_0.weight": {"dtype": "F32", "shape": [1], "data": {"a": 1}}}},
    {"tensors": {"layer_0_0.weight": {"dtype": "F32", "shape": [1], "data": [None]}}},
    {"tensors": {"layer_0_0.weight": [1, 2]}},
    {"tensors": {}, "metadata": {"sensor_count": [28]}},
])
def test_import_rejects_malformed_documents(client, doc):
    r = client.post("/import", json=doc)
    assert r.status_code == 400
    assert r.get_json()["error"]


def test_train_now_runs_off_the_simulation_thread(tmp_path):
    session = LabSession(LabConfig(seed=0, background_training=True, export_dir=str(tmp_path)))
    try:
        client = create_app(session).test_client()
        fill(session)
        assert client.post("/train").get_json()["status"] == "pending"
        session.step(1 / 60)
        assert session.controller.brain.wait(30).status.value == "trained"
    finally:
        session.close()


def test_import_rejects_other_robot(client, session):
    fill(session)
    client.post("/train")
    doc = client.get("/export").get_json()
    client.post("/robot", json={"robot": "quadruped"})
    assert client.post("/import", json=doc).status_code == 400


def test_reset_all_and_respawn(client, session):
    fill(session)
    assert client.post("/reset_all").status_code == 200
    assert len(session.controller.buffer) == 0
    assert not session.controller.is_initialized
    episodes = session.scheduler.episode_count
    client.post("/respawn")
    assert session.scheduler.episode_count == episodes + 1


def test_simulation_thread_steps_and_stops(session):
    sim = SimulationThread(session, frame_dt=0.005)
    sim.start()
    try:
        for _ in range(200):
            if session.controller.is_initialized:
                break
            sim.join(0.01)
    finally:
        sim.stop()
        sim.join(2.0)
    assert not sim.is_alive()
    assert session.controller.is_initialized
    assert session.state.status == "STOPPED"
