import numpy as np
import pytest

from boss_lab.actuation import ActionPostProcessor, Actuator
from boss_lab.morphology import BIPED

from conftest import make_bodies


def test_single_step_from_rest():
    post = ActionPostProcessor(3)
    out = post.process(np.array([1.0, -1.0, 0.01]))
    # limited to +/-0.05, then 0.7 * limited + 0.3 * 0
    assert out == pytest.approx([0.035, -0.035, 0.007])
    assert post.last_action == pytest.approx(out)


def test_change_never_exceeds_rate_limit():
    rng = np.random.default_rng(7)
    post = ActionPostProcessor(8)
    prev = post.last_action.copy()
    for _ in range(500):
        out = post.process(rng.uniform(-1, 1, 8))
        assert np.all(np.abs(out - prev) <= 0.05 + 1e-12)
        assert np.all(np.abs(out) <= 1.0)
        prev = out.copy()


def test_processes_in_place():
    post = ActionPostProcessor(2)
    raw = np.array([0.5, 0.5])
    out = post.process(raw)
    assert out is raw


def test_converges_toward_constant_command():
    post = ActionPostProcessor(1)
    for _ in range(200):
        out = post.process(np.array([0.8]))
    assert out[0] == pytest.approx(0.8, abs=1e-3)


def test_nan_command_is_neutralised():
    post = ActionPostProcessor(2)
    out = post.process(np.array([np.nan, np.inf]))
    assert np.all(np.isfinite(out))


def test_wrong_width_rejected():
    with pytest.raises(ValueError):
        ActionPostProcessor(3).process(np.zeros(4))


def test_reset_zeroes_last_action():
    post = ActionPostProcessor(2)
    post.process(np.ones(2))
    post.reset()
    assert np.all(post.last_action == 0.0)


def test_torques_scale_by_strength_and_axes():
    act = Actuator(BIPED)
    torques = act.torques(np.array([1.0, 0, 0, 0, 0, 0, 0, -1.0]))
    assert set(torques) == {"left_hip", "head_stabilize"}
    assert torques["left_hip"]["x"] == pytest.approx(0.00625 * 0.4)
    assert torques["left_hip"]["z"] == pytest.approx(0.00625 * 0.2)
    assert torques["head_stabilize"]["x"] == pytest.approx(-0.00625 * 0.05)


def test_deadband_skips_small_commands():
    act = Actuator(BIPED)
    assert act.torques(np.full(8, 0.02)) == {}
    assert len(act.torques(np.full(8, 0.021))) == 8


def test_apply_writes_to_bodies():
    bodies = make_bodies(BIPED)
    applied = Actuator(BIPED).apply(bodies, np.full(8, 0.5))
    assert applied == 8
    assert len(bodies["left_thigh"].torques) == 1
    assert len(bodies["torso"].torques) == 1


def test_apply_drops_failing_joint_and_continues():
    bodies = make_bodies(BIPED)
    bodies["left_thigh"].broken = True
    del bodies["right_foot"]
    act = Actuator(BIPED)
    applied = act.apply(bodies, np.full(8, 0.5))
    assert applied == 6
    assert act.dropped == 1
    assert len(bodies["right_thigh"].torques) == 1
