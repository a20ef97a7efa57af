import math

import numpy as np
import pytest

from boss_lab.morphology import BIPED, QUADRUPED, SPIDER
from boss_lab.sensors import (
    COM_Y, HEAD_ACC_Y, HEAD_Y, LEFT_KNEE, LEFT_THIGH_Y, ROT_W, TORSO_ACC, TORSO_X, TORSO_Y,
    LimbLayout, SensorEncoder, SpiderLayout, contact_value, fit_width, knee_angle,
)

from conftest import FakeBody, make_bodies


def test_vector_width_matches_morphology(any_morphology):
    enc = SensorEncoder(any_morphology)
    vec = enc.encode(make_bodies(any_morphology), 0.05)
    assert vec is not None
    assert len(vec) == any_morphology.sensor_count
    assert vec.values.dtype == np.float32


def test_biped_common_features(biped_bodies):
    vec = SensorEncoder(BIPED).encode(biped_bodies, 0.05)
    v = vec.values
    head_y = biped_bodies["head"].pos[1]
    torso_y = biped_bodies["torso"].pos[1]
    thigh_y = biped_bodies["left_thigh"].pos[1]
    assert v[HEAD_Y] == pytest.approx(head_y)
    assert v[TORSO_Y] == pytest.approx(torso_y)
    assert v[LEFT_THIGH_Y] == pytest.approx(thigh_y)
    assert v[COM_Y] == pytest.approx((head_y + torso_y + 2 * thigh_y) / 4, rel=1e-6)
    assert v[TORSO_X] == pytest.approx(0.0)
    assert v[ROT_W] == pytest.approx(1.0)
    assert v[LEFT_KNEE] == pytest.approx(0.0)


def test_biped_limb_features(biped_bodies):
    v = SensorEncoder(BIPED).encode(biped_bodies, 0.05).values
    assert v[24] == pytest.approx(biped_bodies["left_foot"].pos[1])
    assert v[25] == pytest.approx(biped_bodies["right_foot"].pos[1])
    assert v[26] == pytest.approx(0.7)
    assert v[27] == pytest.approx(0.7)


def test_spider_appends_back_thigh_heights():
    bodies = make_bodies(SPIDER)
    v = SensorEncoder(SPIDER).encode(bodies, 0.05).values
    assert v[36] == pytest.approx(bodies["mid_left_thigh"].pos[1])
    assert v[39] == pytest.approx(bodies["back_right_thigh"].pos[1])


def test_first_tick_has_zero_acceleration(biped_bodies):
    biped_bodies["head"].vel[:] = (0.0, 3.0, 0.0)
    v = SensorEncoder(BIPED).encode(biped_bodies, 0.05).values
    assert v[HEAD_ACC_Y] == 0.0
    assert np.all(v[TORSO_ACC] == 0.0)


def test_acceleration_from_velocity_difference(biped_bodies):
    enc = SensorEncoder(BIPED)
    enc.encode(biped_bodies, 0.05)
    biped_bodies["head"].vel[:] = (0.0, 1.0, 0.0)
    biped_bodies["torso"].vel[:] = (0.5, 0.0, 0.0)
    v = enc.encode(biped_bodies, 0.05).values
    assert v[HEAD_ACC_Y] == pytest.approx(20.0)
    assert v[TORSO_ACC][0] == pytest.approx(10.0)


def test_reset_forgets_velocity_snapshot(biped_bodies):
    enc = SensorEncoder(BIPED)
    enc.encode(biped_bodies, 0.05)
    biped_bodies["head"].vel[:] = (0.0, 1.0, 0.0)
    enc.reset()
    assert enc.encode(biped_bodies, 0.05).values[HEAD_ACC_Y] == 0.0


def test_missing_head_or_torso_skips_tick(biped_bodies):
    enc = SensorEncoder(BIPED)
    del biped_bodies["head"]
    assert enc.encode(biped_bodies, 0.05) is None


def test_unreadable_body_skips_tick(biped_bodies):
    biped_bodies["torso"].broken = True
    assert SensorEncoder(BIPED).encode(biped_bodies, 0.05) is None


def test_missing_limb_reads_as_zero(biped_bodies):
    del biped_bodies["left_foot"]
    vec = SensorEncoder(BIPED).encode(biped_bodies, 0.05)
    assert vec.values[24] == 0.0


def test_ground_contact_flags():
    bodies = make_bodies(QUADRUPED)
    enc = SensorEncoder(QUADRUPED)
    gc = enc.encode(bodies, 0.05).ground_contact
    assert gc.both and gc.stable and gc.main_feet_down == 2

    bodies["front_left_foot"].pos[1] = 0.5
    bodies["back_left_foot"].pos[1] = 0.5
    gc = enc.encode(bodies, 0.05).ground_contact
    assert gc.left == 0.0
    assert gc.main_feet_down == 1
    assert not gc.stable


def test_contact_value_ramp():
    assert contact_value(-0.2) == 1.0
    assert contact_value(0.0) == 1.0
    assert contact_value(0.05) == pytest.approx(0.5)
    assert contact_value(0.1) == 0.0
    assert contact_value(3.0) == 0.0


def test_knee_angle():
    assert knee_angle(np.array([0.0, 1.0, 0.0]), np.array([0.0, 0.5, 0.0])) == pytest.approx(0.0)
    assert knee_angle(np.array([0.0, 1.0, 0.0]), np.array([0.0, 0.5, 0.5])) == pytest.approx(math.pi / 4)


def test_fit_width_pads_and_truncates():
    assert list(fit_width([1.0, 2.0], 4)) == [1.0, 2.0, 0.0, 0.0]
    assert list(fit_width([1.0, 2.0, 3.0], 2)) == [1.0, 2.0]


def test_body_accepts_mapping_readings():
    class DictBody(FakeBody):
        def translation(self):
            return {"x": self.pos[0], "y": self.pos[1], "z": self.pos[2]}

    bodies = make_bodies(BIPED)
    bodies["head"] = DictBody(bodies["head"].pos)
    v = SensorEncoder(BIPED).encode(bodies, 0.05).values
    assert v[HEAD_Y] == pytest.approx(bodies["head"].pos[1])


def test_only_spider_has_its_own_layout():
    assert type(SensorEncoder(BIPED).layout) is LimbLayout
    assert type(SensorEncoder(QUADRUPED).layout) is LimbLayout
    assert isinstance(SensorEncoder(SPIDER).layout, SpiderLayout)
