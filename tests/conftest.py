from types import SimpleNamespace

import numpy as np
import pytest

from boss_lab.morphology import BIPED, QUADRUPED, SPIDER
from boss_lab.sensors import SensorVector, GroundContact
from boss_lab.world import rest_pose


class FakeBody:
    """Rigid-body handle stand-in with settable state and recorded torques."""

    def __init__(self, pos=(0.0, 0.0, 0.0), vel=(0.0, 0.0, 0.0), angvel=(0.0, 0.0, 0.0),
                 rot=(0.0, 0.0, 0.0, 1.0)):
        self.pos = np.array(pos, dtype=float)
        self.vel = np.array(vel, dtype=float)
        self.ang = np.array(angvel, dtype=float)
        self.rot = tuple(rot)
        self.torques = []
        self.forces = []
        self.broken = False

    def _check(self):
        if self.broken:
            raise RuntimeError("body is not live")

    def translation(self):
        self._check()
        return SimpleNamespace(x=self.pos[0], y=self.pos[1], z=self.pos[2])

    def linvel(self):
        self._check()
        return SimpleNamespace(x=self.vel[0], y=self.vel[1], z=self.vel[2])

    def angvel(self):
        self._check()
        return SimpleNamespace(x=self.ang[0], y=self.ang[1], z=self.ang[2])

    def rotation(self):
        self._check()
        x, y, z, w = self.rot
        return SimpleNamespace(x=x, y=y, z=z, w=w)

    def add_torque(self, torque, wake=True):
        self._check()
        self.torques.append(dict(torque))

    def add_force(self, force, wake=True):
        self._check()
        self.forces.append(dict(force))


def make_bodies(morphology, lift=0.0, shift=(0.0, 0.0, 0.0)):
    """Fake bodies in the standing rest pose, raised by ``lift``."""
    torso_y, offsets = rest_pose(morphology)
    torso = np.array([0.0, torso_y + lift, 0.0]) + np.asarray(shift, dtype=float)
    bodies = {"torso": FakeBody(torso)}
    for name, off in offsets.items():
        bodies[name] = FakeBody(torso + off)
    return bodies


def make_vector(values=None, contacts=(1.0, 1.0), width=28, stable=True):
    v = np.zeros(width, dtype=np.float32)
    if values:
        for i, x in values.items():
            v[i] = x
    limbs = {"left": contacts[0], "right": contacts[1]}
    return SensorVector(v, GroundContact(limbs, ("left", "right"), stable))


@pytest.fixture
def biped():
    return BIPED


@pytest.fixture
def quadruped():
    return QUADRUPED


@pytest.fixture
def spider():
    return SPIDER


@pytest.fixture(params=["biped", "quadruped", "spider"])
def any_morphology(request):
    return {"biped": BIPED, "quadruped": QUADRUPED, "spider": SPIDER}[request.param]


@pytest.fixture
def biped_bodies():
    return make_bodies(BIPED)


