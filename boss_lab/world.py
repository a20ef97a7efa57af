"""
Stand-in physics world so the lab runs without an external engine.

Every body part is a point mass tethered by a spring-damper to its place in
the morphology's rest pose, measured from the torso and rotated by the torso
tilt. The torso tilt itself is a damped inverted pendulum that is held
upright in proportion to how many feet are on the ground. The floor is the
shadow-anchor contact model: a penetrating body gets an anchor point that
acts as a vertical spring-damper and as a horizontal friction spring.

This is a collaborator for the controller, not a rigid-body solver.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .config import CONTACT_ON, GROUND_LEVEL
from .morphology import Morphology, limb_part
from .sensors import as_vec3, contact_value

# =============================================================================
# PHYSICAL PARAMETERS
# =============================================================================

GRAVITY = 9.81
MAX_SUBSTEP = 0.002           # seconds
TETHER_K = 800.0
TETHER_B = 25.0
FLOOR_K = 4000.0
FLOOR_B = 60.0
FLOOR_MU = 0.9
LINEAR_DAMPING = 0.5

TILT_STIFFNESS = 40.0         # upright restoring gain with every foot down
TILT_DAMPING = 4.0
MAX_TILT = math.pi / 2

# Motor torques are tiny; these map them onto the point-mass model
TORQUE_FORCE_GAIN = 8000.0
TORQUE_TILT_GAIN = 8000.0
LIMB_REACTION = 0.1

SPAWN_LIFT = 0.02
SPAWN_TILT_SIGMA = 0.02

MASSES = {"head": 0.6, "torso": 2.5, "thigh": 0.6, "shin": 0.4, "foot": 0.2}
RADII = {"head": 0.12, "torso": 0.15, "thigh": 0.06, "shin": 0.05, "foot": 0.03}


@dataclass(frozen=True)
class Vec3:
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Quat:
    x: float
    y: float
    z: float
    w: float


# =============================================================================
# 3D MATH
# =============================================================================

def rotation_matrix_from_euler(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Roll around X, pitch around Y, yaw around Z (applied in XYZ order)."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array([
        [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
        [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
        [-sp, cp * sr, cp * cr],
    ], dtype=np.float64)


def quat_from_matrix(R: np.ndarray) -> Tuple[float, float, float, float]:
    """(x, y, z, w) unit quaternion for a rotation matrix."""
    trace = R[0, 0] + R[1, 1] + R[2, 2]
    if trace > 0:
        s = 2.0 * math.sqrt(trace + 1.0)
        w = 0.25 * s
        x = (R[2, 1] - R[1, 2]) / s
        y = (R[0, 2] - R[2, 0]) / s
        z = (R[1, 0] - R[0, 1]) / s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s
    return float(x), float(y), float(z), float(w)


# =============================================================================
# REST POSES
# =============================================================================

def _limb_anchor(limb: str) -> Tuple[float, float]:
    """Lateral (x) sign and fore/aft (z) slot for a limb name."""
    side = -1.0 if limb.endswith("left") else 1.0
    if limb.startswith("front"):
        return side, 1.0
    if limb.startswith("back"):
        return side, -1.0
    return side, 0.0


def rest_pose(morphology: Morphology) -> Tuple[float, Dict[str, np.ndarray]]:
    """
    Torso height and per-part offsets from the torso for a standing robot.
    Feet rest one foot radius above the ground.
    """
    offsets: Dict[str, np.ndarray] = {}
    if morphology.id == "biped":
        offsets["head"] = np.array([0.0, 0.75, 0.0])
        for limb in morphology.limbs:
            x = 0.12 * _limb_anchor(limb)[0]
            offsets[limb_part(limb, "thigh")] = np.array([x, -0.28, 0.0])
            offsets[limb_part(limb, "shin")] = np.array([x, -0.78, 0.0])
            offsets[limb_part(limb, "foot")] = np.array([x, -1.05, 0.03])
    elif morphology.id == "quadruped":
        offsets["head"] = np.array([0.0, 0.25, 0.45])
        for limb in morphology.limbs:
            side, slot = _limb_anchor(limb)
            x, z = 0.2 * side, 0.3 * slot
            offsets[limb_part(limb, "thigh")] = np.array([x, -0.15, z])
            offsets[limb_part(limb, "shin")] = np.array([x, -0.4, z])
            offsets[limb_part(limb, "foot")] = np.array([x, -0.6, z])
    else:
        offsets["head"] = np.array([0.0, 0.1, 0.4])
        for limb in morphology.limbs:
            side, slot = _limb_anchor(limb)
            x = side * (0.35 if slot == 0.0 else 0.3)
            z = 0.25 * slot
            offsets[limb_part(limb, "thigh")] = np.array([x * 1.2, -0.05, z])
            offsets[limb_part(limb, "shin")] = np.array([x * 1.6, -0.2, z])
            offsets[limb_part(limb, "foot")] = np.array([x * 1.8, -0.43, z])

    lowest = min(off[1] for off in offsets.values())
    torso_height = GROUND_LEVEL + RADII["foot"] - lowest
    return torso_height, offsets


def _segment(part: str) -> str:
    return part if part in ("head", "torso") else part.rsplit("_", 1)[1]


# =============================================================================
# FLOOR
# =============================================================================

class ShadowFloor:
    """
    Ground contact using "shadow" anchors.

    When a body penetrates the ground a shadow point is dropped under it. The
    shadow gives a vertical spring-damper force and a horizontal spring force
    (friction). If the horizontal force exceeds the Coulomb limit the shadow
    slides along with the body.
    """

    def __init__(self, k: float = FLOOR_K, b: float = FLOOR_B, mu: float = FLOOR_MU,
                 ground: float = GROUND_LEVEL):
        self.k = k
        self.b = b
        self.mu = mu
        self.ground = ground
        self.shadows: Dict[str, np.ndarray] = {}

    def reset(self) -> None:
        self.shadows = {}

    def compute_force(self, name: str, pos: np.ndarray, vel: np.ndarray, radius: float) -> np.ndarray:
        x, y, z = float(pos[0]), float(pos[1]) - radius, float(pos[2])
        vx, vy, vz = float(vel[0]), float(vel[1]), float(vel[2])

        if y >= self.ground:
            self.shadows.pop(name, None)
            return np.zeros(3)

        if name not in self.shadows:
            self.shadows[name] = np.array([x, z], dtype=np.float64)
        shadow_x, shadow_z = self.shadows[name]

        fy = max(0.0, self.k * (self.ground - y) - self.b * vy)
        f_max = self.mu * fy
        fx = self.k * (shadow_x - x)
        fz = self.k * (shadow_z - z)

        f_horiz = math.hypot(fx, fz)
        if f_horiz > f_max and f_horiz > 1e-9:
            scale = f_max / f_horiz
            fx *= scale
            fz *= scale
            self.shadows[name] = np.array([x + fx / self.k, z + fz / self.k], dtype=np.float64)

        fx -= 0.1 * self.b * vx
        fz -= 0.1 * self.b * vz
        return np.array([fx, fy, fz], dtype=np.float64)


# =============================================================================
# BODIES / WORLD
# =============================================================================

class SimBody:
    """Point-mass body exposing the rigid-body handle calls the controller uses."""

    def __init__(self, world: "RagdollWorld", name: str, mass: float, radius: float):
        self.world = world
        self.name = name
        self.mass = mass
        self.radius = radius
        self.pos = np.zeros(3)
        self.vel = np.zeros(3)
        self.force = np.zeros(3)
        self.torque = np.zeros(3)

    def translation(self) -> Vec3:
        return Vec3(*(float(v) for v in self.pos))

    def linvel(self) -> Vec3:
        return Vec3(*(float(v) for v in self.vel))

    def angvel(self) -> Vec3:
        rx, rz = self.world.tilt_rate
        return Vec3(float(rx), 0.0, float(rz))

    def rotation(self) -> Quat:
        return Quat(*quat_from_matrix(self.world.orientation()))

    def add_force(self, force: Any, wake: bool = True) -> None:
        self.force += as_vec3(force)

    def add_torque(self, torque: Any, wake: bool = True) -> None:
        self.torque += as_vec3(torque)


class RagdollWorld:
    def __init__(self, morphology: Morphology, rng: Optional[np.random.Generator] = None):
        self.morphology = morphology
        self.rng = rng or np.random.default_rng()
        self.floor = ShadowFloor()
        self.torso_height, self.offsets = rest_pose(morphology)
        self.bodies: Dict[str, SimBody] = {}
        for part in morphology.body_parts():
            seg = _segment(part)
            self.bodies[part] = SimBody(self, part, MASSES[seg], RADII[seg])
        self.tilt = np.zeros(2)        # about x, about z
        self.tilt_rate = np.zeros(2)
        self.time = 0.0
        self.respawns = 0
        self.respawn()

    def orientation(self) -> np.ndarray:
        return rotation_matrix_from_euler(float(self.tilt[0]), 0.0, float(self.tilt[1]))

    def respawn(self) -> None:
        """Put the robot back in its rest pose at the origin."""
        torso = self.bodies["torso"]
        torso.pos = np.array([0.0, self.torso_height + SPAWN_LIFT, 0.0])
        self.tilt = self.rng.normal(0.0, SPAWN_TILT_SIGMA, size=2)
        self.tilt_rate = np.zeros(2)
        R = self.orientation()
        for name, body in self.bodies.items():
            if name != "torso":
                body.pos = torso.pos + R @ self.offsets[name]
            body.vel = np.zeros(3)
            body.force = np.zeros(3)
            body.torque = np.zeros(3)
        self.floor.reset()
        self.respawns += 1

    def support(self) -> float:
        """Fraction of feet in ground contact."""
        limbs = self.morphology.limbs
        down = sum(1 for limb in limbs
                   if contact_value(float(self.bodies[limb_part(limb, "foot")].pos[1])) >= CONTACT_ON)
        return down / len(limbs)

    def step(self, dt: float) -> None:
        n = max(1, int(math.ceil(dt / MAX_SUBSTEP)))
        h = dt / n
        for _ in range(n):
            self._substep(h)
        for body in self.bodies.values():
            body.force[:] = 0.0
            body.torque[:] = 0.0
        self.time += dt

    def _substep(self, h: float) -> None:
        torso = self.bodies["torso"]
        R = self.orientation()
        forces = {name: body.force.copy() for name, body in self.bodies.items()}
        tilt_acc = np.zeros(2)

        for name, body in self.bodies.items():
            forces[name][1] -= body.mass * GRAVITY
            forces[name] += self.floor.compute_force(name, body.pos, body.vel, body.radius)

            tx, _, tz = body.torque
            if name in ("torso", "head"):
                tilt_acc += TORQUE_TILT_GAIN * np.array([tx, tz]) * (1.0 if name == "torso" else 0.5)
            else:
                swing = np.array([-tz, 0.5 * math.hypot(tx, tz), tx])
                forces[name] += TORQUE_FORCE_GAIN * swing
                tilt_acc -= TORQUE_TILT_GAIN * LIMB_REACTION * np.array([tx, tz])

            if name == "torso":
                continue
            target = torso.pos + R @ self.offsets[name]
            tether = TETHER_K * (target - body.pos) + TETHER_B * (torso.vel - body.vel)
            forces[name] += tether
            forces["torso"] -= tether

        support = self.support()
        gravity_tip = (GRAVITY / max(self.torso_height, 0.1)) * np.sin(self.tilt) * (1.0 - support)
        tilt_acc += gravity_tip - TILT_STIFFNESS * support * self.tilt - TILT_DAMPING * self.tilt_rate

        for name, body in self.bodies.items():
            body.vel += forces[name] / body.mass * h
            body.vel *= max(0.0, 1.0 - LINEAR_DAMPING * h)
            body.pos += body.vel * h

        self.tilt_rate += tilt_acc * h
        self.tilt += self.tilt_rate * h
        over = np.abs(self.tilt) > MAX_TILT
        if over.any():
            self.tilt[over] = np.sign(self.tilt[over]) * MAX_TILT
            self.tilt_rate[over] = 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "respawns": self.respawns,
            "tilt": [float(v) for v in self.tilt],
            "support": self.support(),
            "bodies": {name: [round(float(v), 4) for v in b.pos] for name, b in self.bodies.items()},
        }
