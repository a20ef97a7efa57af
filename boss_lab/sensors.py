"""
Sensor encoding: physics body readings -> fixed-width sensor vector.

The first COMMON_FEATURES entries have the same meaning for every body plan
(the fitness evaluator reads them by index); per-limb features follow and
depend on the morphology variant.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import numpy as np

from .config import CONTACT_ON, CONTACT_THRESHOLD, GROUND_LEVEL
from .morphology import Morphology, limb_part

log = logging.getLogger(__name__)

# Common feature indices
HEAD_Y = 0
TORSO_Y = 1
LEFT_THIGH_Y = 2
RIGHT_THIGH_Y = 3
COM_Y = 4
TORSO_X = 5
HEAD_VEL = slice(6, 9)
TORSO_VEL = slice(9, 12)
HEAD_ACC_Y = 12
TORSO_ACC = slice(13, 16)
ROT_X = 16
ROT_Y = 17
ROT_Z = 18
ROT_W = 19
ANG_VEL_X = 20
ANG_VEL_Z = 21
LEFT_KNEE = 22
RIGHT_KNEE = 23
COMMON_FEATURES = 24


class PhysicsBody(Protocol):
    """The slice of a rigid-body handle the controller needs."""

    def translation(self) -> Any: ...
    def linvel(self) -> Any: ...
    def angvel(self) -> Any: ...
    def rotation(self) -> Any: ...
    def add_torque(self, torque: Any, wake: bool = True) -> None: ...
    def add_force(self, force: Any, wake: bool = True) -> None: ...


def as_vec3(v: Any) -> np.ndarray:
    """Accepts objects with x/y/z attributes or x/y/z mappings."""
    if isinstance(v, Mapping):
        return np.array([v["x"], v["y"], v["z"]], dtype=np.float64)
    return np.array([v.x, v.y, v.z], dtype=np.float64)


def as_quat(q: Any) -> np.ndarray:
    if isinstance(q, Mapping):
        return np.array([q["x"], q["y"], q["z"], q["w"]], dtype=np.float64)
    return np.array([q.x, q.y, q.z, q.w], dtype=np.float64)


def contact_value(foot_y: float, ground_level: float = GROUND_LEVEL,
                  threshold: float = CONTACT_THRESHOLD) -> float:
    """1.0 at or below ground, fading linearly to 0.0 over ``threshold`` above it."""
    return float(np.clip((ground_level - foot_y + threshold) / threshold, 0.0, 1.0))


def knee_angle(thigh: np.ndarray, shin: np.ndarray) -> float:
    """Lean of the thigh->shin segment away from vertical (0 for a straight leg)."""
    dy = float(thigh[1] - shin[1])
    horiz = math.hypot(float(thigh[0] - shin[0]), float(thigh[2] - shin[2]))
    return math.atan2(horiz, dy)


def fit_width(values: List[float], width: int) -> np.ndarray:
    """Zero-pad or truncate to exactly ``width`` entries."""
    out = np.zeros(width, dtype=np.float32)
    n = min(width, len(values))
    out[:n] = np.asarray(values[:n], dtype=np.float32)
    return out


@dataclass
class GroundContact:
    limbs: Dict[str, float]
    primary: Tuple[str, str]
    stable: bool

    @property
    def left(self) -> float:
        return self.limbs[self.primary[0]]

    @property
    def right(self) -> float:
        return self.limbs[self.primary[1]]

    @property
    def main_feet_down(self) -> int:
        return int(self.left >= CONTACT_ON) + int(self.right >= CONTACT_ON)

    @property
    def both(self) -> bool:
        return self.main_feet_down == 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left": self.left,
            "right": self.right,
            "both": self.both,
            "stable": self.stable,
            "limbs": dict(self.limbs),
        }


@dataclass
class SensorVector:
    values: np.ndarray
    ground_contact: GroundContact

    def __len__(self) -> int:
        return len(self.values)

    def copy(self) -> "SensorVector":
        return SensorVector(self.values.copy(), GroundContact(dict(self.ground_contact.limbs),
                                                              self.ground_contact.primary,
                                                              self.ground_contact.stable))


@dataclass
class _Readings:
    pos: Dict[str, np.ndarray]
    head_vel: np.ndarray
    torso_vel: np.ndarray
    torso_angvel: np.ndarray
    torso_rot: np.ndarray


# =============================================================================
# PER-VARIANT LIMB LAYOUTS
# =============================================================================

class LimbLayout:
    """Foot heights for every limb, then per-limb contact values."""

    def __init__(self, morphology: Morphology):
        self.morphology = morphology

    def features(self, pos: Dict[str, np.ndarray], contacts: Dict[str, float]) -> List[float]:
        out = [float(pos[limb_part(limb, "foot")][1]) for limb in self.morphology.limbs]
        out.extend(contacts[limb] for limb in self.morphology.limbs)
        return out


class SpiderLayout(LimbLayout):
    """Adds the heights of the four non-primary thighs."""

    def features(self, pos: Dict[str, np.ndarray], contacts: Dict[str, float]) -> List[float]:
        out = super().features(pos, contacts)
        out.extend(float(pos[limb_part(limb, "thigh")][1]) for limb in self.morphology.limbs[2:])
        return out


_LAYOUTS = {
    "biped": LimbLayout,
    "quadruped": LimbLayout,
    "spider": SpiderLayout,
}


# =============================================================================
# ENCODER
# =============================================================================

class SensorEncoder:
    def __init__(self, morphology: Morphology, ground_level: float = GROUND_LEVEL,
                 contact_threshold: float = CONTACT_THRESHOLD):
        self.morphology = morphology
        self.layout = _LAYOUTS[morphology.id](morphology)
        self.ground_level = ground_level
        self.contact_threshold = contact_threshold
        self.prev_head_vel: Optional[np.ndarray] = None
        self.prev_torso_vel: Optional[np.ndarray] = None

    def reset(self) -> None:
        """Forget the velocity snapshot (next tick reports zero acceleration)."""
        self.prev_head_vel = None
        self.prev_torso_vel = None

    def _read(self, bodies: Mapping[str, PhysicsBody]) -> Optional[_Readings]:
        head = bodies.get("head")
        torso = bodies.get("torso")
        if head is None or torso is None:
            return None
        try:
            pos = {"head": as_vec3(head.translation()), "torso": as_vec3(torso.translation())}
            for limb in self.morphology.limbs:
                for seg in ("thigh", "shin", "foot"):
                    name = limb_part(limb, seg)
                    body = bodies.get(name)
                    pos[name] = as_vec3(body.translation()) if body is not None else np.zeros(3)
            return _Readings(
                pos=pos,
                head_vel=as_vec3(head.linvel()),
                torso_vel=as_vec3(torso.linvel()),
                torso_angvel=as_vec3(torso.angvel()),
                torso_rot=as_quat(torso.rotation()),
            )
        except Exception as e:
            # Handles that are not live yet raise from the physics side
            log.debug("physics handles unavailable: %s", e)
            return None

    def encode(self, bodies: Mapping[str, PhysicsBody], delta_time: float) -> Optional[SensorVector]:
        """
        Build this tick's sensor vector, or None when the physics handles
        are not readable yet (the caller skips the tick).
        """
        r = self._read(bodies)
        if r is None:
            return None

        if self.prev_head_vel is not None and delta_time > 0:
            head_acc = (r.head_vel - self.prev_head_vel) / delta_time
            torso_acc = (r.torso_vel - self.prev_torso_vel) / delta_time
        else:
            head_acc = np.zeros(3)
            torso_acc = np.zeros(3)

        self.prev_head_vel = r.head_vel.copy()
        self.prev_torso_vel = r.torso_vel.copy()

        left, right = self.morphology.primary_limbs
        pos = r.pos
        left_thigh = pos[limb_part(left, "thigh")]
        right_thigh = pos[limb_part(right, "thigh")]
        com_y = (pos["head"][1] + pos["torso"][1] + left_thigh[1] + right_thigh[1]) / 4.0

        common = [
            pos["head"][1], pos["torso"][1],
            left_thigh[1], right_thigh[1],
            com_y, pos["torso"][0],
            *r.head_vel, *r.torso_vel,
            head_acc[1], *torso_acc,
            *r.torso_rot,
            r.torso_angvel[0], r.torso_angvel[2],
            knee_angle(left_thigh, pos[limb_part(left, "shin")]),
            knee_angle(right_thigh, pos[limb_part(right, "shin")]),
        ]

        contacts = {
            limb: contact_value(float(pos[limb_part(limb, "foot")][1]),
                                self.ground_level, self.contact_threshold)
            for limb in self.morphology.limbs
        }
        n_down = sum(1 for c in contacts.values() if c >= CONTACT_ON)
        ground = GroundContact(
            limbs=contacts,
            primary=(left, right),
            stable=n_down >= self.morphology.stable_contacts,
        )

        features = [float(v) for v in common] + self.layout.features(pos, contacts)
        return SensorVector(fit_width(features, self.morphology.sensor_count), ground)
