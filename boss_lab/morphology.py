"""
Morphology registry: the closed set of robot body plans the lab can train.

Each variant fixes the controller's input width (sensor count), output width
(motor count), network capacity tier, and which body part each motor drives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

# Joint torque profiles (x, y, z multipliers of the motor command)
HIP_AXES = (0.4, 0.0, 0.2)
KNEE_AXES = (0.3, 0.0, 0.0)
ANKLE_AXES = (0.2, 0.0, 0.1)
TORSO_AXES = (0.1, 0.0, 0.1)
HEAD_AXES = (0.05, 0.0, 0.05)

# Lighter profile for the six-legged body
SPIDER_HIP_AXES = (0.3, 0.0, 0.15)
SPIDER_KNEE_AXES = (0.25, 0.0, 0.0)
SPIDER_ANKLE_AXES = (0.15, 0.0, 0.08)

CAPACITY_TIERS = ("small", "medium", "large")


class UnknownMorphologyError(KeyError):
    pass


@dataclass(frozen=True)
class MotorSpec:
    """One actuated joint: the body the torque is applied to and its axis profile."""
    name: str
    body: str
    axes: Tuple[float, float, float]


@dataclass(frozen=True)
class Morphology:
    id: str
    display_name: str
    description: str
    sensor_count: int
    motor_count: int
    capacity_tier: str
    limbs: Tuple[str, ...]
    motors: Tuple[MotorSpec, ...]
    motor_strength: float
    stable_contacts: int

    def __post_init__(self) -> None:
        if self.capacity_tier not in CAPACITY_TIERS:
            raise ValueError(f"{self.id}: unknown capacity tier {self.capacity_tier!r}")
        if len(self.motors) != self.motor_count:
            raise ValueError(f"{self.id}: {len(self.motors)} motors declared, expected {self.motor_count}")
        if len(self.limbs) < 2 or len(self.limbs) % 2:
            raise ValueError(f"{self.id}: limbs must come in left/right pairs")

    @property
    def primary_limbs(self) -> Tuple[str, str]:
        """The limb pair whose knees and feet feed the fitness score."""
        return self.limbs[0], self.limbs[1]

    @property
    def limb_pairs(self) -> List[Tuple[str, str]]:
        return [(self.limbs[i], self.limbs[i + 1]) for i in range(0, len(self.limbs), 2)]

    def body_parts(self) -> List[str]:
        parts = ["head", "torso"]
        for limb in self.limbs:
            parts.extend(limb_part(limb, seg) for seg in ("thigh", "shin", "foot"))
        return parts


def limb_part(limb: str, segment: str) -> str:
    return f"{limb}_{segment}"


def _leg_motors(pairs: List[Tuple[str, str]], hip, knee, ankle) -> List[MotorSpec]:
    # Per pair: hips, then knees, then ankles (left before right)
    motors: List[MotorSpec] = []
    for left, right in pairs:
        for joint, segment, axes in (("hip", "thigh", hip), ("knee", "shin", knee), ("ankle", "foot", ankle)):
            for limb in (left, right):
                motors.append(MotorSpec(f"{limb}_{joint}", limb_part(limb, segment), axes))
    return motors


def _build(morph_id: str, display_name: str, description: str, sensor_count: int,
           capacity_tier: str, limbs: Tuple[str, ...], motor_strength: float,
           stable_contacts: int, stabilizers: bool = False, spider: bool = False) -> Morphology:
    pairs = [(limbs[i], limbs[i + 1]) for i in range(0, len(limbs), 2)]
    if spider:
        motors = _leg_motors(pairs, SPIDER_HIP_AXES, SPIDER_KNEE_AXES, SPIDER_ANKLE_AXES)
    else:
        motors = _leg_motors(pairs, HIP_AXES, KNEE_AXES, ANKLE_AXES)
    if stabilizers:
        motors.append(MotorSpec("torso_stabilize", "torso", TORSO_AXES))
        motors.append(MotorSpec("head_stabilize", "head", HEAD_AXES))
    return Morphology(
        id=morph_id,
        display_name=display_name,
        description=description,
        sensor_count=sensor_count,
        motor_count=len(motors),
        capacity_tier=capacity_tier,
        limbs=limbs,
        motors=tuple(motors),
        motor_strength=motor_strength,
        stable_contacts=stable_contacts,
    )


BIPED = _build(
    "biped", "Biped Boss", "Two-legged humanoid robot",
    sensor_count=28, capacity_tier="small",
    limbs=("left", "right"),
    motor_strength=0.00625, stable_contacts=2, stabilizers=True,
)

QUADRUPED = _build(
    "quadruped", "Quad Boss", "Four-legged robot",
    sensor_count=32, capacity_tier="medium",
    limbs=("front_left", "front_right", "back_left", "back_right"),
    motor_strength=0.004, stable_contacts=3,
)

SPIDER = _build(
    "spider", "Spider Boss", "Six-legged robot",
    sensor_count=40, capacity_tier="large",
    limbs=("front_left", "front_right", "mid_left", "mid_right", "back_left", "back_right"),
    motor_strength=0.003, stable_contacts=3, spider=True,
)

MORPHOLOGIES: Dict[str, Morphology] = {m.id: m for m in (BIPED, QUADRUPED, SPIDER)}


def get_morphology(morphology_id: str) -> Morphology:
    try:
        return MORPHOLOGIES[morphology_id]
    except KeyError:
        raise UnknownMorphologyError(
            f"unknown robot type {morphology_id!r}; expected one of {sorted(MORPHOLOGIES)}"
        ) from None
