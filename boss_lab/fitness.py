"""
Fitness: how upright and still the robot is right now, scored 0..100.

Additive: every term starts at zero and earns points independently.
"""

from __future__ import annotations

import math
from typing import Dict, Optional

import numpy as np

from .config import MAX_STILL_VELOCITY, STABILITY_ZONE, TARGET_HEAD_HEIGHT, TARGET_TORSO_HEIGHT
from .sensors import (
    ANG_VEL_X, ANG_VEL_Z, COMMON_FEATURES, HEAD_Y, LEFT_KNEE, RIGHT_KNEE,
    ROT_X, ROT_Z, TORSO_VEL, TORSO_X, TORSO_Y, SensorVector,
)

MAX_FITNESS = 100.0

W_HEAD = 40.0
W_TORSO = 30.0
W_POSITION = 15.0
W_STILL = 10.0
W_UPRIGHT = 15.0
W_CONTACT_ONE = 10.0
W_CONTACT_BOTH = 20.0
W_JOINTS = 10.0
W_ANGULAR = 10.0


def fitness_breakdown(sensors: SensorVector) -> Dict[str, float]:
    """Individual score terms, before the sum is clamped."""
    v = sensors.values
    torso_vel = np.asarray(v[TORSO_VEL], dtype=np.float64)

    feet_down = sensors.ground_contact.main_feet_down
    if feet_down == 2:
        contact = W_CONTACT_BOTH
    elif feet_down == 1:
        contact = W_CONTACT_ONE
    else:
        contact = 0.0

    return {
        "head_height": max(0.0, W_HEAD * float(v[HEAD_Y]) / TARGET_HEAD_HEIGHT),
        "torso_height": max(0.0, W_TORSO * float(v[TORSO_Y]) / TARGET_TORSO_HEIGHT),
        "position": max(0.0, W_POSITION * (1.0 - min(1.0, abs(float(v[TORSO_X])) / STABILITY_ZONE))),
        "stillness": max(0.0, W_STILL * (1.0 - min(1.0, float(np.linalg.norm(torso_vel)) / MAX_STILL_VELOCITY))),
        "upright": max(0.0, W_UPRIGHT * (1.0 - abs(float(v[ROT_X])) - abs(float(v[ROT_Z])))),
        "ground_contact": contact,
        "joints": max(0.0, W_JOINTS * (1.0 - (abs(float(v[LEFT_KNEE])) + abs(float(v[RIGHT_KNEE]))) / 2.0)),
        "angular": max(0.0, W_ANGULAR * (1.0 - (abs(float(v[ANG_VEL_X])) + abs(float(v[ANG_VEL_Z]))) / 2.0)),
    }


def evaluate(sensors: Optional[SensorVector]) -> float:
    """
    Score a sensor vector in [0, 100].

    A missing or too-short vector scores the maximum. Non-finite readings
    score 0.
    """
    if sensors is None or len(sensors.values) < COMMON_FEATURES:
        return MAX_FITNESS
    if not np.all(np.isfinite(sensors.values)):
        return 0.0
    total = sum(fitness_breakdown(sensors).values())
    if not math.isfinite(total):
        return 0.0
    return float(min(MAX_FITNESS, max(0.0, total)))
