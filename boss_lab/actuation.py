"""
Action post-processing (rate limit + smoothing) and joint actuation.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import numpy as np

from .config import MAX_MOTOR_CHANGE_RATE, MOTOR_DEADBAND, SMOOTHING_NEW_WEIGHT
from .morphology import Morphology
from .sensors import PhysicsBody

log = logging.getLogger(__name__)


class ActionPostProcessor:
    """
    Turns a raw policy action into the command actually sent to the motors.

    1. each motor's change from ``last_action`` is clamped to +/- ``max_rate``
    2. the clamped value is blended with ``last_action``:
       ``out = new_weight * limited + (1 - new_weight) * last_action``

    With ``new_weight`` in [0, 1] the output never moves more than
    ``max_rate`` away from the previous command.
    """

    def __init__(self, motor_count: int, max_rate: float = MAX_MOTOR_CHANGE_RATE,
                 new_weight: float = SMOOTHING_NEW_WEIGHT):
        if not 0.0 <= new_weight <= 1.0:
            raise ValueError(f"new_weight must be in [0, 1], got {new_weight}")
        self.motor_count = int(motor_count)
        self.max_rate = float(max_rate)
        self.new_weight = float(new_weight)
        self.last_action = np.zeros(self.motor_count, dtype=np.float64)

    def reset(self) -> None:
        self.last_action = np.zeros(self.motor_count, dtype=np.float64)

    def process(self, raw: np.ndarray) -> np.ndarray:
        """Post-process ``raw`` in place and return it."""
        if raw.shape != (self.motor_count,):
            raise ValueError(f"expected action of shape ({self.motor_count},), got {raw.shape}")
        raw_clean = np.nan_to_num(raw, nan=0.0, posinf=1.0, neginf=-1.0)
        delta = np.clip(raw_clean - self.last_action, -self.max_rate, self.max_rate)
        limited = self.last_action + delta
        out = self.new_weight * limited + (1.0 - self.new_weight) * self.last_action
        raw[:] = np.clip(out, -1.0, 1.0)
        self.last_action = raw.astype(np.float64, copy=True)
        return raw


class Actuator:
    """Applies a motor command vector as per-joint torques."""

    def __init__(self, morphology: Morphology, deadband: float = MOTOR_DEADBAND):
        self.morphology = morphology
        self.deadband = float(deadband)
        self.dropped = 0

    def torques(self, action: np.ndarray) -> Dict[str, Dict[str, float]]:
        """Torque per motor name, for commands above the deadband."""
        out: Dict[str, Dict[str, float]] = {}
        strength = self.morphology.motor_strength
        for motor, cmd in zip(self.morphology.motors, action):
            cmd = float(cmd)
            if abs(cmd) <= self.deadband:
                continue
            ax, ay, az = motor.axes
            out[motor.name] = {"x": cmd * strength * ax, "y": cmd * strength * ay, "z": cmd * strength * az}
        return out

    def apply(self, bodies: Mapping[str, Optional[PhysicsBody]], action: np.ndarray) -> int:
        """
        Push torques into the physics bodies. A joint whose body is missing
        or rejects the write is skipped for this tick. Returns the number of
        joints actuated.
        """
        applied = 0
        by_name = {m.name: m for m in self.morphology.motors}
        for name, torque in self.torques(action).items():
            body = bodies.get(by_name[name].body)
            if body is None:
                continue
            try:
                body.add_torque(torque, True)
                applied += 1
            except Exception as e:
                self.dropped += 1
                log.debug("dropped %s command: %s", name, e)
        return applied
