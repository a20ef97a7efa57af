"""
Explore/exploit action selection with a decaying exploration rate.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .config import EXPLORATION_DECAY, EXPLORATION_FLOOR, EXPLORATION_START, EXPLORE_AMPLITUDE
from .sensors import SensorVector, fit_width

# Maps a sensor array of width sensor_count to a raw action in [-1, 1]
Predictor = Callable[[np.ndarray], np.ndarray]


class ActionPolicy:
    """
    Each call to ``select`` makes one regime draw: random motor commands with
    probability ``exploration_rate``, otherwise the network's prediction.
    The rate then decays multiplicatively toward ``floor``.
    """

    def __init__(self, sensor_count: int, motor_count: int,
                 start: float = EXPLORATION_START,
                 decay: float = EXPLORATION_DECAY,
                 floor: float = EXPLORATION_FLOOR,
                 amplitude: float = EXPLORE_AMPLITUDE,
                 rng: Optional[np.random.Generator] = None):
        if not 0.0 <= floor <= start <= 1.0:
            raise ValueError(f"need 0 <= floor <= start <= 1, got floor={floor} start={start}")
        self.sensor_count = int(sensor_count)
        self.motor_count = int(motor_count)
        self.start = float(start)
        self.decay = float(decay)
        self.floor = float(floor)
        self.amplitude = float(amplitude)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.exploration_rate = self.start
        self.last_regime = "explore"

    def reset(self) -> None:
        self.exploration_rate = self.start
        self.last_regime = "explore"

    def explore(self) -> np.ndarray:
        return self.rng.uniform(-self.amplitude, self.amplitude, self.motor_count)

    def select(self, sensors: SensorVector, predict: Optional[Predictor]) -> np.ndarray:
        draw = self.rng.random()
        if predict is None or draw < self.exploration_rate:
            action = self.explore()
            self.last_regime = "explore"
        else:
            state = fit_width(list(sensors.values), self.sensor_count)
            action = np.asarray(predict(state), dtype=np.float64).reshape(self.motor_count)
            self.last_regime = "exploit"

        self.exploration_rate = max(self.floor, self.exploration_rate * self.decay)
        return action
