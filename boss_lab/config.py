"""
Tuning knobs for the boss lab.

Module-level constants are the defaults; ``LabConfig`` bundles the ones a
running lab may override (from the environment or from code).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# =============================================================================
# CONTROL LOOP
# =============================================================================

CONTROL_DT = 0.05            # 20 Hz sense/act tick
EPISODE_DURATION = 3.0       # seconds per attempt at 1x speed
TRAINING_INTERVAL = 10.0     # seconds between fits at 1x speed
MIN_BUFFER_SAMPLES = 3       # buffer size needed before a fit is attempted

MIN_SPEED = 0.25
MAX_SPEED = 4.0

# Training area, in world units
BOUNDARY_X = 15.0
BOUNDARY_Y = -5.0
BOUNDARY_Z = 15.0

# =============================================================================
# SENSORS / FITNESS
# =============================================================================

GROUND_LEVEL = 0.0
CONTACT_THRESHOLD = 0.1
CONTACT_ON = 0.5

TARGET_HEAD_HEIGHT = 1.8
TARGET_TORSO_HEIGHT = 1.0
STABILITY_ZONE = 2.0
MAX_STILL_VELOCITY = 2.0

TELEMETRY_SENSORS = 28
FITNESS_HISTORY = 200

# =============================================================================
# POLICY / ACTUATION
# =============================================================================

EXPLORATION_START = 1.0
EXPLORATION_DECAY = 0.999
EXPLORATION_FLOOR = 0.1
EXPLORE_AMPLITUDE = 1.0

MAX_MOTOR_CHANGE_RATE = 0.05
SMOOTHING_NEW_WEIGHT = 0.7   # out = 0.7 * limited + 0.3 * last
MOTOR_DEADBAND = 0.02

# =============================================================================
# EXPERIENCE / TRAINING
# =============================================================================

BUFFER_CAPACITY = 1000
BUFFER_RETAIN = 800

FIT_MIN_FITNESS = 20.0
FIT_TOP_N = 200
FIT_MIN_SAMPLES = 3
FIT_WEIGHT_STEP = 25.0       # one extra copy per 25 fitness points
FIT_EPOCHS = 10
FIT_BATCH_SIZE = 32
LEARNING_RATE = 5e-4
DROPOUT = 0.2

COLLECTION_MODES = ("episode", "tick")

EXPORT_VERSION = "1.0"


@dataclass
class LabConfig:
    """Run-time settings for one lab session."""
    robot: str = "biped"
    simulation_speed: float = 1.0
    collection_mode: str = "episode"
    episode_duration: float = EPISODE_DURATION
    training_interval: float = TRAINING_INTERVAL
    control_dt: float = CONTROL_DT
    background_training: bool = True
    export_dir: Optional[str] = None
    seed: Optional[int] = None
    host: str = "127.0.0.1"
    port: int = 5006

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.collection_mode not in COLLECTION_MODES:
            raise ValueError(
                f"collection_mode must be one of {COLLECTION_MODES}, got {self.collection_mode!r}"
            )
        if not (self.simulation_speed > 0):
            raise ValueError(f"simulation_speed must be positive, got {self.simulation_speed}")
        if self.episode_duration <= 0 or self.training_interval <= 0:
            raise ValueError("episode_duration and training_interval must be positive")
        if self.control_dt <= 0:
            raise ValueError(f"control_dt must be positive, got {self.control_dt}")

    @classmethod
    def from_env(cls) -> "LabConfig":
        seed = os.environ.get("BOSS_LAB_SEED")
        return cls(
            robot=os.environ.get("BOSS_LAB_ROBOT", "biped"),
            simulation_speed=float(os.environ.get("BOSS_LAB_SPEED", "1.0")),
            collection_mode=os.environ.get("BOSS_LAB_COLLECTION_MODE", "episode"),
            export_dir=os.environ.get("BOSS_LAB_EXPORT_DIR") or None,
            seed=int(seed) if seed else None,
            host=os.environ.get("HOST", "127.0.0.1"),
            port=int(os.environ.get("PORT", "5006")),
        )
