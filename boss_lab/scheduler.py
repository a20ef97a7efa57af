"""
Episodic training scheduler.

Driven once per physics frame with the frame's wall-clock delta. Owns the
episode / training / action timers, the 20 Hz sense-act tick, episode
bookkeeping and the boundary check. The reset signal and telemetry go out
through callback lists registered with ``on_reset`` / ``on_telemetry``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from .brain import FitResult
from .config import (
    BOUNDARY_X, BOUNDARY_Y, BOUNDARY_Z, MIN_BUFFER_SAMPLES, TELEMETRY_SENSORS, LabConfig,
)
from .controller import BossController
from .sensors import PhysicsBody, SensorVector, as_vec3

log = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    SETTLING = "settling"
    RUNNING = "running"
    RESETTING = "resetting"


@dataclass
class Episode:
    """Accumulators for the attempt in progress."""
    start_time: float = 0.0
    fitness_sum: float = 0.0
    sample_count: int = 0
    start_state: Optional[np.ndarray] = None
    actions: List[np.ndarray] = field(default_factory=list)

    @property
    def mean_fitness(self) -> float:
        return self.fitness_sum / self.sample_count if self.sample_count else 0.0


@dataclass
class Telemetry:
    sensors: List[float]
    ground_contact: Dict[str, Any]
    fitness: float
    exploration_rate: float
    regime: Optional[str]
    step_count: int
    episode: int
    samples: int
    is_training: bool
    phase: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensors": self.sensors,
            "ground_contact": self.ground_contact,
            "fitness": self.fitness,
            "exploration_rate": self.exploration_rate,
            "regime": self.regime,
            "step_count": self.step_count,
            "episode": self.episode,
            "samples": self.samples,
            "is_training": self.is_training,
            "phase": self.phase,
        }


def inside_boundary(position: np.ndarray) -> bool:
    x, y, z = (float(v) for v in position)
    return abs(x) <= BOUNDARY_X and y >= BOUNDARY_Y and abs(z) <= BOUNDARY_Z


class TrainingScheduler:
    def __init__(self, controller: BossController, config: Optional[LabConfig] = None,
                 settle_time: float = 0.0):
        config = config or LabConfig(robot=controller.morphology.id)
        self.controller = controller
        self.episode_duration = config.episode_duration
        self.training_interval = config.training_interval
        self.control_dt = config.control_dt
        self.collection_mode = config.collection_mode
        self.background = config.background_training
        self.simulation_speed = config.simulation_speed
        self.settle_time = float(settle_time)

        self.phase = Phase.IDLE
        self.sim_time = 0.0
        self.episode_timer = 0.0
        self.training_timer = 0.0
        self.action_timer = 0.0
        self.settle_timer = 0.0
        self.episode_count = 0
        self.boundary_exits = 0
        self.out_of_bounds = False
        self.episode = Episode()
        self.prev_sensors: Optional[SensorVector] = None
        self.last_fitness: Optional[float] = None
        self.last_telemetry: Optional[Telemetry] = None
        self.last_fit: Optional[FitResult] = None

        self._reset_listeners: List[Callable[[], None]] = []
        self._telemetry_listeners: List[Callable[[Telemetry], None]] = []

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------

    def on_reset(self, callback: Callable[[], None]) -> None:
        self._reset_listeners.append(callback)

    def on_telemetry(self, callback: Callable[[Telemetry], None]) -> None:
        self._telemetry_listeners.append(callback)

    def _notify(self, listeners, *args) -> None:
        for cb in list(listeners):
            try:
                cb(*args)
            except Exception:
                log.exception("scheduler listener failed")

    # ------------------------------------------------------------------
    # timing
    # ------------------------------------------------------------------

    def set_simulation_speed(self, speed: float) -> None:
        speed = float(speed)
        if not speed > 0:
            raise ValueError(f"simulation speed must be positive, got {speed}")
        self.simulation_speed = speed

    @property
    def episode_timeout(self) -> float:
        return self.episode_duration / self.simulation_speed

    @property
    def training_timeout(self) -> float:
        return self.training_interval / self.simulation_speed

    # ------------------------------------------------------------------
    # per-frame driver
    # ------------------------------------------------------------------

    def tick(self, delta: float, bodies: Mapping[str, PhysicsBody]) -> Optional[Telemetry]:
        """
        Advance the scheduler by one physics frame.

        Returns the telemetry published this frame, if a control tick ran.
        """
        ctrl = self.controller
        torso = bodies.get("torso")
        if torso is None or bodies.get("head") is None:
            return None
        try:
            torso_pos = as_vec3(torso.translation())
        except Exception as e:
            log.debug("torso not readable: %s", e)
            return None

        if self.phase == Phase.IDLE:
            if not ctrl.is_initialized:
                ctrl.create_model()
            self.phase = Phase.SETTLING

        if not inside_boundary(torso_pos):
            # one reset per exit; re-armed once the torso is back inside
            if not self.out_of_bounds:
                self.out_of_bounds = True
                self.boundary_exits += 1
                log.info("robot left the training area at (%.1f, %.1f, %.1f)", *torso_pos)
                self._end_episode("boundary")
            return None
        self.out_of_bounds = False

        self.sim_time += delta
        self.episode_timer += delta
        self.training_timer += delta
        self.action_timer += delta

        if self.phase == Phase.SETTLING:
            self.settle_timer += delta
            if self.settle_timer >= self.settle_time:
                self.phase = Phase.RUNNING
                self.episode_timer = 0.0
                self.episode = Episode(start_time=self.sim_time)

        if not ctrl.is_initialized:
            # reset_all between frames; the network comes back on this tick
            ctrl.create_model()

        if self.episode_timer >= self.episode_timeout:
            self._end_episode("timeout")
            return None

        if (self.training_timer >= self.training_timeout
                and not ctrl.is_training
                and ctrl.training_active
                and len(ctrl.buffer) >= MIN_BUFFER_SAMPLES):
            self.last_fit = ctrl.train(background=self.background)
            self.training_timer = 0.0

        telemetry = None
        if self.action_timer >= self.control_dt:
            elapsed = self.action_timer
            self.action_timer = 0.0
            telemetry = self._control_tick(bodies, elapsed)

        ctrl.actuate(bodies)
        return telemetry

    def _control_tick(self, bodies: Mapping[str, PhysicsBody], elapsed: float) -> Optional[Telemetry]:
        ctrl = self.controller
        sensors = ctrl.sense(bodies, elapsed)
        if sensors is None:
            return None

        fitness = ctrl.evaluate(sensors)
        self.last_fitness = fitness
        ep = self.episode
        if ctrl.training_active and ep.start_state is None:
            ep.start_state = sensors.values.copy()
        ep.fitness_sum += fitness
        ep.sample_count += 1

        action = ctrl.act(sensors)
        if ctrl.training_active:
            ep.actions.append(action.copy())
            if self.collection_mode == "tick" and self.prev_sensors is not None:
                ctrl.add_training_sample(self.prev_sensors.values, action, fitness)
        self.prev_sensors = sensors

        telemetry = Telemetry(
            sensors=[float(v) for v in sensors.values[:TELEMETRY_SENSORS]],
            ground_contact=sensors.ground_contact.to_dict(),
            fitness=fitness,
            exploration_rate=ctrl.exploration_rate,
            regime=ctrl.policy.last_regime,
            step_count=ctrl.step_count,
            episode=self.episode_count,
            samples=len(ctrl.buffer),
            is_training=ctrl.is_training,
            phase=self.phase.value,
        )
        self.last_telemetry = telemetry
        self._notify(self._telemetry_listeners, telemetry)
        return telemetry

    # ------------------------------------------------------------------
    # episode boundaries
    # ------------------------------------------------------------------

    def _end_episode(self, reason: str) -> None:
        ctrl = self.controller
        ep = self.episode
        if (self.collection_mode == "episode" and ctrl.training_active
                and ep.start_state is not None and ep.actions):
            ctrl.add_training_sample(ep.start_state, ep.actions[-1], ep.mean_fitness)
        log.debug("episode %d ended (%s): %d ticks, mean fitness %.1f",
                  self.episode_count, reason, ep.sample_count, ep.mean_fitness)

        self.episode_count += 1
        self.episode = Episode(start_time=self.sim_time)
        self.episode_timer = 0.0
        self.prev_sensors = None

        self.phase = Phase.RESETTING
        self._notify(self._reset_listeners)
        ctrl.reset_position_state()
        self.phase = Phase.RUNNING

    def end_episode(self) -> None:
        """Close the current episode now (manual respawn)."""
        self._end_episode("manual")

    def reset(self) -> None:
        """Timers and episode state back to start; the controller is untouched."""
        self.phase = Phase.IDLE
        self.sim_time = 0.0
        self.episode_timer = self.training_timer = self.action_timer = self.settle_timer = 0.0
        self.episode_count = 0
        self.boundary_exits = 0
        self.out_of_bounds = False
        self.episode = Episode()
        self.prev_sensors = None
        self.last_fitness = None
        self.last_telemetry = None
        self.last_fit = None

    def stats(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "sim_time": self.sim_time,
            "episode": self.episode_count,
            "episode_time": self.episode_timer,
            "episode_timeout": self.episode_timeout,
            "training_timer": self.training_timer,
            "training_timeout": self.training_timeout,
            "boundary_exits": self.boundary_exits,
            "simulation_speed": self.simulation_speed,
            "collection_mode": self.collection_mode,
            "last_fit": self.last_fit.to_dict() if self.last_fit else None,
        }
