"""
Per-robot controller state: one network, one experience buffer, one policy.

Nothing here is shared between robot instances; switching morphology means
building a new BossController.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Mapping, Optional, Union

import numpy as np

from .actuation import ActionPostProcessor, Actuator
from .brain import FitResult, ModelManager
from .config import FITNESS_HISTORY, EXPORT_VERSION
from .experience import ExperienceBuffer, ExperienceSample
from .exporter import export_filename, write_document
from .fitness import evaluate
from .morphology import Morphology, get_morphology
from .policy import ActionPolicy
from .sensors import PhysicsBody, SensorEncoder, SensorVector

log = logging.getLogger(__name__)


@dataclass
class ExportResult:
    success: bool
    filename: Optional[str] = None
    path: Optional[str] = None
    document: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class BossController:
    def __init__(self, morphology: Union[Morphology, str], seed: Optional[int] = None,
                 buffer: Optional[ExperienceBuffer] = None):
        if isinstance(morphology, str):
            morphology = get_morphology(morphology)
        self.morphology = morphology
        self.seed = seed
        self.model_name = f"{morphology.display_name}_model_{int(time.time() * 1000)}"

        self.brain = ModelManager(morphology, seed=seed)
        self.buffer = buffer if buffer is not None else ExperienceBuffer()
        self.encoder = SensorEncoder(morphology)
        self.policy = ActionPolicy(morphology.sensor_count, morphology.motor_count,
                                   rng=np.random.default_rng(seed))
        self.post = ActionPostProcessor(morphology.motor_count)
        self.actuator = Actuator(morphology)

        self.training_active = True
        self.step_count = 0
        self.fitness_history: Deque[float] = deque(maxlen=FITNESS_HISTORY)

    # ------------------------------------------------------------------
    # state views
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self.brain.is_initialized

    @property
    def is_training(self) -> bool:
        return self.brain.is_training

    @property
    def exploration_rate(self) -> float:
        return self.policy.exploration_rate

    @property
    def last_action(self) -> np.ndarray:
        return self.post.last_action

    @property
    def best_fitness(self) -> float:
        return self.buffer.best_fitness

    @property
    def best_action(self) -> Optional[np.ndarray]:
        return self.buffer.best_action

    # ------------------------------------------------------------------
    # control tick
    # ------------------------------------------------------------------

    def create_model(self) -> None:
        self.brain.create()

    def sense(self, bodies: Mapping[str, PhysicsBody], delta_time: float) -> Optional[SensorVector]:
        return self.encoder.encode(bodies, delta_time)

    def evaluate(self, sensors: SensorVector) -> float:
        fitness = evaluate(sensors)
        self.fitness_history.append(fitness)
        return fitness

    def act(self, sensors: SensorVector) -> np.ndarray:
        """Choose, rate-limit and smooth this tick's motor command."""
        predict = self.brain.predict if self.brain.is_initialized else None
        raw = self.policy.select(sensors, predict)
        action = self.post.process(raw)
        self.step_count += 1
        return action

    def actuate(self, bodies: Mapping[str, PhysicsBody], action: Optional[np.ndarray] = None) -> int:
        return self.actuator.apply(bodies, self.last_action if action is None else action)

    # ------------------------------------------------------------------
    # experience / training
    # ------------------------------------------------------------------

    def add_training_sample(self, state, action, fitness: float) -> Optional[ExperienceSample]:
        if not self.training_active:
            return None
        return self.buffer.record(state, action, fitness)

    def set_training_active(self, active: bool) -> None:
        self.training_active = bool(active)
        log.info("%s training %s (%d samples kept)", self.morphology.display_name,
                 "resumed" if active else "paused", len(self.buffer))

    def train(self, background: bool = False) -> FitResult:
        return self.brain.fit(self.buffer, background=background)

    # ------------------------------------------------------------------
    # resets
    # ------------------------------------------------------------------

    def reset_model(self) -> None:
        """Fresh network; experience and policy state are kept."""
        self.brain.reset()
        log.info("%s model reset", self.morphology.display_name)

    def reset_position_state(self) -> None:
        """Forget kinematic history (after a respawn)."""
        self.encoder.reset()

    def reset_all(self) -> None:
        """
        Back to construction defaults. A fit still running finishes against
        the released network and its result is thrown away.
        """
        self.brain.release()
        self.buffer.clear()
        self.policy.reset()
        self.post.reset()
        self.encoder.reset()
        self.training_active = True
        self.step_count = 0
        self.fitness_history.clear()
        log.info("%s controller reset", self.morphology.display_name)

    def close(self) -> None:
        self.brain.close()

    # ------------------------------------------------------------------
    # export / import
    # ------------------------------------------------------------------

    def export_metadata(self) -> Dict[str, Any]:
        m = self.morphology
        return {
            "robot_type": m.id,
            "robot_name": m.display_name,
            "sensor_count": m.sensor_count,
            "motor_count": m.motor_count,
            "training_samples": len(self.buffer),
            "model_name": self.model_name,
            "export_version": EXPORT_VERSION,
        }

    def export_model(self, directory: Optional[str] = None) -> ExportResult:
        """Export the trained network; failures come back as a result, not an exception."""
        if not self.brain.is_initialized or not self.brain.trained:
            return ExportResult(False, error="No trained model to export")
        try:
            doc = self.brain.export(self.export_metadata())
            filename = export_filename(self.morphology.id)
            path = write_document(doc, directory, filename) if directory else None
        except Exception as e:
            log.exception("export failed")
            return ExportResult(False, error=f"Failed to export model: {e}")
        log.info("model exported: %s", path or filename)
        return ExportResult(True, filename=filename, path=path, document=doc)

    def load_model(self, doc: Dict[str, Any]) -> None:
        self.brain.load_document(doc)

    def stats(self) -> Dict[str, Any]:
        history = list(self.fitness_history)
        return {
            "robot": self.morphology.id,
            "robot_name": self.morphology.display_name,
            "sensor_count": self.morphology.sensor_count,
            "motor_count": self.morphology.motor_count,
            "initialized": self.is_initialized,
            "is_training": self.is_training,
            "training_active": self.training_active,
            "exploration_rate": self.exploration_rate,
            "step_count": self.step_count,
            "samples": len(self.buffer),
            "best_fitness": self.best_fitness if len(self.buffer) else None,
            "mean_fitness": float(np.mean(history)) if history else None,
            "parameters": self.brain.parameter_count(),
            "fits": self.brain.fit_count,
            "last_fit": self.brain.last_fit.to_dict() if self.brain.last_fit else None,
        }
