"""
Experience buffer: bounded, time-ordered (state, action, fitness) samples.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .config import (
    BUFFER_CAPACITY, BUFFER_RETAIN, FIT_MIN_FITNESS, FIT_TOP_N, FIT_WEIGHT_STEP,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExperienceSample:
    state: np.ndarray
    action: np.ndarray
    fitness: float

    @classmethod
    def create(cls, state, action, fitness: float) -> "ExperienceSample":
        """Snapshot ``state``/``action`` so later mutation of the originals is not seen."""
        s = np.array(state, dtype=np.float32, copy=True)
        a = np.array(action, dtype=np.float32, copy=True)
        s.setflags(write=False)
        a.setflags(write=False)
        return cls(s, a, float(fitness))


class ExperienceBuffer:
    """
    Insertion order is time order. Whenever the size exceeds ``capacity`` the
    oldest samples are dropped until ``retain`` remain.
    """

    def __init__(self, capacity: int = BUFFER_CAPACITY, retain: int = BUFFER_RETAIN):
        if not 0 < retain <= capacity:
            raise ValueError(f"need 0 < retain <= capacity, got retain={retain} capacity={capacity}")
        self.capacity = int(capacity)
        self.retain = int(retain)
        self._samples: List[ExperienceSample] = []
        self.best_fitness = float("-inf")
        self.best_action: Optional[np.ndarray] = None
        self.total_added = 0

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[ExperienceSample]:
        return iter(list(self._samples))

    def samples(self) -> List[ExperienceSample]:
        return list(self._samples)

    def _track_best(self, sample: ExperienceSample) -> None:
        if sample.fitness > self.best_fitness:
            self.best_fitness = sample.fitness
            self.best_action = sample.action

    def _trim(self) -> None:
        if len(self._samples) > self.capacity:
            dropped = len(self._samples) - self.retain
            self._samples = self._samples[-self.retain:]
            log.debug("experience buffer trimmed: dropped %d oldest samples", dropped)

    def add(self, sample: ExperienceSample) -> None:
        self._samples.append(sample)
        self.total_added += 1
        self._track_best(sample)
        self._trim()

    def record(self, state, action, fitness: float) -> ExperienceSample:
        sample = ExperienceSample.create(state, action, fitness)
        self.add(sample)
        return sample

    def extend(self, samples: Iterable[ExperienceSample]) -> None:
        """Append a batch, then trim once."""
        for s in samples:
            self._samples.append(s)
            self.total_added += 1
            self._track_best(s)
        self._trim()

    def clear(self) -> None:
        self._samples = []
        self.best_fitness = float("-inf")
        self.best_action = None
        self.total_added = 0

    def qualifying(self, min_fitness: float = FIT_MIN_FITNESS) -> List[ExperienceSample]:
        return [s for s in self._samples if s.fitness > min_fitness]

    def curate(self, min_fitness: float = FIT_MIN_FITNESS, top_n: int = FIT_TOP_N,
               weight_step: float = FIT_WEIGHT_STEP) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build a training set from the best samples.

        Samples above ``min_fitness`` are sorted by fitness (best first), the
        top ``top_n`` kept, and each repeated ``1 + fitness // weight_step``
        times so better attempts weigh more in the loss.

        Returns (states, actions) as float32 arrays; both are empty when
        nothing qualifies.
        """
        chosen = sorted(self.qualifying(min_fitness), key=lambda s: s.fitness, reverse=True)[:top_n]
        states: List[np.ndarray] = []
        actions: List[np.ndarray] = []
        for s in chosen:
            copies = 1 + int(s.fitness // weight_step)
            states.extend([s.state] * copies)
            actions.extend([s.action] * copies)
        if not states:
            return np.zeros((0, 0), dtype=np.float32), np.zeros((0, 0), dtype=np.float32)
        return np.stack(states).astype(np.float32), np.stack(actions).astype(np.float32)
