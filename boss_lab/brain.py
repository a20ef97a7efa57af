"""
Model lifecycle: the controller network and everything that touches its
weights (create, fit, reset, export, import).
"""

from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from .config import (
    DROPOUT, FIT_BATCH_SIZE, FIT_EPOCHS, FIT_MIN_FITNESS, FIT_MIN_SAMPLES, FIT_TOP_N,
    LEARNING_RATE,
)
from .experience import ExperienceBuffer
from .exporter import build_document, state_dict_from_document
from .morphology import Morphology

log = logging.getLogger(__name__)

DEVICE = torch.device("cpu")

HIDDEN_LAYERS: Dict[str, Tuple[int, int, int]] = {
    "small": (64, 32, 16),
    "medium": (128, 64, 32),
    "large": (256, 128, 64),
}


def build_network(sensor_count: int, motor_count: int, capacity_tier: str,
                  dropout: float = DROPOUT) -> nn.Sequential:
    """
    sensor_count -> h1 -> h2 -> h3 -> motor_count.

    ReLU hidden layers with dropout after the first two, tanh output so
    predictions land in the actuator range.
    """
    h1, h2, h3 = HIDDEN_LAYERS[capacity_tier]
    return nn.Sequential(
        nn.Linear(sensor_count, h1),
        nn.ReLU(),
        nn.Dropout(dropout),
        nn.Linear(h1, h2),
        nn.ReLU(),
        nn.Dropout(dropout),
        nn.Linear(h2, h3),
        nn.ReLU(),
        nn.Linear(h3, motor_count),
        nn.Tanh(),
    )


class FitStatus(str, Enum):
    TRAINED = "trained"
    PENDING = "pending"
    INSUFFICIENT_DATA = "insufficient_data"
    BUSY = "busy"
    NO_MODEL = "no_model"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class FitResult:
    status: FitStatus
    samples: int = 0
    rows: int = 0
    loss: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "samples": self.samples,
            "rows": self.rows,
            "loss": self.loss,
            "error": self.error,
        }


class ModelManager:
    """
    Owns the network. Only this class creates, replaces or releases it.

    Fits train a private copy of the network and publish the result into the
    live network afterwards, so forward passes on the simulation thread never
    see half-updated weights. A ``reset`` while a fit is in flight bumps the
    generation counter; the fit's result is then discarded on completion.
    """

    def __init__(self, morphology: Morphology,
                 learning_rate: float = LEARNING_RATE,
                 epochs: int = FIT_EPOCHS,
                 batch_size: int = FIT_BATCH_SIZE,
                 min_samples: int = FIT_MIN_SAMPLES,
                 min_fitness: float = FIT_MIN_FITNESS,
                 top_n: int = FIT_TOP_N,
                 seed: Optional[int] = None):
        self.morphology = morphology
        self.learning_rate = float(learning_rate)
        self.epochs = int(epochs)
        self.batch_size = int(batch_size)
        self.min_samples = int(min_samples)
        self.min_fitness = float(min_fitness)
        self.top_n = int(top_n)
        self.seed = seed

        self.model: Optional[nn.Sequential] = None
        self._optimizer_state: Optional[Dict[str, Any]] = None
        self.generation = 0
        self.is_training = False
        self.fit_count = 0
        self.trained = False
        self.last_fit: Optional[FitResult] = None

        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self.model is not None

    def create(self) -> nn.Sequential:
        with self._lock:
            if self.seed is not None:
                torch.manual_seed(self.seed + self.generation)
            m = self.morphology
            self.model = build_network(m.sensor_count, m.motor_count, m.capacity_tier).to(DEVICE)
            self.model.eval()
            self._optimizer_state = None
            self.fit_count = 0
            self.trained = False
            log.info("%s model created: %d parameters (sensors=%d motors=%d)",
                     m.display_name, self.parameter_count(), m.sensor_count, m.motor_count)
            return self.model

    def release(self) -> None:
        """Drop the network and its optimizer state; any in-flight fit becomes stale."""
        with self._lock:
            self.model = None
            self._optimizer_state = None
            self.generation += 1

    def reset(self) -> nn.Sequential:
        with self._lock:
            self.release()
            return self.create()

    def close(self) -> None:
        self.release()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def parameter_count(self) -> int:
        if self.model is None:
            return 0
        return int(sum(p.numel() for p in self.model.parameters()))

    # ------------------------------------------------------------------
    # inference
    # ------------------------------------------------------------------

    def predict(self, state: np.ndarray) -> np.ndarray:
        with self._lock:
            if self.model is None:
                raise RuntimeError("no model")
            x = torch.as_tensor(np.asarray(state, dtype=np.float32)).reshape(1, -1).to(DEVICE)
            with torch.no_grad():
                y = self.model(x)
            return y.squeeze(0).cpu().numpy().astype(np.float64)

    # ------------------------------------------------------------------
    # training
    # ------------------------------------------------------------------

    def fit(self, buffer: ExperienceBuffer, background: bool = False) -> FitResult:
        """
        Retrain from the buffer's best samples.

        Curation happens on the calling thread. With ``background`` the
        optimisation runs on the manager's worker thread and a PENDING
        result is returned; ``last_fit`` holds the outcome once it lands.
        """
        with self._lock:
            if self.is_training:
                return FitResult(FitStatus.BUSY)
            if self.model is None:
                return FitResult(FitStatus.NO_MODEL)

            qualifying = len(buffer.qualifying(self.min_fitness))
            if qualifying < self.min_samples:
                log.info("training skipped: %d samples above fitness %.0f (need %d)",
                         qualifying, self.min_fitness, self.min_samples)
                return self._finish(FitResult(FitStatus.INSUFFICIENT_DATA, samples=qualifying))

            xs, ys = buffer.curate(self.min_fitness, self.top_n)
            self.is_training = True
            snapshot = copy.deepcopy(self.model)
            opt_state = copy.deepcopy(self._optimizer_state)
            generation = self.generation

        log.info("training %s on %d samples (%d weighted rows)",
                 self.morphology.display_name, qualifying, len(xs))
        if not background:
            return self._run_fit(snapshot, opt_state, xs, ys, generation, qualifying)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="boss-fit")
        self._pending = self._executor.submit(self._run_fit, snapshot, opt_state, xs, ys, generation, qualifying)
        return FitResult(FitStatus.PENDING, samples=qualifying, rows=len(xs))

    def wait(self, timeout: Optional[float] = None) -> Optional[FitResult]:
        """Block until a background fit finishes (used by tests and shutdown)."""
        if self._pending is not None:
            self._pending.result(timeout=timeout)
            self._pending = None
        return self.last_fit

    def _train(self, net: nn.Sequential, opt_state: Optional[Dict[str, Any]],
               xs: np.ndarray, ys: np.ndarray) -> Tuple[float, Dict[str, Any]]:
        optimizer = torch.optim.Adam(net.parameters(), lr=self.learning_rate)
        if opt_state is not None:
            optimizer.load_state_dict(opt_state)
        loss_fn = nn.MSELoss()

        x_t = torch.as_tensor(xs, dtype=torch.float32)
        y_t = torch.as_tensor(ys, dtype=torch.float32)
        gen = torch.Generator()
        if self.seed is not None:
            gen.manual_seed(self.seed + self.fit_count)

        net.train()
        epoch_loss = 0.0
        for _ in range(self.epochs):
            perm = torch.randperm(len(x_t), generator=gen)
            total, batches = 0.0, 0
            for start in range(0, len(perm), self.batch_size):
                idx = perm[start:start + self.batch_size]
                loss = loss_fn(net(x_t[idx]), y_t[idx])
                optimizer.zero_grad()
                loss.backward()
                optimizer.step()
                total += float(loss.item())
                batches += 1
            epoch_loss = total / max(1, batches)
            if not np.isfinite(epoch_loss):
                raise FloatingPointError(f"training loss diverged ({epoch_loss})")
        net.eval()
        return epoch_loss, optimizer.state_dict()

    def _run_fit(self, snapshot: nn.Sequential, opt_state: Optional[Dict[str, Any]],
                 xs: np.ndarray, ys: np.ndarray, generation: int, samples: int) -> FitResult:
        try:
            loss, new_opt_state = self._train(snapshot, opt_state, xs, ys)
        except Exception as e:
            log.exception("training failed")
            return self._finish(FitResult(FitStatus.FAILED, samples=samples, rows=len(xs), error=str(e)))

        with self._lock:
            if generation != self.generation or self.model is None:
                log.info("training result discarded: model was reset during fit")
                return self._finish(FitResult(FitStatus.DISCARDED, samples=samples, rows=len(xs), loss=loss))
            self.model.load_state_dict(snapshot.state_dict())
            self._optimizer_state = new_opt_state
            self.fit_count += 1
            self.trained = True
        log.info("training complete: loss=%.5f", loss)
        return self._finish(FitResult(FitStatus.TRAINED, samples=samples, rows=len(xs), loss=loss))

    def _finish(self, result: FitResult) -> FitResult:
        with self._lock:
            self.is_training = False
            self.last_fit = result
        return result

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def export(self, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            if self.model is None:
                raise RuntimeError("no model to export")
            return build_document(self.model, metadata)

    def load_document(self, doc: Dict[str, Any]) -> None:
        """Replace the network with one built from an export document."""
        meta = doc.get("metadata", {})
        if not isinstance(meta, dict):
            raise ValueError("document metadata must be an object")
        m = self.morphology
        if meta.get("robot_type") not in (None, m.id):
            raise ValueError(f"document is for {meta.get('robot_type')!r}, controller is {m.id!r}")
        for key, expected in (("sensor_count", m.sensor_count), ("motor_count", m.motor_count)):
            if key in meta and meta[key] != expected:
                raise ValueError(f"document {key}={meta[key]!r} does not match {m.id} ({expected})")

        state = state_dict_from_document(doc)
        net = build_network(m.sensor_count, m.motor_count, m.capacity_tier).to(DEVICE)
        net.load_state_dict(state, strict=True)
        net.eval()
        with self._lock:
            self.release()
            self.model = net
            self.fit_count = 0
            self.trained = True
        log.info("loaded %s model from document (%d tensors)", m.display_name, len(state))
