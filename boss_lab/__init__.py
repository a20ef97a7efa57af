"""
Boss Lab: an online-learning stand-up controller for simulated legged robots.
"""

from .brain import FitResult, FitStatus, ModelManager
from .config import LabConfig
from .controller import BossController, ExportResult
from .experience import ExperienceBuffer, ExperienceSample
from .fitness import evaluate
from .morphology import MORPHOLOGIES, Morphology, UnknownMorphologyError, get_morphology
from .scheduler import Phase, Telemetry, TrainingScheduler
from .sensors import SensorEncoder, SensorVector

__version__ = "0.1.0"

__all__ = [
    "BossController",
    "ExperienceBuffer",
    "ExperienceSample",
    "ExportResult",
    "FitResult",
    "FitStatus",
    "LabConfig",
    "MORPHOLOGIES",
    "ModelManager",
    "Morphology",
    "Phase",
    "SensorEncoder",
    "SensorVector",
    "Telemetry",
    "TrainingScheduler",
    "UnknownMorphologyError",
    "evaluate",
    "get_morphology",
]
