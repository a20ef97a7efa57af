"""
Portable weight export: a safetensors-style JSON document.

    {
      "metadata": {...},
      "tensors": {"layer_<i>_<name>": {"dtype": "F32", "shape": [...], "data": [...]}},
      "version": "1.0"
    }

``data`` is the row-major float32 flattening of each tensor. float32 values
survive the trip through JSON doubles exactly.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

DOCUMENT_VERSION = "1.0"
DTYPE_F32 = "F32"

BASE_METADATA = {
    "format": "torch.state_dict",
    "framework": "pytorch",
    "model_type": "sequential",
    "architecture": "robotics_controller",
}


def tensor_name(index: int, key: str) -> str:
    return f"layer_{index}_{key}"


def build_document(module: nn.Module, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    tensors: Dict[str, Dict[str, Any]] = {}
    for i, (key, t) in enumerate(module.state_dict().items()):
        arr = t.detach().cpu().numpy().astype(np.float32, copy=False)
        tensors[tensor_name(i, key)] = {
            "dtype": DTYPE_F32,
            "shape": list(arr.shape),
            "data": arr.ravel(order="C").tolist(),
        }

    meta = dict(BASE_METADATA)
    meta["created_at"] = datetime.now(timezone.utc).isoformat()
    meta.update(metadata or {})
    return {"metadata": meta, "tensors": tensors, "version": DOCUMENT_VERSION}


def _decode(entry: Dict[str, Any]) -> np.ndarray:
    if not isinstance(entry, dict):
        raise ValueError(f"tensor entry must be an object, got {type(entry).__name__}")
    if entry.get("dtype") != DTYPE_F32:
        raise ValueError(f"unsupported tensor dtype {entry.get('dtype')!r}")
    shape, values = entry.get("shape"), entry.get("data")
    if not isinstance(shape, list) or not all(isinstance(d, int) and d >= 0 for d in shape):
        raise ValueError(f"tensor shape must be a list of sizes, got {shape!r}")
    if not isinstance(values, list):
        raise ValueError("tensor data must be a flat list of numbers")
    try:
        data = np.asarray(values, dtype=np.float32)
    except TypeError as e:
        raise ValueError(f"tensor data is not numeric: {e}") from e
    if data.ndim != 1:
        raise ValueError("tensor data must be a flat list of numbers")
    expected = int(np.prod(shape)) if shape else 1
    if data.size != expected:
        raise ValueError(f"tensor data has {data.size} values, shape {list(shape)} needs {expected}")
    return data.reshape(shape)


def tensors_from_document(doc: Dict[str, Any]) -> Dict[str, np.ndarray]:
    """Rebuild every tensor in the document, keyed by its exported name."""
    tensors = doc.get("tensors") if isinstance(doc, dict) else None
    if not isinstance(tensors, dict):
        raise ValueError("document has no tensor table")
    return {name: _decode(entry) for name, entry in tensors.items()}


def _split_name(name: str) -> Tuple[int, str]:
    prefix, index, key = name.split("_", 2)
    if prefix != "layer":
        raise ValueError(f"unexpected tensor name {name!r}")
    return int(index), key


def state_dict_from_document(doc: Dict[str, Any]) -> Dict[str, torch.Tensor]:
    """Tensors back under their original state-dict keys, in export order."""
    entries: List[Tuple[int, str, np.ndarray]] = []
    for name, arr in tensors_from_document(doc).items():
        index, key = _split_name(name)
        entries.append((index, key, arr))
    entries.sort(key=lambda e: e[0])
    return {key: torch.from_numpy(arr.copy()) for _, key, arr in entries}


def export_filename(robot_id: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{robot_id}_boss_model_{when.strftime('%Y-%m-%d')}.safetensors.json"


def write_document(doc: Dict[str, Any], directory: str, filename: str) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, filename)
    with open(path, "w") as f:
        json.dump(doc, f, indent=2)
    return path


def read_document(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return json.load(f)
