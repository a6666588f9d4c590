from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    "project": {"name": "semseg-stage"},
    "video": {"format": "RGB", "width": 640, "height": 192},
    "segmentation": {
        "model_path": "models/semseg/semseg.pt",
        "device": "auto",
        "num_classes": 19,
        "eager_load": True,
        "strict_slots": True,
        "colors": {},
    },
    "runtime": {
        "output_dir": "results",
        "log_level": "INFO",
        "save_video": True,
        "save_metrics": True,
        "overlay": {"enabled": False, "alpha": 0.5},
    },
}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path.resolve()}")
    with config_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; values in `override` win. Inputs are not modified."""
    out = deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge(out[key], value)
        else:
            out[key] = deepcopy(value)
    return out


def load_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """DEFAULT_CONFIG overlaid with the YAML file at `path` (if given)."""
    if path is None:
        return deepcopy(DEFAULT_CONFIG)
    return merge(DEFAULT_CONFIG, load_yaml(path))


def get(cfg: Dict[str, Any], key: str, default: Any = None) -> Any:
    """
    Dot-access helper:
      get(cfg, "segmentation.model_path", "models/semseg/semseg.pt")
    """
    cur: Any = cfg
    for part in key.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur
