"""Project defaults for the fragmentation classifier.

Defaults live in ``config/fragmentation.yaml`` next to the site registry the
Streamlit pages read; anything not set there falls back to the dataclass.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "fragmentation.yaml"


@dataclass(frozen=True)
class FragmentationOptions:
    size: int = 3
    pad: bool = False
    pad_value: float = float("nan")
    treat_missing_as_eligible: bool = False
    undet: str = "undetermined"
    seed: Optional[int] = None
    cores: int = 1
    natural_codes: Optional[Tuple[int, ...]] = None

    def classifier_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments understood by ``fragmentation()``."""
        return {
            "size": self.size,
            "pad": self.pad,
            "pad_value": self.pad_value,
            "treat_missing_as_eligible": self.treat_missing_as_eligible,
            "undet": self.undet,
            "seed": self.seed,
        }


DEFAULT_OPTIONS = FragmentationOptions()


def _read_yaml(path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_options(path=None) -> FragmentationOptions:
    """Load classifier defaults from YAML (``fragmentation:`` section).

    ``LANDFRAG_CONFIG`` overrides the default location. Unknown keys are
    ignored and a missing file yields :data:`DEFAULT_OPTIONS`.
    """

    path = path or os.environ.get("LANDFRAG_CONFIG", DEFAULT_CONFIG_PATH)
    raw = _read_yaml(path).get("fragmentation", {}) or {}
    known = {f.name for f in fields(FragmentationOptions)}
    values = {k: v for k, v in raw.items() if k in known}
    if values.get("pad_value", 0) is None:
        values["pad_value"] = float("nan")
    if values.get("natural_codes") is not None:
        values["natural_codes"] = tuple(int(c) for c in values["natural_codes"])
    return FragmentationOptions(**values)


def load_sites_config(path=None) -> Dict[str, Dict[str, Any]]:
    path = path or os.environ.get("LANDFRAG_CONFIG", DEFAULT_CONFIG_PATH)
    return _read_yaml(path).get("sites", {}) or {}
