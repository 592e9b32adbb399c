from __future__ import annotations

import json
import math
import os
import platform
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any

import numpy as np

DIST_NAME = "adaptive-design-core"


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def package_version() -> str:
    try:
        return pkg_version(DIST_NAME)
    except PackageNotFoundError:
        return "unknown"


def _safe_json(obj: Any) -> Any:
    """
    Make an object JSON-serializable (best-effort).

    Infinite boundaries are written as the strings "inf" / "-inf".
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        v = float(obj)
        if math.isnan(v):
            return None
        if math.isinf(v):
            return "inf" if v > 0 else "-inf"
        return v
    if isinstance(obj, str):
        return obj
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, np.ndarray):
        return [_safe_json(x) for x in obj.tolist()]
    if isinstance(obj, (list, tuple)):
        return [_safe_json(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _safe_json(v) for k, v in obj.items()}
    if is_dataclass(obj):
        return _safe_json(asdict(obj))
    if hasattr(obj, "__dict__"):
        return _safe_json(vars(obj))
    return str(obj)


def prepare_out_dir(out: str | None, command: str) -> Path:
    if out is None or str(out).strip() == "":
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_dir = Path("results") / command / ts
    else:
        out_dir = Path(out)

    (out_dir / "tables").mkdir(parents=True, exist_ok=True)
    return out_dir


def write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(_safe_json(payload), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def write_run_meta(out_dir: Path, args: Any, extra: dict[str, Any] | None = None) -> None:
    args_dict = dict(args) if isinstance(args, dict) else dict(vars(args))
    # argparse dispatch function pointer
    args_dict.pop("func", None)

    meta: dict[str, Any] = {
        "timestamp_utc": _now_utc_iso(),
        "adaptcore_version": package_version(),
        "python_version": sys.version,
        "platform": {
            "system": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
            "python_implementation": platform.python_implementation(),
        },
        "cwd": os.getcwd(),
        "args": _safe_json(args_dict),
    }
    if extra:
        meta["extra"] = _safe_json(extra)

    write_json(out_dir / "run_meta.json", meta)


def write_results_json(out_dir: Path, payload: dict[str, Any]) -> None:
    write_json(out_dir / "results.json", payload)


def write_table(out_dir: Path, name: str, df) -> str:
    """
    Writes tables/<name>.csv and returns relative path for artifacts registry.
    """
    rel = Path("tables") / f"{name}.csv"
    path = out_dir / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return str(rel).replace("\\", "/")
