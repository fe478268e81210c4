# ctp/config_loader.py
from __future__ import annotations
"""
Unified configuration loader for the CTP run manager.

Single source of truth:
    config/config.yaml       (or the file named by $CTP_CONFIG)

Design notes
------------
- A missing or unreadable file, broken YAML or a non-mapping root raises
  RuntimeError naming the absolute path.
- Only the counter geometry is validated here; other keys pass through.
- Accessors fill defaults for absent sections, so `{}` is a usable config.
- Relative paths (sqlite_path, $CTP_CONFIG) resolve against the repo root.

Public API
----------
- CONFIG: dict                              # eager-loaded contents of the config file
- load_config(path: str|Path|None = None)   # explicit reload (mainly for tests/tools)
- get_counter_cfg() -> dict
- get_store_cfg() -> dict
- get_db_path() -> pathlib.Path
- get_detector_names() -> list[str]
- get_log_level(default: str = "INFO") -> str
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# ---------- Files & roots ----------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR   = PROJECT_ROOT / "config"
DEFAULT_CFG  = CONFIG_DIR / "config.yaml"
ENV_VAR      = "CTP_CONFIG"

# Counter feed geometry agreed with the CTP readout.
DEFAULT_N_COUNTERS = 1052
DEFAULT_N_RUNS     = 16

DEFAULT_SQLITE_PATH = "db/ctp_objects.sqlite"

# O2 DetID ordering; position in the list is the detector id.
DEFAULT_DETECTORS = [
    "ITS", "TPC", "TRD", "TOF", "PHS", "CPV", "EMC", "HMP", "MFT",
    "MCH", "MID", "ZDC", "FT0", "FV0", "FDD", "ACO", "CTP",
]


# ---------- I/O helpers ----------
def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from `path`. Human-friendly errors, strict root type."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise RuntimeError(
            f"Missing configuration file: {path}\n"
            f"Expected a single-file config with a 'ctp:' section.\n"
            f"Repo root: {PROJECT_ROOT}"
        )
    except OSError as ex:
        raise RuntimeError(f"Failed to read {path}: {type(ex).__name__}: {ex}")

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as ex:
        raise RuntimeError(f"Failed to parse YAML {path}: {type(ex).__name__}: {ex}")

    if not isinstance(data, dict):
        raise RuntimeError(f"Root of {path} must be a mapping/object, not {type(data).__name__}")
    return data


def _resolve_path(p: str | os.PathLike[str]) -> Path:
    """Return absolute path; resolve relative to repo root."""
    pth = Path(p)
    return pth if pth.is_absolute() else (PROJECT_ROOT / pth).resolve()


# ---------- Loader ----------
def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """
    Load a single YAML file (default: $CTP_CONFIG or config/config.yaml),
    validate the counter geometry and return the raw dict (unmodified).
    """
    if path is None and os.getenv(ENV_VAR):
        path = os.environ[ENV_VAR]
    cfg_path = _resolve_path(path) if path else DEFAULT_CFG
    cfg = _load_yaml(cfg_path)

    counters = (cfg.get("ctp", {}) or {}).get("counters", {}) or {}
    for key in ("n_counters", "n_runs"):
        if key in counters and (not isinstance(counters[key], int) or counters[key] <= 0):
            raise RuntimeError(
                f"CONFIG ctp.counters.{key} must be a positive integer, got {counters[key]!r}\n"
                f"File: {cfg_path}"
            )
    return cfg


def _load_default() -> Dict[str, Any]:
    if os.getenv(ENV_VAR) or DEFAULT_CFG.exists():
        return load_config()
    return {}


# Eagerly load once for the process
CONFIG: Dict[str, Any] = _load_default()


def _ctp(cfg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    source = CONFIG if cfg is None else cfg
    return source.get("ctp", {}) or {}


# ---------- Accessors ----------
def get_counter_cfg(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return counter feed geometry with defaults filled in."""
    counters = _ctp(cfg).get("counters", {}) or {}
    names = counters.get("names")
    return {
        "n_counters": int(counters.get("n_counters", DEFAULT_N_COUNTERS)),
        "n_runs": int(counters.get("n_runs", DEFAULT_N_RUNS)),
        "names": [str(n) for n in names] if names else None,
    }


def get_store_cfg(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the object store block (mode/sqlite/http) with defaults."""
    store = _ctp(cfg).get("store", {}) or {}
    http_cfg = store.get("http", {}) or {}
    return {
        "mode": str(store.get("mode", "sqlite")).lower(),
        "sqlite_path": store.get("sqlite_path", DEFAULT_SQLITE_PATH),
        "http": {
            "base_url": http_cfg.get("base_url", "http://127.0.0.1:8080"),
            "timeout_ms": int(http_cfg.get("timeout_ms", 2000)),
        },
    }


def get_db_path(cfg: Optional[Dict[str, Any]] = None) -> Path:
    """Return absolute filesystem path to the SQLite object store."""
    return _resolve_path(get_store_cfg(cfg)["sqlite_path"])


def get_detector_names(cfg: Optional[Dict[str, Any]] = None) -> List[str]:
    """Return the detector list; the index of a name is its detector id."""
    names = _ctp(cfg).get("detectors")
    if not names:
        return list(DEFAULT_DETECTORS)
    return [str(n).upper() for n in names]


def get_log_level(default: str = "INFO", cfg: Optional[Dict[str, Any]] = None) -> str:
    """Return log level as 'INFO'/'DEBUG', etc."""
    source = CONFIG if cfg is None else cfg
    lvl = (source.get("log", {}) or {}).get("level", default)
    # normalize common variants
    return str(lvl).upper()
# ---------- End of config_loader.py ----------
