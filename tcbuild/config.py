# tcbuild/config.py
# -*- coding: utf-8 -*-
"""
tcbuild configuration loader

Features:
- Read YAML config from multiple locations (explicit path, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types
- Validate structure and types, warn or error (fatal optional)
- Provide access via Config dataclass (dotted get(), section())
- validate_config() re-checks a loaded Config, including paths it names
"""

from __future__ import annotations

import logging
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from tcbuild.errors import TcbuildError

logger = logging.getLogger("tcbuild.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "WARNING",
        "color": None,   # None -> colorize only when stderr is a tty
        "file": None,
    },
    "fetcher": {
        "timeout": 10,
        "tries": 2,
        "reference_dir": None,
    },
    "workspace": {
        "root": None,    # None -> ./<release>
    },
    "build": {
        "host": None,    # None -> `gcc -dumpmachine`
        "env": {},
        "dry_run": False,
    },
}


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur if cur is not None else default

    def section(self, name: str) -> Dict[str, Any]:
        val = self.merged.get(name)
        return deepcopy(val) if isinstance(val, dict) else {}


# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("TCBUILD_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "tcbuild.yaml",
        Path.home() / ".config" / "tcbuild" / "config.yaml",
        Path("/etc") / "tcbuild" / "config.yaml",
    ])
    return candidates


def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        p = Path(explicit)
        if not p.exists():
            raise TcbuildError(f"config file not found: {explicit}")
        return p
    for p in _find_candidates():
        if p.exists():
            return p
    return None


def _load_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise TcbuildError(f"config: failed reading {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TcbuildError(f"config: {path} must contain a mapping at top level")
    return data


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    for section, key in (("fetcher", "reference_dir"), ("workspace", "root"), ("logging", "file")):
        sec = out.get(section)
        if isinstance(sec, dict) and sec.get(key):
            sec[key] = _expand_path(sec[key])

    fetcher = out.get("fetcher")
    if isinstance(fetcher, dict):
        for key in ("timeout", "tries"):
            try:
                fetcher[key] = int(fetcher.get(key))
            except (TypeError, ValueError):
                logger.debug("config: cannot coerce fetcher.%s=%r", key, fetcher.get(key))

    build = out.get("build")
    if isinstance(build, dict):
        build["dry_run"] = bool(build.get("dry_run"))
        env = build.get("env") or {}
        if isinstance(env, dict):
            build["env"] = {str(k): str(v) for k, v in env.items()}
    return out


def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    for k, v in cfg.items():
        if k in DEFAULTS and not isinstance(v, dict):
            issues.append(f"{k} must be a mapping")
    fetcher = cfg.get("fetcher") or {}
    if isinstance(fetcher, dict):
        if not isinstance(fetcher.get("timeout"), int) or fetcher.get("timeout") < 1:
            issues.append("fetcher.timeout must be integer >= 1")
        if not isinstance(fetcher.get("tries"), int) or fetcher.get("tries") < 1:
            issues.append("fetcher.tries must be integer >= 1")
    build = cfg.get("build") or {}
    if isinstance(build, dict) and not isinstance(build.get("env"), dict):
        issues.append("build.env must be a mapping")
    return (len(issues) == 0, issues)


# ----------------------------
# Loading
# ----------------------------
def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    cfg_path = _find_path(explicit_path)
    raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
    merged = _deep_merge(DEFAULTS, raw)
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            raise TcbuildError(msg)
        logger.warning(msg)
    logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
    return Config(raw=raw, merged=normalized, path=cfg_path)


def validate_config(cfg: Config) -> Tuple[bool, List[str]]:
    _, issues = _validate_structure(cfg.merged)
    ref = cfg.get("fetcher.reference_dir")
    if ref and not Path(ref).is_dir():
        issues.append(f"fetcher.reference_dir {ref} is not a directory")
    return (len(issues) == 0, issues)
