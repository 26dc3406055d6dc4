# unibundle/modules/config.py
# -*- coding: utf-8 -*-
"""
unibundle configuration loader

Features:
- Read YAML/JSON project config from multiple locations (explicit, env override, cwd, user)
- Merge with authoritative DEFAULTS, normalize/coerce types (paths expanded, numbers coerced)
- Validate structure and types with pydantic, warn or error (fatal optional)
- Provide dot-path access via Config dataclass
- Build the immutable Context handed to every pipeline component
"""

from __future__ import annotations
import os
import json
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from unibundle.modules.logging import parse_size

logger = logging.getLogger("unibundle.config")

SUPPORTED_SDKS = (
    "iphoneos",
    "iphonesimulator",
    "macosx",
    "appletvos",
    "appletvsimulator",
    "watchos",
    "watchsimulator",
)

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "name": "unibundle",
    "logging": {
        "level": "INFO",
        "file": None,
        "color": True,
        "max_size": "10M",
        "module_levels": {},
        "jsonl": {"enabled": False},
    },
    "cache": {
        "path": "~/.unibundle/cache",
    },
    "build": {
        "path": "~/.unibundle/build",
        "platforms": ["iphoneos", "iphonesimulator"],
        "jobs": 2,
        "skip_if_exists": True,
        "settings": {},
    },
    "deployment_targets": {},
    "packages": [],
}


class ConfigError(ValueError):
    pass

# ----------------------------
# Validation models
# ----------------------------
class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LoggingModel(_Strict):
    level: str = "INFO"
    file: Optional[str] = None
    color: bool = True
    max_size: Any = "10M"
    max_size_bytes: Optional[int] = None
    backups: int = 5
    file_level: str = "DEBUG"
    format: Optional[str] = None
    datefmt: str = "%H:%M:%S"
    console: bool = True
    module_levels: Dict[str, str] = Field(default_factory=dict)
    jsonl: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("level", "file_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        if str(v).upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return str(v).upper()


class CacheModel(_Strict):
    path: str


class BuildModel(_Strict):
    path: str
    platforms: List[str]
    jobs: int = Field(ge=1)
    skip_if_exists: bool = True
    settings: Dict[str, str] = Field(default_factory=dict)

    @field_validator("platforms")
    @classmethod
    def _known_platforms(cls, v: List[str]) -> List[str]:
        unknown = [p for p in v if p not in SUPPORTED_SDKS]
        if unknown:
            raise ValueError(f"unsupported platforms: {unknown}")
        if not v:
            raise ValueError("at least one platform is required")
        return v


class PackageModel(_Strict):
    name: str
    url: str
    from_: Optional[str] = Field(default=None, alias="from")
    exact: Optional[str] = None
    branch: Optional[str] = None
    revision: Optional[str] = None

    @model_validator(mode="after")
    def _one_requirement(self) -> "PackageModel":
        given = [k for k in ("from_", "exact", "branch", "revision") if getattr(self, k)]
        if len(given) != 1:
            raise ValueError(f"package {self.name} needs exactly one of from/exact/branch/revision")
        return self


class SettingsModel(_Strict):
    name: str
    logging: LoggingModel
    cache: CacheModel
    build: BuildModel
    deployment_targets: Dict[str, str] = Field(default_factory=dict)
    packages: List[PackageModel] = Field(default_factory=list)

# ----------------------------
# Dataclasses to hold config
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
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)


@dataclass(frozen=True)
class Context:
    """Everything a pipeline component needs to know about the current run."""
    name: str
    cache_path: Path
    build_path: Path
    platforms: Tuple[str, ...] = ("iphoneos", "iphonesimulator")
    jobs: int = 2
    skip_if_exists: bool = True
    deployment_targets: Dict[str, str] = field(default_factory=dict)
    build_settings: Dict[str, str] = field(default_factory=dict)

    @property
    def derived_data_path(self) -> Path:
        return self.cache_path / "DerivedData" / self.name

    @property
    def manifest_cache_path(self) -> Path:
        return self.cache_path / "manifests"

    @classmethod
    def from_config(cls, cfg: Config) -> "Context":
        return cls(
            name=cfg.get("name", DEFAULTS["name"]),
            cache_path=Path(cfg.get("cache.path")),
            build_path=Path(cfg.get("build.path")),
            platforms=tuple(cfg.get("build.platforms", [])),
            jobs=int(cfg.get("build.jobs", 1)),
            skip_if_exists=bool(cfg.get("build.skip_if_exists", True)),
            deployment_targets=dict(cfg.get("deployment_targets", {})),
            build_settings=dict(cfg.get("build.settings", {})),
        )

# ----------------------------
# Module state (CLI entry point only)
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))

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
    env = os.environ.get("UNIBUNDLE_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "unibundle.yaml",
        Path.cwd() / "unibundle.yml",
        Path.cwd() / "unibundle.json",
        Path.home() / ".config" / "unibundle" / "config.yaml",
    ])
    return candidates

def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def _load_file(path: Path) -> Dict[str, Any]:
    txt = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(txt)
    else:
        data = yaml.safe_load(txt)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    for section, key in (("cache", "path"), ("build", "path"), ("logging", "file")):
        ref = out.get(section)
        if isinstance(ref, dict) and isinstance(ref.get(key), str):
            ref[key] = _expand_path(ref[key])

    log_cfg = out.get("logging")
    if isinstance(log_cfg, dict) and "max_size" in log_cfg:
        ms = parse_size(log_cfg["max_size"])
        if ms is not None:
            log_cfg["max_size_bytes"] = ms

    build = out.get("build")
    if isinstance(build, dict):
        try:
            if "jobs" in build:
                build["jobs"] = int(build["jobs"])
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce build.jobs=%r", build.get("jobs"))
        if isinstance(build.get("platforms"), str):
            build["platforms"] = [build["platforms"]]

    # deployment targets are versions; YAML reads 13.0 as a float
    dt = out.get("deployment_targets")
    if isinstance(dt, dict):
        out["deployment_targets"] = {k: str(v) for k, v in dt.items()}
    pkgs = out.get("packages")
    if isinstance(pkgs, list):
        for pkg in pkgs:
            if not isinstance(pkg, dict):
                continue
            for key in ("from", "exact"):
                if isinstance(pkg.get(key), (int, float)):
                    pkg[key] = str(pkg[key])
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    try:
        SettingsModel.model_validate(cfg)
    except ValidationError as e:
        issues = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return False, issues
    return True, []

# ----------------------------
# Loading
# ----------------------------
def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then validation failures raise ConfigError,
    otherwise they are logged and the defaults are used.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        normalized = _normalize_and_coerce(_deep_merge(DEFAULTS, raw))
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ConfigError(msg)
            logger.warning(msg)
            normalized = _normalize_and_coerce(deepcopy(DEFAULTS))
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def validate_config(cfg: Optional[Config] = None) -> Tuple[bool, List[str]]:
    cfg = cfg or get_config()
    ok, issues = _validate_structure(cfg.merged)
    for key in ("cache.path", "build.path"):
        p = cfg.get(key)
        if not p:
            continue
        try:
            Path(p).mkdir(parents=True, exist_ok=True)
            if not os.access(p, os.W_OK):
                issues.append(f"{key} {p} not writable")
        except OSError:
            issues.append(f"{key} {p} not creatable")
    return (len(issues) == 0, issues)
