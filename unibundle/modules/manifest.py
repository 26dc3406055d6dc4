# unibundle/modules/manifest.py
# -*- coding: utf-8 -*-
"""
manifest.py - in-memory model of a package description

A manifest is decoded once from the JSON emitted by the package manager's
"describe" command and is read-only afterwards. Targets reference each other
by name; the name -> id index is built once at construction so graph walks
operate over integer ids.

Decoded shape:
  {
    "name": str,
    "products": [{"name": str, "targets": [str]}],
    "targets": [{
        "name": str, "type": "regular|test|binary|...",
        "dependencies": [{"byName"|"product"|"target": [str | {"platformNames": [...]} | null]}],
        "path": str?, "publicHeadersPath": str?, "url": str?, "checksum": str?,
        "settings": [{"kind": {"define"|"headerSearchPath"|"linkedFramework"|"linkedLibrary": {"_0": str}}}]?
    }]
  }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union


class UnibundleError(Exception):
    """Base class for every error raised by the bundling pipeline."""


class ManifestUnreadable(UnibundleError):
    def __init__(self, package_dir: str):
        super().__init__(f"no package description found in {package_dir}")
        self.package_dir = package_dir


class ManifestDecodeError(UnibundleError):
    def __init__(self, source: str, reason: str):
        super().__init__(f"cannot decode package description {source}: {reason}")
        self.source = source
        self.reason = reason


def _expect(cond: bool, reason: str):
    if not cond:
        raise ValueError(reason)


def _single_tag(record: Any, known: Iterable[str], what: str) -> Tuple[str, Any]:
    """Return the one known tag present in `record`, failing on zero or several."""
    _expect(isinstance(record, Mapping), f"{what} must be an object, got {type(record).__name__}")
    present = [k for k in known if k in record]
    _expect(len(present) == 1 and len(record) == 1,
            f"{what} expects exactly one of {sorted(known)}, found {sorted(record)}")
    return present[0], record[present[0]]

# -----------------------
# Dependency references
# -----------------------
@dataclass(frozen=True)
class NameRef:
    name: str


@dataclass(frozen=True)
class PlatformConstraint:
    platforms: Tuple[str, ...]


DependencyRef = Union[NameRef, PlatformConstraint]


def decode_dependency_ref(raw: Any) -> Optional[DependencyRef]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return NameRef(raw)
    if isinstance(raw, Mapping) and "platformNames" in raw:
        platforms = raw["platformNames"]
        _expect(isinstance(platforms, list), "platformNames must be a list")
        return PlatformConstraint(tuple(str(p) for p in platforms))
    raise ValueError(f"unrecognised dependency reference {raw!r}")


class DependencyKind(str, Enum):
    BY_NAME = "byName"
    PRODUCT = "product"
    TARGET = "target"


@dataclass(frozen=True)
class TargetDependency:
    kind: DependencyKind
    refs: Tuple[DependencyRef, ...] = ()

    @property
    def names(self) -> List[str]:
        """Every name-bearing reference, platform constraints dropped."""
        return [r.name for r in self.refs if isinstance(r, NameRef)]

    @classmethod
    def decode(cls, raw: Any) -> "TargetDependency":
        tag, value = _single_tag(raw, [k.value for k in DependencyKind], "target dependency")
        _expect(isinstance(value, list), f"{tag} dependency must be a list")
        refs = tuple(r for r in (decode_dependency_ref(v) for v in value) if r is not None)
        return cls(DependencyKind(tag), refs)

# -----------------------
# Settings
# -----------------------
class SettingKind(str, Enum):
    DEFINE = "define"
    HEADER_SEARCH_PATH = "headerSearchPath"
    LINKED_FRAMEWORK = "linkedFramework"
    LINKED_LIBRARY = "linkedLibrary"


@dataclass(frozen=True)
class Setting:
    kind: SettingKind
    value: str

    @classmethod
    def decode(cls, raw: Any) -> "Setting":
        _expect(isinstance(raw, Mapping) and "kind" in raw, "setting must carry a 'kind'")
        tag, payload = _single_tag(raw["kind"], [k.value for k in SettingKind], "setting kind")
        if isinstance(payload, Mapping):
            _expect("_0" in payload, f"setting {tag} has no value")
            payload = payload["_0"]
        _expect(isinstance(payload, str), f"setting {tag} value must be a string")
        return cls(SettingKind(tag), payload)

# -----------------------
# Targets / products
# -----------------------
class TargetKind(str, Enum):
    REGULAR = "regular"
    TEST = "test"
    BINARY = "binary"
    # newer package manager releases; built like regular targets
    EXECUTABLE = "executable"
    SYSTEM = "system"
    PLUGIN = "plugin"
    MACRO = "macro"


@dataclass(frozen=True)
class Target:
    name: str
    kind: TargetKind
    dependencies: Tuple[TargetDependency, ...] = ()
    path: Optional[str] = None
    public_headers_path: Optional[str] = None
    url: Optional[str] = None
    checksum: Optional[str] = None
    settings: Tuple[Setting, ...] = ()

    @property
    def dependency_names(self) -> List[str]:
        names: List[str] = []
        for dep in self.dependencies:
            names.extend(dep.names)
        return names

    def has_setting(self, kind: SettingKind) -> bool:
        return any(s.kind == kind for s in self.settings)

    @classmethod
    def decode(cls, raw: Any) -> "Target":
        _expect(isinstance(raw, Mapping), "target must be an object")
        _expect(isinstance(raw.get("name"), str), "target has no name")
        try:
            kind = TargetKind(raw.get("type"))
        except ValueError:
            raise ValueError(f"target {raw['name']} has unknown type {raw.get('type')!r}")
        deps = raw.get("dependencies") or []
        _expect(isinstance(deps, list), f"target {raw['name']} dependencies must be a list")
        return cls(
            name=raw["name"],
            kind=kind,
            dependencies=tuple(TargetDependency.decode(d) for d in deps),
            path=raw.get("path"),
            public_headers_path=raw.get("publicHeadersPath"),
            url=raw.get("url"),
            checksum=raw.get("checksum"),
            settings=tuple(Setting.decode(s) for s in (raw.get("settings") or [])),
        )


@dataclass(frozen=True)
class Product:
    name: str
    target_names: Tuple[str, ...]

    @classmethod
    def decode(cls, raw: Any) -> "Product":
        _expect(isinstance(raw, Mapping) and isinstance(raw.get("name"), str), "product has no name")
        targets = raw.get("targets") or []
        _expect(isinstance(targets, list), f"product {raw['name']} targets must be a list")
        return cls(raw["name"], tuple(str(t) for t in targets))

# -----------------------
# Manifest
# -----------------------
@dataclass(frozen=True)
class Manifest:
    name: str
    products: Tuple[Product, ...]
    targets: Tuple[Target, ...]
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        index: Dict[str, int] = {}
        for i, t in enumerate(self.targets):
            if t.name in index:
                raise ValueError(f"duplicate target name {t.name!r}")
            index[t.name] = i
        object.__setattr__(self, "_index", index)

    # id resolution
    def target_id(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def target(self, name: str) -> Optional[Target]:
        tid = self._index.get(name)
        return self.targets[tid] if tid is not None else None

    def resolve(self, names: Iterable[str]) -> List[int]:
        """Map names to target ids; names absent from the manifest are dropped."""
        return [self._index[n] for n in names if n in self._index]

    def product(self, name: str) -> Optional[Product]:
        for p in self.products:
            if p.name == name:
                return p
        return None

    @classmethod
    def decode(cls, raw: Any, source: str = "<memory>") -> "Manifest":
        try:
            _expect(isinstance(raw, Mapping), "manifest root must be an object")
            _expect(isinstance(raw.get("name"), str), "manifest has no name")
            return cls(
                name=raw["name"],
                products=tuple(Product.decode(p) for p in raw.get("products") or []),
                targets=tuple(Target.decode(t) for t in raw.get("targets") or []),
            )
        except (ValueError, TypeError, KeyError) as e:
            raise ManifestDecodeError(source, str(e)) from e
