# unibundle/modules/packages.py
# -*- coding: utf-8 -*-
"""
packages.py - resolved dependency checkouts

Reads the package manager's workspace-state.json after a resolve, and turns
every checked out dependency into a PackageDescriptor: its path, its
version (the commit recorded in the checkout's git HEAD), its manifest and
the buildables extracted from it.

A checkout without usable git metadata is a broken precondition and aborts
the run with MissingVersionControl.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from unibundle.modules.buildables import Buildable, buildables
from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import Manifest, ManifestDecodeError, UnibundleError
from unibundle.modules.manifest_loader import ManifestLoader

logger = get_logger("packages")


class MissingVersionControl(UnibundleError):
    def __init__(self, package: str, path: Path, reason: str):
        super().__init__(f"{package}: {reason} ({path})")
        self.package = package
        self.path = path
        self.reason = reason


# ---------------------
# git metadata
# ---------------------
def git_dir(package_path: Path, package: str) -> Path:
    """The checkout's git directory, following a `gitdir:` indirection file."""
    git = package_path / ".git"
    if not git.exists():
        logger.error("Missing git directory for package: %s", package)
        raise MissingVersionControl(package, git, "missing git directory")
    if git.is_file():
        text = git.read_text(encoding="utf-8", errors="replace")
        if "gitdir:" not in text:
            logger.error("Couldn't parse .git file in %s", package_path)
            raise MissingVersionControl(package, git, "unparsable .git file")
        target = text.split("gitdir:")[-1].strip()
        if not target:
            logger.error("Couldn't parse .git file in %s", package_path)
            raise MissingVersionControl(package, git, "unparsable .git file")
        git = Path(os.path.normpath(str(git.parent / target)))
    return git

def read_version(package_path: Path, package: str) -> str:
    head = git_dir(package_path, package) / "HEAD"
    if not head.is_file():
        logger.error("Missing HEAD file in %s", head.parent)
        raise MissingVersionControl(package, head, "missing HEAD")
    return head.read_text(encoding="utf-8", errors="replace").strip()

# ---------------------
# workspace state
# ---------------------
@dataclass(frozen=True)
class PackageRef:
    identity: str
    name: str
    kind: str
    location: str

    @classmethod
    def decode(cls, raw: Dict[str, Any]) -> "PackageRef":
        identity = raw["identity"]
        return cls(
            identity=identity,
            name=raw.get("name") or identity,
            kind=raw.get("kind", ""),
            location=raw.get("location") or raw.get("path") or "",
        )


@dataclass(frozen=True)
class ResolvedDependency:
    ref: PackageRef
    subpath: str
    revision: Optional[str] = None
    version: Optional[str] = None
    branch: Optional[str] = None

    @property
    def name(self) -> str:
        return self.ref.name

    @classmethod
    def decode(cls, raw: Dict[str, Any]) -> "ResolvedDependency":
        checkout = (raw.get("state") or {}).get("checkoutState") or {}
        return cls(
            ref=PackageRef.decode(raw["packageRef"]),
            subpath=raw["subpath"],
            revision=checkout.get("revision"),
            version=checkout.get("version"),
            branch=checkout.get("branch"),
        )


@dataclass(frozen=True)
class ResolvedArtifact:
    """A binary target's downloaded or local bundle."""
    package_identity: str
    target_name: str
    path: Optional[str] = None
    url: Optional[str] = None
    checksum: Optional[str] = None

    @classmethod
    def decode(cls, raw: Dict[str, Any]) -> "ResolvedArtifact":
        source = raw.get("source") or {}
        return cls(
            package_identity=raw["packageRef"]["identity"],
            target_name=raw["targetName"],
            path=raw.get("path") or source.get("path"),
            url=source.get("url"),
            checksum=source.get("checksum"),
        )


@dataclass(frozen=True)
class WorkspaceState:
    path: Path
    dependencies: List[ResolvedDependency]
    artifacts: List[ResolvedArtifact]

    @property
    def checkouts_dir(self) -> Path:
        return self.path.parent / "checkouts"

    def checkout_path(self, dependency: ResolvedDependency) -> Path:
        return self.checkouts_dir / dependency.subpath

    def artifacts_for(self, identity: str) -> List[ResolvedArtifact]:
        return [a for a in self.artifacts if a.package_identity == identity]

    @classmethod
    def decode(cls, raw: Any, path: Path) -> "WorkspaceState":
        try:
            obj = raw["object"]
            deps = [ResolvedDependency.decode(d) for d in obj.get("dependencies", [])]
            arts = [ResolvedArtifact.decode(a) for a in obj.get("artifacts", [])]
        except (KeyError, TypeError, AttributeError) as e:
            raise ManifestDecodeError(str(path), f"invalid workspace state: {e!r}") from e
        return cls(path=path, dependencies=deps, artifacts=arts)


def read_workspace_state(state_path: Path) -> WorkspaceState:
    state_path = Path(state_path)
    try:
        raw = json.loads(state_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ManifestDecodeError(str(state_path), f"invalid JSON: {e}") from e
    return WorkspaceState.decode(raw, state_path)

# ---------------------
# descriptors
# ---------------------
class PackageDescriptor:
    """A checked out dependency, ready to be built."""

    def __init__(self, path: Path, name: str, loader: ManifestLoader, identity: Optional[str] = None):
        self.path = Path(path)
        self.name = name
        self.identity = identity or name.lower()
        self.version = read_version(self.path, name)
        self.manifest: Manifest = loader.load(self.path)
        self.buildables: List[Buildable] = buildables(self.manifest)

    @property
    def product_names(self) -> List[str]:
        return [b.name for b in self.buildables]

    def version_for(self, product: str) -> str:
        return self.version

    def __repr__(self) -> str:
        return f"PackageDescriptor(name={self.name!r}, version={self.version!r}, path={str(self.path)!r})"


def descriptors_for(state: WorkspaceState, loader: ManifestLoader) -> List[PackageDescriptor]:
    logger.info("Loading Swift packages...")
    return [
        PackageDescriptor(state.checkout_path(dep), dep.name, loader, identity=dep.ref.identity)
        for dep in state.dependencies
    ]

def read_resolved_packages(state_path: Path, loader: ManifestLoader) -> List[PackageDescriptor]:
    return descriptors_for(read_workspace_state(state_path), loader)
