# unibundle/modules/toolchain.py
# -*- coding: utf-8 -*-
"""
Toolchain collaborators for unibundle.

Thin wrappers around the external tools the pipeline drives:
- swift package dump-package      (describe a package)
- swift package resolve           (fetch and pin dependency checkouts)
- xcodebuild archive              (one platform archive per product/sdk)
- xcodebuild -create-xcframework  (combine platform frameworks into one bundle)

Every failure is raised as CollaboratorError carrying the command line, the
return code and the tool's stderr; nothing here retries.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import UnibundleError

logger = get_logger("toolchain")

DEFAULT_BUILD_SETTINGS: Dict[str, str] = {
    "BUILD_LIBRARY_FOR_DISTRIBUTION": "YES",
    "SKIP_INSTALL": "NO",
    "INSTALL_PATH": "/Library/Frameworks",
    "CODE_SIGN_IDENTITY": "",
}


class CollaboratorError(UnibundleError):
    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        tail = stderr.strip().splitlines()[-5:] if stderr else []
        msg = f"command failed ({returncode}): {' '.join(command)}"
        if tail:
            msg += "\n" + "\n".join(tail)
        super().__init__(msg)
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


def run(cmd: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None, timeout: Optional[int] = None) -> str:
    """Run command and return its stdout; non-zero exit raises CollaboratorError."""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), str(cwd) if cwd else None)
    try:
        p = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=env or os.environ.copy(),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CollaboratorError(cmd, 127, str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise CollaboratorError(cmd, 124, f"timed out after {timeout}s") from e
    if p.returncode != 0:
        raise CollaboratorError(cmd, p.returncode, p.stderr or "")
    return p.stdout or ""

# ---------------------
# package manager
# ---------------------
def describe_package(package_dir: Path) -> bytes:
    """Raw JSON description of the package at `package_dir`."""
    out = run(["xcrun", "swift", "package", "dump-package", "--package-path", str(package_dir)])
    return out.encode("utf-8")

def resolve_packages(package_dir: Path) -> Path:
    """Resolve and check out the dependencies of `package_dir`; returns the state file path."""
    logger.info("Resolving dependencies...")
    run(["xcrun", "swift", "package", "resolve", "--package-path", str(package_dir)])
    return package_dir / ".build" / "workspace-state.json"

# ---------------------
# xcodebuild
# ---------------------
class XcodebuildCommand(str, Enum):
    ARCHIVE = "archive"
    CREATE_XCFRAMEWORK = "-create-xcframework"


@dataclass
class Xcodebuild:
    command: XcodebuildCommand
    scheme: Optional[str] = None
    archive_path: Optional[Path] = None
    derived_data_path: Optional[Path] = None
    sdk: Optional[str] = None
    build_settings: Dict[str, str] = field(default_factory=dict)
    additional_arguments: List[str] = field(default_factory=list)

    def arguments(self) -> List[str]:
        args = ["xcodebuild", self.command.value]
        if self.scheme:
            args += ["-scheme", self.scheme]
        if self.archive_path:
            args += ["-archivePath", str(self.archive_path)]
        if self.derived_data_path:
            args += ["-derivedDataPath", str(self.derived_data_path)]
        if self.sdk:
            args += ["-sdk", self.sdk]
        args += self.additional_arguments
        args += [f"{k}={v}" for k, v in self.build_settings.items()]
        return args

    def run(self, cwd: Optional[Path] = None) -> str:
        return run(self.arguments(), cwd=cwd)


def archive_path_for(build_path: Path, scheme: str, sdk: str) -> Path:
    return build_path / f"{scheme}-{sdk}.xcarchive"

def archive(scheme: str, package_path: Path, sdk: str, build_path: Path, derived_data_path: Path,
            additional_build_settings: Optional[Dict[str, str]] = None) -> Path:
    """Archive `scheme` for one sdk; returns the archive path."""
    settings = dict(DEFAULT_BUILD_SETTINGS)
    settings.update(additional_build_settings or {})
    archive_path = archive_path_for(build_path, scheme, sdk)
    logger.info("Building %s-%s...", scheme, sdk)
    Xcodebuild(
        command=XcodebuildCommand.ARCHIVE,
        scheme=scheme,
        archive_path=archive_path,
        derived_data_path=derived_data_path,
        sdk=sdk,
        build_settings=settings,
    ).run(cwd=package_path)
    return archive_path

def create_xcframework(frameworks: Sequence[Tuple[Path, Optional[Path]]], output: Path) -> None:
    """Combine (framework, debug symbols) pairs into one bundle at `output`."""
    args: List[str] = []
    for framework_path, debug_symbols in frameworks:
        args += ["-framework", str(framework_path)]
        if debug_symbols is not None:
            args += ["-debug-symbols", str(debug_symbols)]
    args += ["-output", str(output)]
    Xcodebuild(command=XcodebuildCommand.CREATE_XCFRAMEWORK, additional_arguments=args).run(cwd=output.parent)
