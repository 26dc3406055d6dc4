# unibundle/modules/assembler.py
# -*- coding: utf-8 -*-
"""
assembler.py - combine per-platform archives of a product into one bundle

Features:
- skip-if-exists short-circuit with no filesystem side effects
- stale output removal before rebuilding
- in-place interface rewrite for self-qualified module names (see interfaces.py)
- one combine call per product (framework + optional debug symbols per platform)
- module map / resource bundle completion of every platform subtree
- output built under a staging directory and promoted with a rename, so a
  failed run never leaves a bundle that looks complete
"""

from __future__ import annotations

import os
import json
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from unibundle.modules import toolchain
from unibundle.modules.config import Context
from unibundle.modules.interfaces import rewrite_interfaces
from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import UnibundleError
from unibundle.modules.manifest_loader import atomic_write_bytes
from unibundle.modules.toolchain import CollaboratorError

logger = get_logger("assembler")

BUNDLE_SUFFIX = ".xcframework"

Combiner = Callable[[Sequence[Tuple[Path, Optional[Path]]], Path], None]


class EmptyArchiveSet(UnibundleError):
    def __init__(self, product: str):
        super().__init__(f"no archives supplied for {product}")
        self.product = product


class AssemblyError(UnibundleError):
    def __init__(self, product: str, platform: Optional[str], cause: BaseException):
        where = platform or "all platforms"
        super().__init__(f"assembling {product} ({where}) failed: {cause}")
        self.product = product
        self.platform = platform
        self.cause = cause


@dataclass(frozen=True)
class ArchiveDescriptor:
    platform: str
    framework_path: Path
    debug_symbols_path: Optional[Path] = None

    @classmethod
    def from_archive(cls, archive_path: Path, product: str, platform: str) -> "ArchiveDescriptor":
        """Locate `product` inside an .xcarchive produced for `platform`."""
        framework = archive_path / "Products" / "Library" / "Frameworks" / f"{product}.framework"
        dsym = archive_path / "dSYMs" / f"{product}.framework.dSYM"
        return cls(platform=platform, framework_path=framework, debug_symbols_path=dsym if dsym.exists() else None)


@dataclass(frozen=True)
class Artifact:
    name: str
    version: str
    path: Path

    def as_dict(self) -> dict:
        d = asdict(self)
        d["path"] = str(self.path)
        return d


def frameworks_in_archive(archive_path: Path) -> List[str]:
    """Names of every framework an archive contains."""
    root = archive_path / "Products" / "Library" / "Frameworks"
    if not root.is_dir():
        return []
    return sorted(p.stem for p in root.glob("*.framework"))

def write_artifacts(path: Path, artifacts: Iterable[Artifact]) -> Path:
    data = json.dumps([a.as_dict() for a in artifacts], indent=2, ensure_ascii=False)
    atomic_write_bytes(path, data.encode("utf-8"))
    return path


class BundleAssembler:
    def __init__(self, context: Context, combine: Optional[Combiner] = None):
        self.context = context
        self._combine = combine or toolchain.create_xcframework

    def output_path(self, product: str) -> Path:
        return self.context.build_path / f"{product}{BUNDLE_SUFFIX}"

    def assemble(
        self,
        product: str,
        archives: Sequence[ArchiveDescriptor],
        skip_if_exists: Optional[bool] = None,
        sibling_names: Iterable[str] = (),
        module_map: Optional[str] = None,
        resource_bundle: Optional[Path] = None,
    ) -> Path:
        """
        Build <build_path>/<product>.xcframework from `archives`.
        The returned path is only valid once this call returns without error.
        """
        if not archives:
            logger.error("No archives to assemble for %s", product)
            raise EmptyArchiveSet(product)
        if skip_if_exists is None:
            skip_if_exists = self.context.skip_if_exists

        output = self.output_path(product)
        if skip_if_exists and output.exists():
            logger.info("Skipping %s, already exists at %s", product, output)
            return output

        logger.info("Creating %s%s...", product, BUNDLE_SUFFIX)
        staging_root = self.context.build_path / f".{product}.staging"
        staging = staging_root / output.name
        names = list(sibling_names) or [product]
        platform: Optional[str] = None
        try:
            if output.exists():
                shutil.rmtree(output)
            if staging_root.exists():
                shutil.rmtree(staging_root)
            staging_root.mkdir(parents=True)

            for archive in archives:
                platform = archive.platform
                rewrite_interfaces(archive.framework_path, names)
            platform = None

            pairs = [
                (a.framework_path, a.debug_symbols_path if a.debug_symbols_path and a.debug_symbols_path.exists() else None)
                for a in archives
            ]
            self._combine(pairs, staging)
            self._complete_platforms(product, staging, module_map, resource_bundle)
            os.replace(staging, output)
        except (OSError, CollaboratorError) as e:
            logger.error("Assembly of %s failed: %s", product, e)
            raise AssemblyError(product, platform, e) from e
        finally:
            if staging_root.exists():
                shutil.rmtree(staging_root, ignore_errors=True)

        logger.info("Created %s", output)
        return output

    # ----------------------
    # helpers
    # ----------------------
    def _complete_platforms(self, product: str, bundle: Path, module_map: Optional[str],
                            resource_bundle: Optional[Path]) -> None:
        for framework in sorted(bundle.glob(f"*/{product}.framework")):
            if module_map is not None:
                target = framework / "Modules" / "module.modulemap"
                if not target.exists():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(module_map, encoding="utf-8")
            if resource_bundle is not None and resource_bundle.is_dir():
                destination = framework / resource_bundle.name
                if not destination.exists():
                    shutil.copytree(resource_bundle, destination)
