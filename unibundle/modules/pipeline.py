# unibundle/modules/pipeline.py
# -*- coding: utf-8 -*-
"""
pipeline.py - drive packages from declaration to finished bundles

Flow:
  prepare()  -> write a package description declaring every configured
                dependency, resolve it, read the resolved checkouts
  process(d) -> copy the checkout to a scratch directory, hide Xcode
                projects, then per source buildable: force a dynamic library
                product, archive it for every platform (in parallel),
                complete module maps and headers, assemble the bundle.
                Binary buildables with a local bundle are copied as-is.
  run()      -> prepare + process every package, record artifacts.json

Every component receives the run's Context explicitly.
"""

from __future__ import annotations

import re
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from unibundle.modules import toolchain
from unibundle.modules.assembler import (
    ArchiveDescriptor,
    Artifact,
    BundleAssembler,
    EmptyArchiveSet,
    frameworks_in_archive,
    write_artifacts,
)
from unibundle.modules.buildables import BinaryTargetBuildable
from unibundle.modules.config import Context
from unibundle.modules.logging import get_logger
from unibundle.modules.manifest_loader import ManifestLoader, atomic_write_bytes
from unibundle.modules.modulemap import ArchivedFramework, ModuleMapSynthesizer
from unibundle.modules.packages import PackageDescriptor, WorkspaceState, descriptors_for, read_workspace_state

logger = get_logger("pipeline")

Archiver = Callable[..., Path]
Resolver = Callable[[Path], Path]

ARTIFACTS_FILE = "artifacts.json"
HIDDEN_SUFFIX = ".bak"

DEPLOYMENT_TARGET_SETTINGS = {
    "iOS": "IPHONEOS_DEPLOYMENT_TARGET",
    "macOS": "MACOSX_DEPLOYMENT_TARGET",
    "tvOS": "TVOS_DEPLOYMENT_TARGET",
    "watchOS": "WATCHOS_DEPLOYMENT_TARGET",
}

# ----------------------
# package description text
# ----------------------
def _requirement(pkg: Mapping[str, Any]) -> str:
    if pkg.get("exact"):
        return f'.exact("{pkg["exact"]}")'
    if pkg.get("branch"):
        return f'.branch("{pkg["branch"]}")'
    if pkg.get("revision"):
        return f'.revision("{pkg["revision"]}")'
    if pkg.get("from"):
        return f'from: "{pkg["from"]}"'
    raise ValueError(f"package {pkg.get('name')} declares no version requirement")

def render_package_manifest(name: str, packages: Sequence[Mapping[str, Any]],
                            deployment_targets: Optional[Mapping[str, str]] = None) -> str:
    """Package.swift declaring `packages` as dependencies, used only to resolve them."""
    lines = [
        "// swift-tools-version:5.3",
        "import PackageDescription",
        "",
        "let package = Package(",
        f'    name: "{name}",',
    ]
    platforms = [f'.{p}("{v}")' for p, v in (deployment_targets or {}).items() if p in DEPLOYMENT_TARGET_SETTINGS]
    if platforms:
        lines.append(f"    platforms: [{', '.join(platforms)}],")
    lines.append("    dependencies: [")
    for pkg in packages:
        lines.append(f'        .package(name: "{pkg["name"]}", url: "{pkg["url"]}", {_requirement(pkg)}),')
    lines.append("    ]")
    lines.append(")")
    return "\n".join(lines) + "\n"

def force_dynamic_library(manifest_text: str, product: str) -> str:
    """Make the `.library(name: "<product>", ...)` declaration a dynamic library."""
    pattern = re.compile(
        r'(\.library\(\s*name\s*:\s*"' + re.escape(product) + r'"\s*,)(\s*type\s*:\s*\.(?:static|dynamic)\s*,)?'
    )
    return pattern.sub(lambda m: m.group(1) + " type: .dynamic,", manifest_text)

# ----------------------
# working directory
# ----------------------
def hide_projects(path: Path) -> List[Path]:
    """Rename Xcode projects/workspaces so xcodebuild builds from Package.swift."""
    hidden = []
    for pattern in ("*.xcodeproj", "*.xcworkspace"):
        for p in sorted(path.glob(pattern)):
            target = p.with_name(p.name + HIDDEN_SUFFIX)
            p.rename(target)
            hidden.append(target)
    return hidden

def restore_projects(hidden: Sequence[Path]) -> None:
    for p in hidden:
        if p.exists():
            p.rename(p.with_name(p.name[: -len(HIDDEN_SUFFIX)]))


class Pipeline:
    def __init__(
        self,
        context: Context,
        packages: Sequence[Mapping[str, Any]] = (),
        loader: Optional[ManifestLoader] = None,
        assembler: Optional[BundleAssembler] = None,
        archive: Optional[Archiver] = None,
        resolve: Optional[Resolver] = None,
    ):
        self.context = context
        self.packages = list(packages)
        self.loader = loader or ManifestLoader(context)
        self.assembler = assembler or BundleAssembler(context)
        self._archive = archive or toolchain.archive
        self._resolve = resolve or toolchain.resolve_packages
        self.state: Optional[WorkspaceState] = None

    @property
    def project_dir(self) -> Path:
        return self.context.cache_path / self.context.name

    # ----------------------
    # prepare
    # ----------------------
    def write_package_manifest(self) -> Path:
        path = self.project_dir / "Package.swift"
        text = render_package_manifest(self.context.name, self.packages, self.context.deployment_targets)
        atomic_write_bytes(path, text.encode("utf-8"))
        return path

    def prepare(self) -> List[PackageDescriptor]:
        self.write_package_manifest()
        self.context.derived_data_path.mkdir(parents=True, exist_ok=True)
        state_path = self._resolve(self.project_dir)
        self.state = read_workspace_state(state_path)
        return descriptors_for(self.state, self.loader)

    # ----------------------
    # process
    # ----------------------
    def setup_working_path(self, descriptor: PackageDescriptor) -> Path:
        working = self.context.cache_path / "work" / descriptor.name
        if working.exists():
            shutil.rmtree(working)
        working.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(descriptor.path, working, symlinks=True)
        return working

    def derived_data_for(self, sdk: str) -> Path:
        """Derived data directory of one platform's archive."""
        return self.context.derived_data_path / sdk

    def build_settings(self) -> Dict[str, str]:
        settings = {DEPLOYMENT_TARGET_SETTINGS[p]: v for p, v in self.context.deployment_targets.items()
                    if p in DEPLOYMENT_TARGET_SETTINGS}
        settings.update(self.context.build_settings)
        return settings

    def process(self, descriptor: PackageDescriptor) -> List[Artifact]:
        logger.info("Processing %s (%s)", descriptor.name, descriptor.version)
        working = self.setup_working_path(descriptor)
        hidden = hide_projects(working)
        artifacts: List[Artifact] = []
        try:
            for buildable in descriptor.buildables:
                if isinstance(buildable, BinaryTargetBuildable):
                    artifact = self._copy_binary(descriptor, buildable)
                    if artifact is not None:
                        artifacts.append(artifact)
                    continue
                artifacts.extend(self._build_product(descriptor, buildable.name, working))
        finally:
            restore_projects(hidden)
            shutil.rmtree(working, ignore_errors=True)
        return artifacts

    def _build_product(self, descriptor: PackageDescriptor, product: str, working: Path) -> List[Artifact]:
        manifest_path = working / "Package.swift"
        manifest_path.write_text(force_dynamic_library(manifest_path.read_text(encoding="utf-8"), product),
                                 encoding="utf-8")

        archives = self.archive_all(product, working)
        if not archives:
            raise EmptyArchiveSet(product)
        synthesizer = ModuleMapSynthesizer(descriptor.manifest, working)
        for sdk, archive_path in archives:
            for name in frameworks_in_archive(archive_path):
                framework_path = archive_path / "Products" / "Library" / "Frameworks" / f"{name}.framework"
                synthesizer.synthesize(
                    ArchivedFramework.locate(framework_path, self.derived_data_for(sdk), descriptor.name, sdk)
                )

        included = set(descriptor.product_names)
        names = [n for n in frameworks_in_archive(archives[0][1]) if n in included]
        if not names:
            logger.info("No frameworks of %s found in archives for %s", descriptor.name, product)
            return []

        out = []
        for name in names:
            path = self.assembler.assemble(
                name,
                [ArchiveDescriptor.from_archive(archive_path, name, sdk) for sdk, archive_path in archives],
                skip_if_exists=self.context.skip_if_exists,
                sibling_names=names,
            )
            out.append(Artifact(name=name, version=descriptor.version_for(name), path=path))
        return out

    def archive_all(self, product: str, working: Path) -> List[Tuple[str, Path]]:
        """Archive `product` for every configured platform; returns (sdk, archive) in platform order."""
        platforms = list(self.context.platforms)
        settings = self.build_settings()
        results: Dict[str, Path] = {}
        with ThreadPoolExecutor(max_workers=max(1, min(self.context.jobs, len(platforms)))) as exc:
            futures = {
                exc.submit(self._archive, product, working, sdk, self.context.build_path,
                           self.derived_data_for(sdk), settings): sdk
                for sdk in platforms
            }
            for fut in as_completed(futures):
                sdk = futures[fut]
                try:
                    results[sdk] = fut.result()
                except Exception as e:
                    logger.error("Archiving %s for %s failed: %s", product, sdk, e)
                    raise
        return [(sdk, results[sdk]) for sdk in platforms]

    def _copy_binary(self, descriptor: PackageDescriptor, buildable: BinaryTargetBuildable) -> Optional[Artifact]:
        target = buildable.target
        candidates: List[Path] = []
        if target.path:
            candidates.append(descriptor.path / target.path)
        if self.state is not None:
            for artifact in self.state.artifacts_for(descriptor.identity):
                if artifact.target_name == target.name and artifact.path:
                    candidates.append(Path(artifact.path))
        source = next((c for c in candidates if c.is_dir()), None)
        if source is None:
            logger.info("Skipping binary target %s, no local bundle", target.name)
            return None

        destination = self.context.build_path / source.name
        if self.context.skip_if_exists and destination.exists():
            logger.info("Skipping %s, already exists at %s", buildable.name, destination)
        else:
            if destination.exists():
                shutil.rmtree(destination)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, destination, symlinks=True)
        return Artifact(name=buildable.name, version=descriptor.version_for(buildable.name), path=destination)

    # ----------------------
    # run
    # ----------------------
    def run(self) -> List[Artifact]:
        self.context.build_path.mkdir(parents=True, exist_ok=True)
        artifacts: List[Artifact] = []
        for descriptor in self.prepare():
            artifacts.extend(self.process(descriptor))
        write_artifacts(self.context.build_path / ARTIFACTS_FILE, artifacts)
        logger.info("Finished: %d artifact(s)", len(artifacts))
        return artifacts
