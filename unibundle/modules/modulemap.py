# unibundle/modules/modulemap.py
# -*- coding: utf-8 -*-
"""
modulemap.py - give each archived framework a module map and public headers

Two strategies:
- umbrella header: the package (or the build) already describes the module
  with `umbrella header "X.h"`. The umbrella is rewritten to framework-style
  imports and copied with its header closure into <Framework>/Headers.
- flat headers: no umbrella header is declared (or only an umbrella
  directory). Every header from the public header directories of the owning
  target(s) and their direct dependencies is copied and listed explicitly.

Swift-only frameworks get their .swiftmodule copied and need no module map
unless the target also declares header search paths.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from unibundle.modules.headers import copy_headers, qualify_local_imports, resolve_headers
from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import Manifest, SettingKind, Target

logger = get_logger("modulemap")

UMBRELLA_RE = re.compile(r'umbrella\s+(header\s+)?"([^"]+)"')

UMBRELLA_MODULE_TEMPLATE = """framework module {name} {{
    umbrella header "{umbrella}"

    export *
    module * {{ export * }}
}}
"""

FLAT_MODULE_TEMPLATE = """framework module {name} {{
{headers}
    export *
}}
"""

EMPTY_MODULE_TEMPLATE = """framework module {name} {{
    export *
}}
"""


def resource_bundle_name(product: str) -> str:
    return f"{product}_{product}.bundle"


@dataclass
class ArchivedFramework:
    """Where one product's outputs for one platform were left by the build tool."""
    framework_path: Path
    build_products_dir: Optional[Path] = None   # holds <Name>.swiftmodule and the resource bundle
    intermediates_dir: Optional[Path] = None    # holds the build-generated *.modulemap

    @property
    def name(self) -> str:
        return self.framework_path.stem

    @classmethod
    def locate(cls, framework_path: Path, derived_data_path: Path, package_name: str, sdk: str) -> "ArchivedFramework":
        """Find the build products and intermediates xcodebuild left in derived data for this framework."""
        name = framework_path.stem
        intermediates = derived_data_path / "Build" / "Intermediates.noindex" / "ArchiveIntermediates" / name
        return cls(
            framework_path=framework_path,
            build_products_dir=intermediates / "BuildProductsPath" / f"Release-{sdk}",
            intermediates_dir=(intermediates / "IntermediateBuildFilesPath" / f"{package_name}.build"
                               / f"Release-{sdk}" / f"{name}.build"),
        )


class ModuleMapSynthesizer:
    def __init__(self, manifest: Manifest, package_path: Path):
        self.manifest = manifest
        self.package_path = Path(package_path)

    # ----------------------
    # public API
    # ----------------------
    def synthesize(self, framework: ArchivedFramework) -> Optional[str]:
        """
        Install modules, headers and resources into `framework`. Returns the
        module map text written, or None for a Swift-only framework.
        """
        name = framework.name
        modules_dir = framework.framework_path / "Modules"
        modules_dir.mkdir(parents=True, exist_ok=True)

        swiftmodule = framework.build_products_dir / f"{name}.swiftmodule" if framework.build_products_dir else None
        has_swiftmodule = swiftmodule is not None and swiftmodule.exists()
        if has_swiftmodule:
            shutil.copytree(swiftmodule, modules_dir / swiftmodule.name, dirs_exist_ok=True)

        target = self.manifest.target(name)
        text: Optional[str] = None
        if not has_swiftmodule or (target is not None and target.has_setting(SettingKind.HEADER_SEARCH_PATH)):
            text = self.module_map_text(framework)
            (modules_dir / "module.modulemap").write_text(text, encoding="utf-8")

        self.copy_resource_bundle(framework)
        return text

    def module_map_text(self, framework: ArchivedFramework) -> str:
        name = framework.name
        module_map = self.find_module_map(framework)
        if module_map is not None:
            match = UMBRELLA_RE.search(module_map.read_text(encoding="utf-8", errors="replace"))
            if match and match.group(1):
                umbrella = (module_map.parent / match.group(2)).resolve()
                if umbrella.is_file():
                    return self._umbrella_header_strategy(framework, umbrella)
                logger.info("Umbrella header %s of %s not found, listing headers instead", match.group(2), name)
        else:
            logger.info("No module map found for %s, listing public headers", name)
        return self._flat_header_strategy(framework)

    def find_module_map(self, framework: ArchivedFramework) -> Optional[Path]:
        if framework.intermediates_dir and framework.intermediates_dir.is_dir():
            generated = sorted(framework.intermediates_dir.glob("*.modulemap"))
            if generated:
                return generated[0]
        target = self.manifest.target(framework.name)
        if target is None:
            return None
        source_dir = self.package_path / (target.path or f"Sources/{target.name}")
        if not source_dir.is_dir():
            return None
        found = sorted(source_dir.rglob("*.modulemap"))
        return found[0] if found else None

    def copy_resource_bundle(self, framework: ArchivedFramework) -> Optional[Path]:
        if not framework.build_products_dir:
            return None
        bundle = framework.build_products_dir / resource_bundle_name(framework.name)
        if not bundle.is_dir():
            logger.debug("No resource bundle for %s", framework.name)
            return None
        destination = framework.framework_path / bundle.name
        shutil.copytree(bundle, destination, dirs_exist_ok=True)
        return destination

    # ----------------------
    # strategies
    # ----------------------
    def _umbrella_header_strategy(self, framework: ArchivedFramework, umbrella: Path) -> str:
        name = framework.name
        headers_dir = framework.framework_path / "Headers"
        headers_dir.mkdir(parents=True, exist_ok=True)

        rewritten = qualify_local_imports(umbrella.read_text(encoding="utf-8", errors="replace"), name)
        (headers_dir / umbrella.name).write_text(rewritten, encoding="utf-8")

        closure = resolve_headers(umbrella, name, umbrella.parent)
        copied = copy_headers(closure[1:], headers_dir)
        logger.debug("Copied %d header(s) for %s", len(copied), name)
        return UMBRELLA_MODULE_TEMPLATE.format(name=name, umbrella=umbrella.name)

    def _owning_targets(self, name: str) -> List[Target]:
        product = self.manifest.product(name)
        if product is not None:
            owners = [self.manifest.targets[i] for i in self.manifest.resolve(product.target_names)]
        else:
            target = self.manifest.target(name)
            owners = [target] if target is not None else []
        out: List[Target] = list(owners)
        for owner in owners:
            for tid in self.manifest.resolve(owner.dependency_names):
                dep = self.manifest.targets[tid]
                if dep not in out:
                    out.append(dep)
        return out

    def public_header_dirs(self, name: str) -> List[Path]:
        dirs: List[Path] = []
        for target in self._owning_targets(name):
            if not target.public_headers_path:
                continue
            rel = Path(target.path) / target.public_headers_path if target.path else Path(target.public_headers_path)
            dirs.append(self.package_path / rel)
        return dirs

    def _flat_header_strategy(self, framework: ArchivedFramework) -> str:
        name = framework.name
        headers: List[Path] = []
        for directory in self.public_header_dirs(name):
            if directory.is_dir():
                headers.extend(sorted(directory.rglob("*.h")))
        if not headers:
            logger.info("No public headers for %s, exporting an empty module", name)
            return EMPTY_MODULE_TEMPLATE.format(name=name)

        copy_headers(headers, framework.framework_path / "Headers")
        names: List[str] = []
        for h in headers:
            if h.name not in names:
                names.append(h.name)
        lines = "\n".join(f'    header "{n}"' for n in names)
        return FLAT_MODULE_TEMPLATE.format(name=name, headers=lines + "\n")
