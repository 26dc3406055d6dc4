# unibundle/modules/interfaces.py
# -*- coding: utf-8 -*-
"""
interfaces.py - rewrite self-qualified module references in .swiftinterface files

When a module exports a type carrying the module's own name, the compiler
emits `Name.Name` in the textual interface, which later fails to resolve.
Stripping the qualification for every framework built in the same run keeps
the interfaces importable. This module is the only place that touches
compiled interfaces; remove it once the toolchain emits unambiguous names.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List

from unibundle.modules.logging import get_logger

logger = get_logger("interfaces")


def dequalify_module_references(text: str, names: Iterable[str]) -> str:
    """Replace `N.N` with `N` for every N in `names`."""
    for name in names:
        if not name:
            continue
        text = re.sub(r"(?<!\w)" + re.escape(name) + r"\." + re.escape(name) + r"(?!\w)", name, text)
    return text

def interface_files(framework_path: Path) -> List[Path]:
    module_dir = framework_path / "Modules" / f"{framework_path.stem}.swiftmodule"
    if not module_dir.is_dir():
        return []
    return sorted(module_dir.glob("*.swiftinterface"))

def rewrite_interfaces(framework_path: Path, names: Iterable[str]) -> List[Path]:
    """Rewrite the framework's interface files in place; returns the files that changed."""
    names = list(names)
    changed: List[Path] = []
    for interface in interface_files(framework_path):
        original = interface.read_text(encoding="utf-8")
        rewritten = dequalify_module_references(original, names)
        if rewritten != original:
            interface.write_text(rewritten, encoding="utf-8")
            changed.append(interface)
    if changed:
        logger.debug("Rewrote %d interface file(s) in %s", len(changed), framework_path.name)
    return changed
