# unibundle/modules/headers.py
# -*- coding: utf-8 -*-
"""
headers.py - public header closure of a framework

Starting from an umbrella header, follow local (`#import "X.h"`) and
framework-qualified (`#import <Framework/X.h>`) imports through the source
header directory. The import graph may contain cycles; every header is read
at most once. Starting from a directory, the closure is simply the headers
directly inside it.
"""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Iterable, List, Set

from unibundle.modules.logging import get_logger

logger = get_logger("headers")

LOCAL_IMPORT_RE = re.compile(r'^[ \t]*#[ \t]*(import|include)[ \t]+"([^"\n]+)\.h"', re.MULTILINE)


def _framework_import_re(framework_name: str) -> "re.Pattern[str]":
    return re.compile(
        r"^[ \t]*#[ \t]*(?:import|include)[ \t]+<" + re.escape(framework_name) + r"/([^>\n]+)\.h>",
        re.MULTILINE,
    )

def _norm(p: Path) -> Path:
    return Path(os.path.abspath(str(p)))

def imported_headers(header: Path, framework_name: str, source_header_dir: Path) -> List[Path]:
    """Candidate paths for every local or framework import in `header`, in file order."""
    try:
        contents = header.read_text(encoding="utf-8", errors="replace")
    except (FileNotFoundError, IsADirectoryError):
        return []
    stems = [m.group(2) for m in LOCAL_IMPORT_RE.finditer(contents)]
    stems += [m.group(1) for m in _framework_import_re(framework_name).finditer(contents)]
    out: List[Path] = []
    for stem in stems:
        candidate = _norm(source_header_dir / f"{stem}.h")
        if candidate not in out:
            out.append(candidate)
    return out

def resolve_headers(umbrella: Path, framework_name: str, source_header_dir: Path) -> List[Path]:
    """
    Headers that must ship with `framework_name` so the umbrella is self-contained.
    The umbrella is always first; a missing header contributes only itself.
    """
    umbrella = _norm(Path(umbrella))
    source_header_dir = _norm(Path(source_header_dir))
    if umbrella.is_dir():
        return sorted(p for p in umbrella.glob("*.h") if p.is_file())

    closure: List[Path] = []
    seen: Set[Path] = set()
    stack = [umbrella]
    while stack:
        header = stack.pop()
        if header in seen:
            continue
        seen.add(header)
        closure.append(header)
        pending = [c for c in imported_headers(header, framework_name, source_header_dir)
                   if c not in seen and c != header]
        stack.extend(reversed(pending))
    logger.debug("Header closure of %s: %d file(s)", umbrella.name, len(closure))
    return closure

def qualify_local_imports(contents: str, framework_name: str) -> str:
    """Rewrite `#import "X.h"` into `#import <Framework/X.h>`."""
    return LOCAL_IMPORT_RE.sub(lambda m: f"#{m.group(1)} <{framework_name}/{m.group(2)}.h>", contents)

def copy_headers(headers: Iterable[Path], destination: Path) -> List[Path]:
    """
    Copy headers flat into `destination`. Existing files are never overwritten
    and missing sources are skipped; symlinks are copied as their target.
    """
    copied: List[Path] = []
    for header in headers:
        target = destination / header.name
        if target.exists() or not header.is_file():
            continue
        destination.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(header.resolve(), target)
        copied.append(target)
    return copied
