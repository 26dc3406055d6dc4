# unibundle/modules/manifest_loader.py
# -*- coding: utf-8 -*-
"""
manifest_loader.py - load package manifests through a content-addressed cache

Cache entries live at <cache>/manifests/<packageDirName>-<sha256 of Package.swift>.json
and hold the describe tool's output verbatim. Entries are written to a temp
file in the same directory and promoted with os.replace, so a concurrent
reader sees either nothing or a complete entry.

A decode failure (schema drift between a cached entry and the decoder) drops
the entry and reloads once; a second failure propagates.
"""

from __future__ import annotations

import os
import re
import json
import hashlib
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from unibundle.modules import toolchain
from unibundle.modules.config import Context
from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import Manifest, ManifestDecodeError, ManifestUnreadable

logger = get_logger("manifest")

MANIFEST_FILE = "Package.swift"

Describer = Callable[[Path], bytes]

_DIGEST_RE = re.compile(r"[0-9a-f]{64}")


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()

def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, then promote it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class ManifestLoader:
    def __init__(self, context: Context, describe: Optional[Describer] = None):
        self.context = context
        self.cache_dir = context.manifest_cache_path
        self._describe = describe or toolchain.describe_package

    def cache_path_for(self, package_dir: Path) -> Path:
        source = Path(package_dir) / MANIFEST_FILE
        if not source.is_file():
            raise ManifestUnreadable(str(package_dir))
        return self.cache_dir / f"{Path(package_dir).name}-{_sha256_file(source)}.json"

    def load(self, package_dir: Path) -> Manifest:
        package_dir = Path(package_dir)
        try:
            return self._load_once(package_dir)
        except ManifestDecodeError as e:
            logger.warning("Dropping cached description for %s after decode failure: %s", package_dir.name, e.reason)
            self._drop(package_dir)
        try:
            return self._load_once(package_dir)
        except ManifestDecodeError:
            # leave no entry behind that would fail the same way next run
            self._drop(package_dir)
            raise

    def _load_once(self, package_dir: Path) -> Manifest:
        cached = self.cache_path_for(package_dir)
        if cached.exists():
            logger.debug("Loading cached package description for %s", package_dir.name)
            data = cached.read_bytes()
        else:
            logger.debug("Reading package description for %s", package_dir.name)
            data = self._describe(package_dir)
            atomic_write_bytes(cached, data)
        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestDecodeError(str(cached), f"invalid JSON: {e}") from e
        return Manifest.decode(raw, source=str(cached))

    def _drop(self, package_dir: Path) -> None:
        try:
            self.cache_path_for(package_dir).unlink()
        except FileNotFoundError:
            pass

    def invalidate(self, package_dir: Optional[Path] = None) -> List[Path]:
        """Remove cache entries for one package (any content hash), or all of them."""
        if not self.cache_dir.exists():
            return []
        prefix = f"{Path(package_dir).name}-" if package_dir else ""
        removed = []
        for entry in self.cache_dir.glob(f"{prefix}*.json"):
            digest = entry.stem[len(prefix):] if prefix else entry.stem[-64:]
            if not _DIGEST_RE.fullmatch(digest):
                continue
            entry.unlink()
            removed.append(entry)
        logger.info("Removed %d cached package description(s)", len(removed))
        return removed
