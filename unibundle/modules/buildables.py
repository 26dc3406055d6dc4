# unibundle/modules/buildables.py
# -*- coding: utf-8 -*-
"""
buildables.py - decide which targets of a package are built as products

For every declared product the transitive target closure is walked once
(diamonds and cycles visit each target a single time). Binary targets are
referenced as prebuilt; a source target whose only dependency is a binary
target is a re-export wrapper and is not built on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Iterable, List, Set, Union
from urllib.parse import urlparse

from unibundle.modules.logging import get_logger
from unibundle.modules.manifest import Manifest, Product, Target, TargetDependency, TargetKind

logger = get_logger("buildables")


@dataclass(frozen=True)
class TargetBuildable:
    """A source target that must be compiled."""
    target_name: str

    @property
    def name(self) -> str:
        return self.target_name

    @property
    def is_binary(self) -> bool:
        return False


@dataclass(frozen=True)
class BinaryTargetBuildable:
    """A prebuilt binary, identified by its declared path or URL."""
    target: Target

    @property
    def name(self) -> str:
        if self.target.url:
            last = PurePosixPath(urlparse(self.target.url).path).name
            if last:
                return last.split(".")[0]
        if self.target.path:
            return PurePosixPath(self.target.path).name.split(".")[0]
        return self.target.name

    @property
    def is_binary(self) -> bool:
        return True


Buildable = Union[TargetBuildable, BinaryTargetBuildable]

# -----------------------
# Closure
# -----------------------
class NodeKind(Enum):
    PRODUCT = "product"
    TARGET = "target"
    DEPENDENCY = "dependency"


def _roots(manifest: Manifest, kind: NodeKind, node) -> List[int]:
    if kind is NodeKind.PRODUCT:
        return manifest.resolve(node.target_names)
    if kind is NodeKind.TARGET:
        return manifest.resolve([node.name])
    if kind is NodeKind.DEPENDENCY:
        return manifest.resolve(node.names)
    raise ValueError(f"unknown node kind {kind}")

def target_closure(manifest: Manifest, kind: NodeKind, node: Union[Product, Target, TargetDependency]) -> List[int]:
    """
    Ids of every target reachable from `node`, in depth-first pre-order.
    Each target is visited once however many paths reach it.
    """
    order: List[int] = []
    seen: Set[int] = set()
    stack = list(reversed(_roots(manifest, kind, node)))
    while stack:
        tid = stack.pop()
        if tid in seen:
            continue
        seen.add(tid)
        order.append(tid)
        children = manifest.resolve(manifest.targets[tid].dependency_names)
        stack.extend(reversed(children))
    return order

# -----------------------
# Extraction
# -----------------------
def _dedup(items: Iterable[Buildable]) -> List[Buildable]:
    seen: Set[Buildable] = set()
    out: List[Buildable] = []
    for b in items:
        if b not in seen:
            seen.add(b)
            out.append(b)
    return out

def _is_binary_wrapper(manifest: Manifest, target: Target) -> bool:
    names = target.dependency_names
    if len(names) != 1:
        return False
    dep = manifest.target(names[0])
    return dep is not None and dep.kind is TargetKind.BINARY

def product_buildables(manifest: Manifest, product: Product) -> List[Buildable]:
    out: List[Buildable] = []
    for tid in target_closure(manifest, NodeKind.PRODUCT, product):
        target = manifest.targets[tid]
        if target.kind is TargetKind.BINARY:
            out.append(BinaryTargetBuildable(target))
        elif _is_binary_wrapper(manifest, target):
            # wrappers that declare settings may add content of their own
            if target.settings:
                logger.info("Skipping %s as a wrapper of binary %s although it declares %d setting(s)",
                            target.name, target.dependency_names[0], len(target.settings))
            else:
                logger.debug("Skipping %s as a wrapper of binary %s", target.name, target.dependency_names[0])
        else:
            out.append(TargetBuildable(target.name))
    return _dedup(out)

def buildables(manifest: Manifest) -> List[Buildable]:
    """Ordered, de-duplicated buildables of every product, in product declaration order."""
    out: List[Buildable] = []
    for product in manifest.products:
        out.extend(product_buildables(manifest, product))
    return _dedup(out)
