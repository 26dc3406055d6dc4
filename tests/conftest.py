# tests/conftest.py
import json
import shutil
from pathlib import Path

import pytest

from unibundle.modules.config import Context


@pytest.fixture
def context(tmp_path):
    return Context(
        name="Test",
        cache_path=tmp_path / "cache",
        build_path=tmp_path / "build",
        platforms=("iphoneos", "iphonesimulator"),
        jobs=2,
        skip_if_exists=True,
    )


def target(name, type="regular", deps=(), **extra):
    raw = {"name": name, "type": type, "dependencies": [{"byName": [d, None]} for d in deps]}
    raw.update(extra)
    return raw


def manifest_dict(name, products, targets):
    return {
        "name": name,
        "products": [{"name": p, "targets": list(t)} for p, t in products.items()],
        "targets": list(targets),
    }


@pytest.fixture
def make_checkout(tmp_path):
    """Create a package checkout with Package.swift and git metadata."""
    def _make(name="Foo", root=None, head="abc123", package_swift=None, files=None):
        path = Path(root) if root else tmp_path / "checkouts" / name
        path.mkdir(parents=True, exist_ok=True)
        (path / "Package.swift").write_text(
            package_swift or f'let package = Package(name: "{name}", products: [.library(name: "{name}", targets: ["{name}"])])\n'
        )
        (path / ".git").mkdir(exist_ok=True)
        (path / ".git" / "HEAD").write_text(head + "\n")
        for rel, content in (files or {}).items():
            p = path / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content)
        return path
    return _make


class FakeDescribe:
    """Stands in for the package manager's describe command."""

    def __init__(self, raw):
        self.raw = raw
        self.calls = []

    def __call__(self, package_dir):
        self.calls.append(Path(package_dir))
        if isinstance(self.raw, bytes):
            return self.raw
        if callable(self.raw):
            return json.dumps(self.raw(Path(package_dir))).encode("utf-8")
        return json.dumps(self.raw).encode("utf-8")


class FakeCombine:
    """Copies every platform framework into <output>/<platform-n>/, like the real tool."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def __call__(self, pairs, output):
        self.calls.append((list(pairs), Path(output)))
        output.mkdir(parents=True)
        (output / "Info.plist").write_text("<plist/>")
        for i, (framework, _dsym) in enumerate(pairs):
            shutil.copytree(framework, output / f"platform-{i}" / framework.name)
        if self.fail:
            raise OSError("combine tool crashed")


def make_archive(build_path, product, sdk, interface="", dsym=False):
    archive = build_path / f"{product}-{sdk}.xcarchive"
    framework = archive / "Products" / "Library" / "Frameworks" / f"{product}.framework"
    framework.mkdir(parents=True, exist_ok=True)
    (framework / product).write_text("binary")
    if interface:
        module = framework / "Modules" / f"{product}.swiftmodule"
        module.mkdir(parents=True, exist_ok=True)
        (module / "arm64-apple-ios.swiftinterface").write_text(interface)
    if dsym:
        (archive / "dSYMs" / f"{product}.framework.dSYM").mkdir(parents=True, exist_ok=True)
    return archive
