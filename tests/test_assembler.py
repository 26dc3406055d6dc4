import json

import pytest

from unibundle.modules.assembler import (
    ArchiveDescriptor,
    Artifact,
    AssemblyError,
    BundleAssembler,
    EmptyArchiveSet,
    frameworks_in_archive,
    write_artifacts,
)
from unibundle.modules.toolchain import CollaboratorError

from conftest import FakeCombine, make_archive

MODULE_MAP = "framework module P {\n    export *\n}\n"


def _archives(context, product="P", interface="", dsym=False):
    return [
        ArchiveDescriptor.from_archive(make_archive(context.build_path, product, sdk, interface, dsym), product, sdk)
        for sdk in context.platforms
    ]


def _snapshot(root):
    return sorted((str(p.relative_to(root)), p.stat().st_mtime_ns) for p in root.rglob("*"))


def test_two_platforms_then_skip_is_a_noop(context):
    combine = FakeCombine()
    assembler = BundleAssembler(context, combine=combine)
    archives = _archives(context)

    out = assembler.assemble("P", archives, skip_if_exists=True, module_map=MODULE_MAP)

    assert out == context.build_path / "P.xcframework"
    platforms = [p for p in out.iterdir() if p.is_dir()]
    assert len(platforms) == 2
    for platform in platforms:
        assert (platform / "P.framework" / "Modules" / "module.modulemap").read_text() == MODULE_MAP
    assert len(combine.calls) == 1

    before = _snapshot(context.build_path)
    again = assembler.assemble("P", archives, skip_if_exists=True, module_map=MODULE_MAP)
    assert again == out
    assert _snapshot(context.build_path) == before
    assert len(combine.calls) == 1


def test_empty_archive_set(context):
    with pytest.raises(EmptyArchiveSet) as exc:
        BundleAssembler(context, combine=FakeCombine()).assemble("P", [])
    assert exc.value.product == "P"


def test_stale_output_is_replaced(context):
    stale = context.build_path / "P.xcframework"
    stale.mkdir(parents=True)
    (stale / "stale.txt").write_text("old")

    out = BundleAssembler(context, combine=FakeCombine()).assemble("P", _archives(context), skip_if_exists=False)
    assert not (out / "stale.txt").exists()
    assert (out / "Info.plist").exists()


def test_interfaces_are_rewritten_before_combining(context):
    archives = _archives(context, interface="public struct P.P {}\nlet q: Q.Q\n")
    out = BundleAssembler(context, combine=FakeCombine()).assemble("P", archives, sibling_names=["P", "Q"])
    for archive in archives:
        interface = archive.framework_path / "Modules" / "P.swiftmodule" / "arm64-apple-ios.swiftinterface"
        assert interface.read_text() == "public struct P {}\nlet q: Q\n"
    combined = out / "platform-0" / "P.framework" / "Modules" / "P.swiftmodule" / "arm64-apple-ios.swiftinterface"
    assert combined.read_text() == "public struct P {}\nlet q: Q\n"


def test_debug_symbols_are_passed_when_present(context):
    combine = FakeCombine()
    archives = _archives(context, dsym=True)
    BundleAssembler(context, combine=combine).assemble("P", archives)
    pairs, output = combine.calls[0]
    assert [dsym.name for _fw, dsym in pairs] == ["P.framework.dSYM", "P.framework.dSYM"]
    assert output.name == "P.xcframework"

    assert ArchiveDescriptor.from_archive(context.build_path / "nowhere.xcarchive", "P", "iphoneos").debug_symbols_path is None


def test_failure_leaves_no_bundle_behind(context):
    archives = _archives(context)
    failing = BundleAssembler(context, combine=FakeCombine(fail=True))

    with pytest.raises(AssemblyError) as exc:
        failing.assemble("P", archives, skip_if_exists=True)
    assert exc.value.product == "P"
    assert not (context.build_path / "P.xcframework").exists()
    assert not (context.build_path / ".P.staging").exists()

    combine = FakeCombine()
    BundleAssembler(context, combine=combine).assemble("P", archives, skip_if_exists=True)
    assert len(combine.calls) == 1


def test_collaborator_failure_is_annotated(context):
    def combine(pairs, output):
        raise CollaboratorError(["xcodebuild", "-create-xcframework"], 70, "error: bad framework")

    with pytest.raises(AssemblyError) as exc:
        BundleAssembler(context, combine=combine).assemble("P", _archives(context))
    assert isinstance(exc.value.cause, CollaboratorError)
    assert exc.value.cause.returncode == 70


def test_resource_bundle_is_added_to_every_platform(context, tmp_path):
    bundle = tmp_path / "P_P.bundle"
    bundle.mkdir()
    (bundle / "strings.json").write_text("{}")
    out = BundleAssembler(context, combine=FakeCombine()).assemble("P", _archives(context), resource_bundle=bundle)
    assert sorted(p.parent.parent.name for p in out.glob("*/P.framework/P_P.bundle")) == ["platform-0", "platform-1"]


def test_frameworks_in_archive(context):
    archive = make_archive(context.build_path, "P", "iphoneos")
    (archive / "Products" / "Library" / "Frameworks" / "Aux.framework").mkdir()
    assert frameworks_in_archive(archive) == ["Aux", "P"]
    assert frameworks_in_archive(context.build_path / "missing.xcarchive") == []


def test_write_artifacts(tmp_path):
    path = write_artifacts(tmp_path / "artifacts.json", [Artifact("P", "abc", tmp_path / "P.xcframework")])
    assert json.loads(path.read_text()) == [{"name": "P", "version": "abc", "path": str(tmp_path / "P.xcframework")}]
