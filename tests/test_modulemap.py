from unibundle.modules.manifest import Manifest
from unibundle.modules.modulemap import (
    EMPTY_MODULE_TEMPLATE,
    UMBRELLA_MODULE_TEMPLATE,
    ArchivedFramework,
    ModuleMapSynthesizer,
)

from conftest import manifest_dict, target


def _files(root, files):
    for rel, content in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)


def _synth(pkg, products, targets):
    return ModuleMapSynthesizer(Manifest.decode(manifest_dict("Pkg", products, targets)), pkg)


def test_umbrella_header_strategy(tmp_path):
    pkg = tmp_path / "pkg"
    _files(pkg, {
        "Sources/Foo/include/module.modulemap": 'module Foo {\n    umbrella header "Foo.h"\n    export *\n}\n',
        "Sources/Foo/include/Foo.h": '#import "Bar.h"\n#import <Foo/Baz.h>\n',
        "Sources/Foo/include/Bar.h": "// bar\n",
        "Sources/Foo/include/Baz.h": '#import "Bar.h"\n',
    })
    synth = _synth(pkg, {"Foo": ["Foo"]}, [target("Foo", path="Sources/Foo")])
    framework = tmp_path / "archive" / "Foo.framework"
    framework.mkdir(parents=True)

    text = synth.synthesize(ArchivedFramework(framework))

    assert text == UMBRELLA_MODULE_TEMPLATE.format(name="Foo", umbrella="Foo.h")
    assert (framework / "Modules" / "module.modulemap").read_text() == text
    headers = framework / "Headers"
    assert (headers / "Foo.h").read_text() == "#import <Foo/Bar.h>\n#import <Foo/Baz.h>\n"
    assert sorted(p.name for p in headers.iterdir()) == ["Bar.h", "Baz.h", "Foo.h"]


def test_flat_strategy_lists_owner_and_dependency_headers(tmp_path):
    pkg = tmp_path / "pkg"
    _files(pkg, {
        "Sources/Foo/include/Foo.h": "",
        "Sources/Core/include/sub/Core.h": "",
        "Sources/Core/include/sub/Foo.h": "duplicate name",
        "Sources/Unrelated/include/Nope.h": "",
    })
    synth = _synth(
        pkg,
        {"Foo": ["Foo"]},
        [
            target("Foo", deps=["Core"], path="Sources/Foo", publicHeadersPath="include"),
            target("Core", path="Sources/Core", publicHeadersPath="include"),
            target("Unrelated", path="Sources/Unrelated", publicHeadersPath="include"),
        ],
    )
    framework = tmp_path / "Foo.framework"
    text = synth.synthesize(ArchivedFramework(framework))

    assert text == (
        "framework module Foo {\n"
        '    header "Foo.h"\n'
        '    header "Core.h"\n'
        "\n"
        "    export *\n"
        "}\n"
    )
    assert (framework / "Headers" / "Foo.h").read_text() == ""
    assert (framework / "Headers" / "Core.h").exists()
    assert not (framework / "Headers" / "Nope.h").exists()


def test_umbrella_directory_falls_back_to_flat(tmp_path):
    pkg = tmp_path / "pkg"
    _files(pkg, {
        "Sources/Foo/include/module.modulemap": 'module Foo {\n    umbrella "."\n}\n',
        "Sources/Foo/include/Foo.h": "",
    })
    synth = _synth(pkg, {"Foo": ["Foo"]}, [target("Foo", path="Sources/Foo", publicHeadersPath="include")])
    text = synth.synthesize(ArchivedFramework(tmp_path / "Foo.framework"))
    assert 'header "Foo.h"' in text
    assert "umbrella" not in text


def test_no_headers_exports_empty_module(tmp_path):
    synth = _synth(tmp_path / "pkg", {"Foo": ["Foo"]}, [target("Foo", path="Sources/Foo")])
    framework = tmp_path / "Foo.framework"
    text = synth.synthesize(ArchivedFramework(framework))
    assert text == EMPTY_MODULE_TEMPLATE.format(name="Foo")
    assert not (framework / "Headers").exists()


def test_swift_only_framework_gets_swiftmodule_and_no_map(tmp_path):
    products = tmp_path / "Release-iphoneos"
    _files(products, {"Foo.swiftmodule/arm64.swiftinterface": "// swift"})
    synth = _synth(tmp_path / "pkg", {"Foo": ["Foo"]}, [target("Foo")])
    framework = tmp_path / "Foo.framework"

    assert synth.synthesize(ArchivedFramework(framework, build_products_dir=products)) is None
    assert (framework / "Modules" / "Foo.swiftmodule" / "arm64.swiftinterface").exists()
    assert not (framework / "Modules" / "module.modulemap").exists()


def test_swift_target_with_header_search_path_gets_map(tmp_path):
    products = tmp_path / "Release-iphoneos"
    _files(products, {"Foo.swiftmodule/arm64.swiftinterface": "// swift"})
    synth = _synth(
        tmp_path / "pkg",
        {"Foo": ["Foo"]},
        [target("Foo", settings=[{"kind": {"headerSearchPath": {"_0": "private"}}}])],
    )
    framework = tmp_path / "Foo.framework"
    text = synth.synthesize(ArchivedFramework(framework, build_products_dir=products))
    assert text == EMPTY_MODULE_TEMPLATE.format(name="Foo")
    assert (framework / "Modules" / "module.modulemap").exists()
    assert (framework / "Modules" / "Foo.swiftmodule").is_dir()


def test_generated_module_map_wins_over_package_one(tmp_path):
    pkg = tmp_path / "pkg"
    _files(pkg, {
        "Sources/Foo/include/module.modulemap": 'module Foo {\n    umbrella header "Foo.h"\n}\n',
        "Sources/Foo/include/Foo.h": "",
    })
    intermediates = tmp_path / "intermediates"
    umbrella = tmp_path / "Derived" / "Foo-umbrella.h"
    _files(intermediates, {"Foo.modulemap": f'framework module Foo {{\n  umbrella header "{umbrella}"\n}}\n'})
    umbrella.parent.mkdir(parents=True, exist_ok=True)
    umbrella.write_text('#import "Foo.h"\n')

    synth = _synth(pkg, {"Foo": ["Foo"]}, [target("Foo", path="Sources/Foo")])
    text = synth.synthesize(ArchivedFramework(tmp_path / "Foo.framework", intermediates_dir=intermediates))
    assert text == UMBRELLA_MODULE_TEMPLATE.format(name="Foo", umbrella="Foo-umbrella.h")


def test_resource_bundle_is_copied_when_present(tmp_path):
    products = tmp_path / "Release-iphoneos"
    _files(products, {"Foo_Foo.bundle/image.png": "png"})
    synth = _synth(tmp_path / "pkg", {"Foo": ["Foo"]}, [target("Foo")])
    framework = tmp_path / "Foo.framework"
    synth.synthesize(ArchivedFramework(framework, build_products_dir=products))
    assert (framework / "Foo_Foo.bundle" / "image.png").read_text() == "png"


def test_locate_derived_data_paths(tmp_path):
    located = ArchivedFramework.locate(tmp_path / "a" / "Foo.framework", tmp_path / "dd", "Pkg", "iphoneos")
    base = tmp_path / "dd" / "Build" / "Intermediates.noindex" / "ArchiveIntermediates" / "Foo"
    assert located.build_products_dir == base / "BuildProductsPath" / "Release-iphoneos"
    assert located.intermediates_dir == (
        base / "IntermediateBuildFilesPath" / "Pkg.build" / "Release-iphoneos" / "Foo.build"
    )
