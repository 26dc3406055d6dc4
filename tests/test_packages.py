import json

import pytest

from unibundle.modules.manifest import ManifestDecodeError
from unibundle.modules.manifest_loader import ManifestLoader
from unibundle.modules.packages import (
    MissingVersionControl,
    PackageDescriptor,
    read_resolved_packages,
    read_version,
    read_workspace_state,
)

from conftest import FakeDescribe, manifest_dict, target

STATE = {
    "object": {
        "artifacts": [
            {
                "packageRef": {"identity": "firebase", "kind": "remoteSourceControl", "name": "Firebase",
                               "location": "https://github.com/firebase/firebase-ios-sdk"},
                "targetName": "FirebaseAnalytics",
                "source": {"type": "remote", "url": "https://dl.example.com/FirebaseAnalytics.zip", "checksum": "ab"},
                "path": "/tmp/artifacts/FirebaseAnalytics.xcframework",
            }
        ],
        "dependencies": [
            {
                "packageRef": {"identity": "snapkit", "kind": "remote", "name": "SnapKit",
                               "path": "https://github.com/SnapKit/SnapKit.git"},
                "state": {"checkoutState": {"revision": "f222cbd", "version": "5.6.0"}, "name": "checkout"},
                "subpath": "SnapKit",
            },
            {
                "packageRef": {"identity": "firebase", "kind": "remoteSourceControl",
                               "location": "https://github.com/firebase/firebase-ios-sdk"},
                "state": {"checkoutState": {"revision": "0a1b2c", "branch": "main"}, "name": "sourceControlCheckout"},
                "subpath": "firebase-ios-sdk",
            },
        ],
    },
    "version": 5,
}


def _state_file(tmp_path, state=STATE):
    path = tmp_path / ".build" / "workspace-state.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(state))
    return path


def test_read_version_from_git_head(make_checkout):
    pkg = make_checkout("Foo", head="0123456789abcdef")
    assert read_version(pkg, "Foo") == "0123456789abcdef"


def test_read_version_follows_gitdir_file(tmp_path):
    pkg = tmp_path / "work" / "Foo"
    real = tmp_path / "repo" / ".git" / "modules" / "Foo"
    real.mkdir(parents=True)
    (real / "HEAD").write_text("cafebabe\n")
    pkg.mkdir(parents=True)
    (pkg / ".git").write_text("gitdir: ../../repo/.git/modules/Foo\n")
    assert read_version(pkg, "Foo") == "cafebabe"


def test_missing_git_directory_is_fatal(tmp_path):
    (tmp_path / "Foo").mkdir()
    with pytest.raises(MissingVersionControl) as exc:
        read_version(tmp_path / "Foo", "Foo")
    assert exc.value.package == "Foo"


def test_unparsable_git_file_is_fatal(tmp_path):
    (tmp_path / ".git").write_text("nothing useful\n")
    with pytest.raises(MissingVersionControl):
        read_version(tmp_path, "Foo")


def test_missing_head_is_fatal(tmp_path):
    (tmp_path / ".git").mkdir()
    with pytest.raises(MissingVersionControl) as exc:
        read_version(tmp_path, "Foo")
    assert exc.value.reason == "missing HEAD"


def test_workspace_state_decoding(tmp_path):
    state = read_workspace_state(_state_file(tmp_path))
    snapkit, firebase = state.dependencies
    assert snapkit.name == "SnapKit"
    assert snapkit.version == "5.6.0"
    assert snapkit.ref.location == "https://github.com/SnapKit/SnapKit.git"
    assert firebase.name == "firebase"
    assert firebase.branch == "main"
    assert state.checkout_path(snapkit) == tmp_path / ".build" / "checkouts" / "SnapKit"

    (artifact,) = state.artifacts_for("firebase")
    assert artifact.target_name == "FirebaseAnalytics"
    assert artifact.path == "/tmp/artifacts/FirebaseAnalytics.xcframework"
    assert artifact.checksum == "ab"
    assert state.artifacts_for("snapkit") == []


@pytest.mark.parametrize("state", [{}, {"object": {"dependencies": [{"subpath": "x"}]}}])
def test_invalid_workspace_state(tmp_path, state):
    with pytest.raises(ManifestDecodeError):
        read_workspace_state(_state_file(tmp_path, state))


def test_workspace_state_must_be_json(tmp_path):
    path = tmp_path / "workspace-state.json"
    path.write_text("{")
    with pytest.raises(ManifestDecodeError):
        read_workspace_state(path)


def test_descriptor_exposes_buildables(context, make_checkout):
    raw = manifest_dict(
        "Foo",
        {"Foo": ["Foo"], "FooBin": ["FooBinWrapper"]},
        [
            target("Foo"),
            target("FooBinWrapper", deps=["Vendor"]),
            target("Vendor", type="binary", url="https://example.com/VendorSDK.xcframework.zip"),
        ],
    )
    pkg = make_checkout("Foo", head="deadbeef")
    descriptor = PackageDescriptor(pkg, "Foo", ManifestLoader(context, describe=FakeDescribe(raw)))
    assert descriptor.version == "deadbeef"
    assert descriptor.product_names == ["Foo", "VendorSDK"]
    assert descriptor.version_for("VendorSDK") == "deadbeef"


def test_read_resolved_packages(context, tmp_path, make_checkout):
    state = {"object": {"dependencies": [STATE["object"]["dependencies"][0]]}}
    state_path = _state_file(tmp_path, state)
    make_checkout("SnapKit", root=tmp_path / ".build" / "checkouts" / "SnapKit", head="f222cbd")
    describe = FakeDescribe(manifest_dict("SnapKit", {"SnapKit": ["SnapKit"]}, [target("SnapKit")]))

    (descriptor,) = read_resolved_packages(state_path, ManifestLoader(context, describe=describe))
    assert descriptor.name == "SnapKit"
    assert descriptor.identity == "snapkit"
    assert descriptor.version == "f222cbd"
    assert descriptor.product_names == ["SnapKit"]


def test_checkout_without_git_aborts_loading(context, tmp_path):
    state = {"object": {"dependencies": [STATE["object"]["dependencies"][0]]}}
    state_path = _state_file(tmp_path, state)
    checkout = tmp_path / ".build" / "checkouts" / "SnapKit"
    checkout.mkdir(parents=True)
    (checkout / "Package.swift").write_text("")
    with pytest.raises(MissingVersionControl):
        read_resolved_packages(state_path, ManifestLoader(context, describe=FakeDescribe({})))
