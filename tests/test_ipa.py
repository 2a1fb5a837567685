import os
import plistlib
import stat
import struct
import zipfile

import pytest

from ipa_plist_editor.errors import AmbiguousBundle, InvalidArchive, StructureError
from ipa_plist_editor.ipa import extract_ipa, output_path_for, repackage_payload


def _exec_entry(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name)
    info.external_attr = (stat.S_IFREG | 0o755) << 16
    return info


def _symlink_entry(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name)
    info.create_system = 3
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    return info


def _write_ipa(path, *, with_payload: bool = True, apps: tuple[str, ...] = ("Main.app",)) -> None:
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        if with_payload:
            for app in apps:
                zf.writestr(
                    f"Payload/{app}/Info.plist",
                    plistlib.dumps({"CFBundleIdentifier": "com.demo.main"}),
                )
            zf.writestr(_exec_entry(f"Payload/{apps[0]}/Main"), b"\xcf\xfa\xed\xfe")
        else:
            zf.writestr("Other/readme.txt", b"no payload")
        zf.writestr("__MACOSX/._Payload", b"resource fork")


def test_extract_ipa_locates_bundle_and_drops_macosx(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    _write_ipa(ipa)
    scratch = tmp_path / "scratch"

    loc = extract_ipa(str(ipa), scratch_parent=str(scratch))

    assert os.path.dirname(loc.scratch_dir) == str(scratch)
    assert loc.payload_dir == os.path.join(loc.scratch_dir, "Payload")
    assert loc.bundle_name == "Main.app"
    assert os.path.isfile(loc.info_plist)
    assert not os.path.exists(os.path.join(loc.scratch_dir, "__MACOSX"))
    assert os.stat(os.path.join(loc.bundle_dir, "Main")).st_mode & 0o111


def test_extract_ipa_uses_fresh_scratch_dir_per_call(tmp_path) -> None:
    ipa = tmp_path / "App.IPA"
    _write_ipa(ipa)

    first = extract_ipa(str(ipa), scratch_parent=str(tmp_path / "scratch"))
    second = extract_ipa(str(ipa), scratch_parent=str(tmp_path / "scratch"))

    assert first.scratch_dir != second.scratch_dir


def test_extract_ipa_rejects_wrong_extension(tmp_path) -> None:
    path = tmp_path / "App.zip"
    _write_ipa(path)
    scratch = tmp_path / "scratch"

    with pytest.raises(InvalidArchive) as e:
        extract_ipa(str(path), scratch_parent=str(scratch))
    assert "not an .ipa file" in str(e.value)
    assert not scratch.exists()


def test_extract_ipa_rejects_corrupt_zip_and_cleans_up(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    ipa.write_bytes(b"not-a-real-ipa")
    scratch = tmp_path / "scratch"

    with pytest.raises(InvalidArchive):
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert os.listdir(scratch) == []


def test_extract_ipa_missing_payload_leaves_no_scratch(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    _write_ipa(ipa, with_payload=False)
    scratch = tmp_path / "scratch"

    with pytest.raises(StructureError) as e:
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert "Payload not found" in str(e.value)
    assert os.listdir(scratch) == []


def test_extract_ipa_multiple_apps_is_ambiguous_unless_named(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    _write_ipa(ipa, apps=("A.app", "B.app"))
    scratch = tmp_path / "scratch"

    with pytest.raises(AmbiguousBundle):
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert os.listdir(scratch) == []

    loc = extract_ipa(str(ipa), scratch_parent=str(scratch), main_app_name="B")
    assert loc.bundle_name == "B.app"


def test_extract_ipa_rejects_path_traversal(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    with zipfile.ZipFile(ipa, "w") as zf:
        zf.writestr("Payload/Main.app/Info.plist", plistlib.dumps({}))
        zf.writestr("Payload/../../evil.txt", b"x")
    scratch = tmp_path / "scratch"

    with pytest.raises(InvalidArchive) as e:
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert "unsafe path" in str(e.value)
    assert not (tmp_path / "evil.txt").exists()
    assert os.listdir(scratch) == []


def _corrupt_member(path, name: str) -> None:
    """用 0xFF 覆盖指定条目的压缩数据，使 deflate 流无法解码。"""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, "r+b") as f:
        f.seek(info.header_offset + 26)
        name_len, extra_len = struct.unpack("<HH", f.read(4))
        f.seek(info.header_offset + 30 + name_len + extra_len)
        f.write(b"\xff" * info.compress_size)


def test_extract_ipa_rejects_damaged_deflate_stream(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    with zipfile.ZipFile(ipa, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("Payload/Main.app/Info.plist", plistlib.dumps({}))
        zf.writestr("Payload/Main.app/Assets.car", b"asset-data " * 512)
    _corrupt_member(ipa, "Payload/Main.app/Assets.car")
    scratch = tmp_path / "scratch"

    with pytest.raises(InvalidArchive) as e:
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert "failed to unzip ipa" in str(e.value)
    assert os.listdir(scratch) == []


@pytest.mark.parametrize("target", [b"\xff\xfe", b"Versions\x00A"])
def test_extract_ipa_rejects_unusable_symlink_target(tmp_path, target: bytes) -> None:
    ipa = tmp_path / "App.ipa"
    with zipfile.ZipFile(ipa, "w") as zf:
        zf.writestr("Payload/Main.app/Info.plist", plistlib.dumps({}))
        zf.writestr(_symlink_entry("Payload/Main.app/Current"), target)
    scratch = tmp_path / "scratch"

    with pytest.raises(InvalidArchive) as e:
        extract_ipa(str(ipa), scratch_parent=str(scratch))
    assert "failed to unzip ipa" in str(e.value)
    assert os.listdir(scratch) == []


def test_symlinks_survive_extract_and_repackage(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    fw = "Payload/Main.app/Frameworks/Core.framework"
    with zipfile.ZipFile(ipa, "w") as zf:
        zf.writestr("Payload/Main.app/Info.plist", plistlib.dumps({}))
        zf.writestr(f"{fw}/Versions/A/Core", b"bin")
        zf.writestr(_symlink_entry(f"{fw}/Core"), b"Versions/A/Core")

    loc = extract_ipa(str(ipa), scratch_parent=str(tmp_path / "scratch"))
    link = os.path.join(loc.bundle_dir, "Frameworks", "Core.framework", "Core")
    assert os.path.islink(link)
    assert os.readlink(link) == "Versions/A/Core"

    out = tmp_path / "out" / "modified_App.ipa"
    repackage_payload(loc.payload_dir, str(out))

    with zipfile.ZipFile(out) as zf:
        info = zf.getinfo(f"{fw}/Core")
        assert stat.S_ISLNK(info.external_attr >> 16)
        assert zf.read(info) == b"Versions/A/Core"


def test_repackage_payload_keeps_payload_as_top_level_and_replaces_output(tmp_path) -> None:
    ipa = tmp_path / "App.ipa"
    _write_ipa(ipa)
    loc = extract_ipa(str(ipa), scratch_parent=str(tmp_path / "scratch"))
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    out = out_dir / "modified_App.ipa"
    out.write_bytes(b"stale")

    repackage_payload(loc.payload_dir, str(out))

    with zipfile.ZipFile(out) as zf:
        names = zf.namelist()
        assert names[0] == "Payload/"
        assert all(n.startswith("Payload/") for n in names)
        assert "Payload/Main.app/Info.plist" in names
        assert zf.getinfo("Payload/Main.app/Main").external_attr >> 16 & 0o111
    assert os.listdir(out_dir) == ["modified_App.ipa"]


def test_repackage_payload_failure_leaves_no_output(tmp_path) -> None:
    out_dir = tmp_path / "out"
    out = out_dir / "modified_App.ipa"

    with pytest.raises(OSError):
        repackage_payload(str(tmp_path / "missing" / "Payload"), str(out))
    assert os.listdir(out_dir) == []


def test_output_path_for_is_deterministic(tmp_path) -> None:
    a = output_path_for("/somewhere/App.ipa", str(tmp_path))
    b = output_path_for("/elsewhere/App.ipa", str(tmp_path))
    assert a == b == str(tmp_path / "modified_App.ipa")
