from __future__ import annotations

"""
IPA archive handling.

High-level flow:
1) Validate the input path (`.ipa`, case-insensitive) and unzip it into a fresh
   scratch directory. Member paths are confined to that directory and symbolic
   links stored in the archive are recreated as links.
2) Find the bundle under `Payload/*.app`.
3) Info.plist is read and rewritten in place by `session.Session`.
4) Zip `Payload/` back as the single top-level item of the output archive. The
   archive is built in a temp file next to the destination and renamed into
   place, so a failed build never leaves a partial output behind.
"""

import os
import shutil
import stat
import tempfile
import time
import zipfile
import zlib
from collections.abc import Iterator

from .bundle_scan import find_main_app, find_payload
from .errors import InvalidArchive
from .types import IPA_SUFFIX, OUTPUT_PREFIX, BundleLocation

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def check_ipa_path(path: str) -> None:
    """校验输入文件存在且扩展名为 `.ipa`。"""
    if not path.lower().endswith(IPA_SUFFIX):
        raise InvalidArchive(f"not an {IPA_SUFFIX} file: {os.path.basename(path)}")
    if not os.path.isfile(path):
        raise InvalidArchive(f"ipa not found: {path}")


def output_path_for(input_ipa: str, output_dir: str) -> str:
    """输出路径只由输入文件名决定，同一会话内重复保存会覆盖同一文件。"""
    return os.path.join(output_dir, OUTPUT_PREFIX + os.path.basename(input_ipa))


def _member_dest(root: str, name: str) -> str:
    # 拒绝绝对路径与 `..`，并确认父目录（含已解出的符号链接）仍位于 root 之内。
    norm = name.replace("\\", "/")
    parts = [p for p in norm.split("/") if p not in ("", ".")]
    if norm.startswith("/") or ".." in parts or not parts:
        raise InvalidArchive(f"unsafe path in ipa: {name}")
    dest = os.path.join(root, *parts)
    real_root = os.path.realpath(root)
    real_parent = os.path.realpath(os.path.dirname(dest))
    if real_parent != real_root and not real_parent.startswith(real_root + os.sep):
        raise InvalidArchive(f"unsafe path in ipa: {name}")
    return dest


def _extract_all(zf: zipfile.ZipFile, root: str) -> None:
    for info in zf.infolist():
        dest = _member_dest(root, info.filename)
        mode = info.external_attr >> 16
        if info.is_dir():
            os.makedirs(dest, exist_ok=True)
            continue
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        if stat.S_ISLNK(mode):
            target = zf.read(info).decode("utf-8")
            if os.path.lexists(dest):
                os.remove(dest)
            os.symlink(target, dest)
            continue
        with zf.open(info) as src, open(dest, "wb") as dst:
            shutil.copyfileobj(src, dst)
        # 保留可执行位等权限（Mach-O 主程序依赖这一点）。
        if mode & 0o777:
            os.chmod(dest, mode & 0o777)


def extract_ipa(
    input_ipa: str,
    *,
    scratch_parent: str | None = None,
    main_app_name: str = "",
) -> BundleLocation:
    """把 IPA 解包到新的临时目录并定位主应用包；失败时清理临时目录。"""
    check_ipa_path(input_ipa)
    if scratch_parent:
        os.makedirs(scratch_parent, exist_ok=True)
    td = tempfile.mkdtemp(prefix="ipa_plist_", dir=scratch_parent)
    try:
        try:
            with zipfile.ZipFile(input_ipa, "r") as zf:
                _extract_all(zf, td)
        except InvalidArchive:
            raise
        except (
            zipfile.BadZipFile,
            zipfile.LargeZipFile,
            zlib.error,
            EOFError,
            NotImplementedError,
            RuntimeError,
            ValueError,
        ) as e:
            # 加密条目抛出 RuntimeError；压缩数据损坏抛出 zlib.error/EOFError；
            # 链接目标不是合法 UTF-8 或含 NUL 时抛出 ValueError。
            raise InvalidArchive(f"failed to unzip ipa: {e}") from e

        macosx = os.path.join(td, "__MACOSX")
        if os.path.isdir(macosx):
            shutil.rmtree(macosx, ignore_errors=True)

        payload = find_payload(td)
        app_path = find_main_app(payload, main_app_name)
        return BundleLocation(scratch_dir=td, payload_dir=payload, bundle_dir=app_path)
    except BaseException:
        shutil.rmtree(td, ignore_errors=True)
        raise


def _iter_tree(top: str) -> Iterator[str]:
    """按稳定顺序遍历目录树（目录先于其内容）；不跟随符号链接。"""
    yield top
    for root, dirs, files in os.walk(top):
        dirs.sort()
        for name in sorted(dirs + files):
            yield os.path.join(root, name)


def _symlink_info(path: str, arcname: str) -> zipfile.ZipInfo:
    mtime = time.localtime(os.lstat(path).st_mtime)
    info = zipfile.ZipInfo(arcname, date_time=max(mtime[:6], _ZIP_EPOCH))
    info.create_system = 3
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    return info


def repackage_payload(payload_dir: str, output_ipa: str) -> None:
    """将 `Payload/` 目录（保留该目录本身作为顶层条目）打包为新的 IPA。"""
    root = os.path.dirname(os.path.abspath(payload_dir))
    out_dir = os.path.dirname(os.path.abspath(output_ipa))
    os.makedirs(out_dir, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".ipa_plist_", suffix=".tmp", dir=out_dir)
    os.close(fd)
    try:
        with zipfile.ZipFile(tmp, "w", zipfile.ZIP_DEFLATED, strict_timestamps=False) as zf:
            for path in _iter_tree(os.path.abspath(payload_dir)):
                arcname = os.path.relpath(path, root).replace(os.sep, "/")
                if os.path.islink(path):
                    # 与 `zip -y` 一致：保存链接本身而不是链接目标。
                    zf.writestr(_symlink_info(path, arcname), os.readlink(path))
                else:
                    zf.write(path, arcname)
        os.chmod(tmp, 0o644)
        os.replace(tmp, output_ipa)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
