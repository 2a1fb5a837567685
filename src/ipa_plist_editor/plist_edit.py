"""
`Info.plist` 读写与路径化修改工具。

设计原则：
- 写回时沿用读取时的格式（XML 或 Binary），并保持键的原有顺序。
- 写文件先落到同目录临时文件，再原子替换目标文件。
- 仅在设置值时按需创建中间容器（`dict` 或 `list`）。
- 删除操作采用尽力而为策略（路径不存在时忽略）。
"""

from __future__ import annotations

import os
import plistlib
import shutil
import tempfile
from typing import Any

from .errors import InvalidFormat, ParseError, StructureError

_BINARY_MAGIC = b"bplist00"


def detect_format(data: bytes) -> plistlib.PlistFormat:
    """根据文件头判断 plist 是 Binary 还是 XML。"""
    if data[: len(_BINARY_MAGIC)] == _BINARY_MAGIC:
        return plistlib.FMT_BINARY
    return plistlib.FMT_XML


def loads_descriptor(data: bytes) -> dict[str, Any]:
    """解析 plist 字节（自动识别 XML/Binary），顶层必须是字典。"""
    try:
        obj = plistlib.loads(data)
    except Exception as e:
        raise ParseError(f"invalid Info.plist: {e}") from e
    if not isinstance(obj, dict):
        raise ParseError(
            f"invalid Info.plist: top level is {type(obj).__name__}, expected dict"
        )
    return obj


def load_descriptor(path: str) -> tuple[dict[str, Any], plistlib.PlistFormat]:
    """从磁盘读取 `Info.plist`，返回 `(字典, 原始格式)`。"""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except FileNotFoundError as e:
        raise StructureError(f"Info.plist not found: {path}") from e
    return loads_descriptor(data), detect_format(data)


def dumps_descriptor(obj: dict[str, Any], fmt: plistlib.PlistFormat = plistlib.FMT_XML) -> bytes:
    """按指定格式序列化；存在无法表示的值（如 `None`）时抛出 `ParseError`。"""
    try:
        return plistlib.dumps(obj, fmt=fmt, sort_keys=False)
    except (TypeError, ValueError, OverflowError) as e:
        raise ParseError(f"cannot serialize Info.plist: {e}") from e


def save_plist(
    path: str,
    obj: dict[str, Any],
    fmt: plistlib.PlistFormat = plistlib.FMT_XML,
) -> None:
    """序列化后原子写入：先写同目录临时文件，再替换目标。"""
    data = dumps_descriptor(obj, fmt)
    parent = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(prefix=".Info.", suffix=".tmp", dir=parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # mkstemp 创建的文件权限为 0600，替换前沿用原文件权限。
        if os.path.exists(path):
            shutil.copymode(path, tmp)
        else:
            os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def serialize_for_editing(obj: dict[str, Any]) -> str:
    """渲染为便于人工编辑的 XML 文本（包含全部键，而非仅常用字段）。"""
    return dumps_descriptor(obj, plistlib.FMT_XML).decode("utf-8")


def reparse_edited_text(text: str) -> dict[str, Any]:
    """把编辑后的 XML 文本重新解析为字典。"""
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidFormat(f"failed to convert text to data: {e}") from e
    return loads_descriptor(data)


PathElem = str | int


def parse_key_path(key_path: str) -> list[PathElem]:
    """
    解析 PlistBuddy 风格的路径（如 `UIRequiredDeviceCapabilities:0`）。

    纯数字段视为数组索引，其余为字典键；允许前导 `:`，段两侧空白会被去掉，
    空路径或空段抛出 `ValueError`。
    """
    body = key_path.strip().removeprefix(":")
    segments = [seg.strip() for seg in body.split(":")] if body else []
    if not segments or "" in segments:
        raise ValueError(f"invalid key path: {key_path!r}")
    return [int(seg) if seg.isdigit() else seg for seg in segments]


def _ensure_list_len(lst: list, idx: int) -> None:
    """确保列表长度至少到 `idx`，不足位置补 `None`。"""
    while len(lst) <= idx:
        lst.append(None)


def _walk_create(root: Any, path: list[PathElem]) -> tuple[Any, PathElem]:
    """按路径遍历到叶子前一层，并在必要时创建中间容器，返回 `(parent, leaf_key)`。"""
    cur = root
    for i, elem in enumerate(path[:-1]):
        nxt = path[i + 1]
        if isinstance(elem, int):
            if not isinstance(cur, list):
                raise TypeError("array index used on non-list container")
            _ensure_list_len(cur, elem)
            if cur[elem] is None:
                cur[elem] = [] if isinstance(nxt, int) else {}
            cur = cur[elem]
        else:
            if not isinstance(cur, dict):
                raise TypeError("dict key used on non-dict container")
            if elem not in cur or cur[elem] is None:
                cur[elem] = [] if isinstance(nxt, int) else {}
            cur = cur[elem]
    return cur, path[-1]


def set_value(root: Any, key_path: str, value: Any) -> None:
    """在指定 key path 处设置值（必要时自动创建中间结构）。"""
    path = parse_key_path(key_path)
    parent, leaf = _walk_create(root, path)
    if isinstance(leaf, int):
        if not isinstance(parent, list):
            raise TypeError("array index used on non-list container")
        _ensure_list_len(parent, leaf)
        parent[leaf] = value
    else:
        if not isinstance(parent, dict):
            raise TypeError("dict key used on non-dict container")
        parent[leaf] = value


def delete_value(root: Any, key_path: str) -> None:
    """删除指定 key path 对应值；路径不存在时静默跳过。"""
    path = parse_key_path(key_path)
    cur = root
    for elem in path[:-1]:
        if isinstance(elem, int):
            if not isinstance(cur, list) or elem >= len(cur):
                return
            cur = cur[elem]
        else:
            if not isinstance(cur, dict) or elem not in cur:
                return
            cur = cur[elem]

    leaf = path[-1]
    if isinstance(leaf, int):
        if isinstance(cur, list) and 0 <= leaf < len(cur):
            cur.pop(leaf)
    else:
        if isinstance(cur, dict) and leaf in cur:
            del cur[leaf]
