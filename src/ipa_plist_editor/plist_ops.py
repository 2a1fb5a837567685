"""
对内存中的 `Info.plist` 字典执行修改：常用字段、功能开关与 `Op` 操作。

本模块只做纯内存变换，不做内容校验（例如允许把包标识改成空串）。
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .errors import InvalidOperation
from .plist_edit import delete_value, set_value
from .types import (
    KEY_ARCADE,
    KEY_BUILD,
    KEY_BUNDLE_ID,
    KEY_BUNDLE_NAME,
    KEY_VERSION,
    Op,
    TrackedFields,
)


def _plist_str(d: dict[str, Any], key: str) -> str:
    v = d.get(key)
    return v if isinstance(v, str) else ""


def tracked_fields_from(plist_obj: dict[str, Any]) -> TrackedFields:
    """从 plist 字典读取四个常用字段；非字符串值按空串处理。"""
    return TrackedFields(
        bundle_id=_plist_str(plist_obj, KEY_BUNDLE_ID),
        bundle_name=_plist_str(plist_obj, KEY_BUNDLE_NAME),
        build=_plist_str(plist_obj, KEY_BUILD),
        version=_plist_str(plist_obj, KEY_VERSION),
    )


def apply_field_edits(plist_obj: dict[str, Any], fields: TrackedFields) -> dict[str, Any]:
    """用给定值覆盖四个常用字段（空串同样会写入），其余键保持不变。"""
    plist_obj[KEY_BUNDLE_ID] = fields.bundle_id
    plist_obj[KEY_BUNDLE_NAME] = fields.bundle_name
    plist_obj[KEY_BUILD] = fields.build
    plist_obj[KEY_VERSION] = fields.version
    return plist_obj


def has_feature_gate(plist_obj: dict[str, Any]) -> bool:
    return KEY_ARCADE in plist_obj


def is_feature_gate_disabled(plist_obj: dict[str, Any]) -> bool:
    v = plist_obj.get(KEY_ARCADE)
    return isinstance(v, bool) and v is False


def patch_arcade(plist_obj: dict[str, Any]) -> dict[str, Any]:
    """将 `NSApplicationRequiresArcade` 置为 `False`（键不存在时会创建）。"""
    plist_obj[KEY_ARCADE] = False
    return plist_obj


def _bool_from_str(s: str) -> bool:
    """将常见布尔字符串（true/false/1/0 等）转换为 bool。"""
    v = s.strip().lower()
    if v in ("true", "1", "yes", "y"):
        return True
    if v in ("false", "0", "no", "n"):
        return False
    raise ValueError(f"invalid bool: {s}")


def apply_ops(plist_obj: dict[str, Any], ops: Sequence[Op]) -> None:
    """按顺序将 `Op` 列表应用到给定 plist 字典。"""
    for op in ops:
        try:
            if op.kind == "set_string":
                set_value(plist_obj, op.key_path, op.value or "")
            elif op.kind == "set_int":
                set_value(plist_obj, op.key_path, int(op.value or "0"))
            elif op.kind == "set_bool":
                set_value(plist_obj, op.key_path, _bool_from_str(op.value or "false"))
            elif op.kind == "delete":
                delete_value(plist_obj, op.key_path)
            else:
                raise InvalidOperation(f"unknown plist operation: {op.kind}")
        except (TypeError, ValueError) as e:
            suffix = f"={op.value}" if op.value is not None else ""
            raise InvalidOperation(
                f"invalid plist operation {op.kind} on {op.key_path}{suffix}: {e}"
            ) from e
