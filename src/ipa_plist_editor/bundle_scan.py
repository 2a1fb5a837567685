"""
在解压后的 IPA 目录中定位 `Payload/` 与主应用包（bundle）。
"""

from __future__ import annotations

import os

from .errors import AmbiguousBundle, StructureError
from .types import BUNDLE_SUFFIX, PAYLOAD_DIR


def find_payload(root: str) -> str:
    """返回解包根目录下的 `Payload/` 路径，不存在时抛出 `StructureError`。"""
    payload = os.path.join(root, PAYLOAD_DIR)
    if not os.path.isdir(payload):
        raise StructureError("Payload not found in ipa.")
    return payload


def find_main_app(payload_path: str, main_app_name: str = "") -> str:
    """在 Payload 目录定位唯一的 `.app`，支持指定名称；多个候选时报歧义错误。"""
    try:
        names = sorted(os.listdir(payload_path))
    except OSError as e:
        raise StructureError(f"could not read Payload folder: {e}") from e

    apps: list[str] = []
    for name in names:
        p = os.path.join(payload_path, name)
        if os.path.isdir(p) and name.endswith(BUNDLE_SUFFIX):
            apps.append(p)

    if not apps:
        raise StructureError(f"{BUNDLE_SUFFIX} not found under {PAYLOAD_DIR}/.")

    found = ", ".join(os.path.basename(x) for x in apps)
    if main_app_name:
        raw = os.path.basename(main_app_name.strip())
        target = raw if raw.endswith(BUNDLE_SUFFIX) else f"{raw}{BUNDLE_SUFFIX}"
        for app in apps:
            if os.path.basename(app) == target:
                return app
        raise StructureError(
            f"main app not found: {target}. Available under {PAYLOAD_DIR}/: {found}"
        )

    if len(apps) == 1:
        return apps[0]

    raise AmbiguousBundle(
        f"multiple {BUNDLE_SUFFIX} found under {PAYLOAD_DIR}/. "
        f"Please specify --main-app-name. Available: {found}"
    )
