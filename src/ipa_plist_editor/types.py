"""
编辑流程共享的轻量类型定义。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime

# plist 可表达的取值；容器内部允许任意嵌套。
PlistValue = str | int | float | bool | bytes | datetime | list | dict

KEY_BUNDLE_ID = "CFBundleIdentifier"
KEY_BUNDLE_NAME = "CFBundleName"
KEY_BUILD = "CFBundleVersion"
KEY_VERSION = "CFBundleShortVersionString"
KEY_ARCADE = "NSApplicationRequiresArcade"

PAYLOAD_DIR = "Payload"
BUNDLE_SUFFIX = ".app"
IPA_SUFFIX = ".ipa"
INFO_PLIST = "Info.plist"
OUTPUT_PREFIX = "modified_"


@dataclass(frozen=True)
class TrackedFields:
    """界面/CLI 可直接编辑的四个 `Info.plist` 字段。"""

    bundle_id: str = ""
    bundle_name: str = ""
    # `build` 对应 CFBundleVersion，`version` 对应 CFBundleShortVersionString。
    build: str = ""
    version: str = ""


@dataclass(frozen=True)
class BundleLocation:
    """一次解包的结果：临时目录、`Payload/` 以及主应用包路径。"""

    scratch_dir: str
    payload_dir: str
    bundle_dir: str

    @property
    def info_plist(self) -> str:
        return os.path.join(self.bundle_dir, INFO_PLIST)

    @property
    def bundle_name(self) -> str:
        return os.path.basename(self.bundle_dir)


@dataclass(frozen=True)
class Op:
    """描述一次对 `Info.plist` 的可序列化操作。"""

    # `kind` 操作类型：
    # - `set_string` / `set_int` / `set_bool`
    # - `delete`
    kind: str
    key_path: str
    value: str | None = None
