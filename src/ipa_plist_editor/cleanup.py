"""
临时文件与产出文件的清理。

- `remove_path`：幂等删除，路径不存在不算错误。
- `cleanup_on_exit`：退出时的尽力而为清理，任何失败都只记录不抛出。
- `sweep_all`：手动清理，逐个删除并汇总错误，不因单个失败中断。
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field

from .settings import Settings
from .types import IPA_SUFFIX


@dataclass
class SweepResult:
    removed: int = 0
    errors: list[OSError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def message(self) -> str:
        if self.errors:
            return f"Error while cleaning up: {self.errors[0]}"
        plural = "" if self.removed == 1 else "s"
        return f"Successfully removed {self.removed} IPA file{plural}"


def remove_path(path: str) -> bool:
    """删除文件、符号链接或目录；返回是否确实删除了内容。"""
    if os.path.islink(path) or os.path.isfile(path):
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True
    if os.path.isdir(path):
        shutil.rmtree(path)
        return True
    return False


def _ipa_entries(directory: str) -> list[str]:
    with os.scandir(directory) as it:
        return sorted(e.path for e in it if e.name.lower().endswith(IPA_SUFFIX))


def sweep_all(directories: Iterable[str]) -> SweepResult:
    """删除各目录下所有 `.ipa` 条目，统计删除数量并收集错误。"""
    result = SweepResult()
    for directory in directories:
        if not os.path.isdir(directory):
            continue
        try:
            entries = _ipa_entries(directory)
        except OSError as e:
            result.errors.append(e)
            continue
        for path in entries:
            try:
                if remove_path(path):
                    result.removed += 1
            except OSError as e:
                result.errors.append(e)
    return result


def cleanup_on_exit(settings: Settings, temp_dir: str, *, verbose: bool = False) -> int:
    """按偏好在退出时清理临时区内的 `.ipa`，返回删除数量；失败不影响退出。"""
    if not settings.clear_on_exit:
        return 0
    result = sweep_all([temp_dir])
    if verbose:
        for e in result.errors:
            print(f"[ipa-plist-editor] Error clearing IPAs: {e}")
    return result.removed
