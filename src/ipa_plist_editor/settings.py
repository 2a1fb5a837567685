"""
持久化偏好设置与本工具使用的目录位置。

设置以 JSON 保存在工具主目录下；文件缺失或损坏时回退到默认值。
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime

HOME_ENV = "IPA_PLIST_EDITOR_HOME"


@dataclass
class Settings:
    """会跨会话保留的三项偏好。"""

    # 是否输出流程日志（等同于 `--verbose`）。
    show_output_log: bool = False
    # 退出时是否清理临时区里的 `.ipa` 文件。
    clear_on_exit: bool = True
    # 最近一次手动清理完成的时间。
    last_cleanup: datetime | None = None


@dataclass(frozen=True)
class AppPaths:
    home_dir: str
    temp_dir: str
    documents_dir: str

    @property
    def settings_file(self) -> str:
        return os.path.join(self.home_dir, "settings.json")


def default_paths() -> AppPaths:
    home = os.environ.get(HOME_ENV) or os.path.join(os.path.expanduser("~"), ".ipa-plist-editor")
    return AppPaths(
        home_dir=home,
        temp_dir=os.path.join(tempfile.gettempdir(), "ipa-plist-editor"),
        documents_dir=os.path.join(home, "documents"),
    )


class SettingsStore:
    """读写 `settings.json`。"""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> Settings:
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError):
            return Settings()
        if not isinstance(raw, dict):
            return Settings()

        settings = Settings()
        if isinstance(raw.get("show_output_log"), bool):
            settings.show_output_log = raw["show_output_log"]
        if isinstance(raw.get("clear_on_exit"), bool):
            settings.clear_on_exit = raw["clear_on_exit"]
        last = raw.get("last_cleanup")
        if isinstance(last, str):
            try:
                settings.last_cleanup = datetime.fromisoformat(last)
            except ValueError:
                pass
        return settings

    def save(self, settings: Settings) -> None:
        data = {
            "show_output_log": settings.show_output_log,
            "clear_on_exit": settings.clear_on_exit,
            "last_cleanup": settings.last_cleanup.isoformat() if settings.last_cleanup else None,
        }
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".settings_", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
