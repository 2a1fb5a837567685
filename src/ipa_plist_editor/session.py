"""
单次编辑会话：解包 → 读取 `Info.plist` → 字段/原始文本编辑 → 写回 → 重新打包。

会话独占自己的临时解包目录和产出文件；`reset()` 会删除两者并回到初始状态。

字段编辑与原始文本编辑的一致性规则：
- `set_tracked_fields()` 只更新待提交的字段视图，在 `save()`/`apply_ops()`/
  `apply_arcade_patch()` 时才合并进 plist。
- `commit_raw_edit()` 用解析结果整体替换 plist 与字段视图（不做合并），
  因此在它之前尚未提交的字段修改会被丢弃。
"""

from __future__ import annotations

import copy
import os
import plistlib
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from . import cleanup
from .bundle_scan import find_main_app, find_payload
from .errors import PatchNotApplicable, PlistEditorError, SaveError, SessionError
from .ipa import extract_ipa, output_path_for, repackage_payload
from .plist_edit import load_descriptor, reparse_edited_text, save_plist, serialize_for_editing
from .plist_ops import (
    apply_field_edits,
    apply_ops,
    has_feature_gate,
    is_feature_gate_disabled,
    patch_arcade,
    tracked_fields_from,
)
from .settings import AppPaths, Settings, SettingsStore, default_paths
from .types import KEY_ARCADE, BundleLocation, Op, TrackedFields


class Session:
    """一次 IPA 编辑会话；同一进程内同时只应有一个活动会话。"""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        paths: AppPaths | None = None,
        settings_store: SettingsStore | None = None,
        output_dir: str = "",
        verbose: bool = False,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.paths = paths if paths is not None else default_paths()
        self.settings_store = settings_store
        self.output_dir = output_dir or self.paths.temp_dir
        self.verbose = verbose or self.settings.show_output_log
        self.output_log: list[str] = []
        self._clear_state()

    def _clear_state(self) -> None:
        self.input_ipa = ""
        self.main_app_name = ""
        self.location: BundleLocation | None = None
        self.descriptor: dict[str, Any] | None = None
        self.plist_format = plistlib.FMT_XML
        self.tracked = TrackedFields()
        self.raw_text = ""
        self.editing_raw = False
        self.output_ipa = ""

    def _log(self, message: str) -> None:
        self.output_log.append(message)
        if self.verbose:
            print(f"[ipa-plist-editor] {message}")

    @property
    def is_loaded(self) -> bool:
        return self.location is not None and self.descriptor is not None

    @property
    def has_feature_gate(self) -> bool:
        return self.descriptor is not None and has_feature_gate(self.descriptor)

    @property
    def is_feature_gate_disabled(self) -> bool:
        return self.descriptor is not None and is_feature_gate_disabled(self.descriptor)

    def _require_loaded(self) -> dict[str, Any]:
        if self.location is None or self.descriptor is None:
            raise SessionError("no ipa loaded; select an ipa and process it first")
        return self.descriptor

    def _locate_bundle(self) -> BundleLocation:
        # 每次都重新查找，不复用解包时的结果。
        if self.location is None:
            raise SessionError("no ipa loaded; select an ipa and process it first")
        payload = find_payload(self.location.scratch_dir)
        app_path = find_main_app(payload, self.main_app_name)
        return BundleLocation(
            scratch_dir=self.location.scratch_dir,
            payload_dir=payload,
            bundle_dir=app_path,
        )

    def _discard_scratch(self) -> None:
        if self.location is None:
            return
        try:
            cleanup.remove_path(self.location.scratch_dir)
        except OSError as e:
            self._log(f"Failed to remove temp dir {self.location.scratch_dir}: {e}")
        self.location = None

    # -- 输入与解包 -----------------------------------------------------

    def select_input(self, path: str, *, main_app_name: str = "") -> None:
        """选择新的输入 IPA；若当前已有会话内容，先整体重置。"""
        if self.input_ipa or self.location is not None or self.output_ipa:
            self.reset()
        self.input_ipa = os.path.abspath(os.path.expanduser(path))
        self.main_app_name = main_app_name
        self._log(f"Selected ipa: {self.input_ipa}")

    def process(self) -> TrackedFields:
        """解包所选 IPA 并读取 `Info.plist`；失败时整个会话回到未选择状态。"""
        if not self.input_ipa:
            raise SessionError("no ipa selected")
        self._discard_scratch()

        self._log(f"Extracting {os.path.basename(self.input_ipa)}")
        try:
            location = extract_ipa(
                self.input_ipa,
                scratch_parent=self.paths.temp_dir,
                main_app_name=self.main_app_name,
            )
            try:
                obj, fmt = load_descriptor(location.info_plist)
            except BaseException:
                cleanup.remove_path(location.scratch_dir)
                raise
        except (PlistEditorError, OSError) as e:
            self._log(f"Error processing IPA: {e}")
            self.reset()
            raise

        self.location = location
        self.descriptor = obj
        self.plist_format = fmt
        self.tracked = tracked_fields_from(obj)
        self.raw_text = ""
        self.editing_raw = False
        self._log(f"App: {location.bundle_name}")
        self._log(f"Info.plist: {len(obj)} keys ({'binary' if fmt == plistlib.FMT_BINARY else 'xml'})")
        return self.tracked

    # -- 字段编辑 -------------------------------------------------------

    def get_tracked_fields(self) -> TrackedFields:
        self._require_loaded()
        return self.tracked

    def set_tracked_fields(self, fields: TrackedFields) -> None:
        """记录待提交的字段值；保存时整体覆盖四个字段。"""
        self._require_loaded()
        self.tracked = fields

    def apply_ops(self, ops: Sequence[Op]) -> None:
        """合并待提交字段后依次执行 `Op`；任一操作失败则不做任何修改。"""
        current = self._require_loaded()
        updated = apply_field_edits(copy.deepcopy(current), self.tracked)
        apply_ops(updated, ops)
        self.descriptor = updated
        self.tracked = tracked_fields_from(updated)
        self._log(f"Applied {len(ops)} plist operation(s)")

    # -- 原始文本编辑 ---------------------------------------------------

    def begin_raw_edit(self) -> str:
        """返回当前 plist 的 XML 文本（不含尚未提交的字段修改）。"""
        current = self._require_loaded()
        self.raw_text = serialize_for_editing(current)
        self.editing_raw = True
        return self.raw_text

    def cancel_raw_edit(self) -> None:
        self.raw_text = ""
        self.editing_raw = False

    def commit_raw_edit(self, text: str | None = None) -> None:
        """解析编辑后的文本并写回 `Info.plist`，成功后整体替换 plist 与字段视图。

        解析或写入失败时保持原有 plist 与字段视图不变。
        """
        self._require_loaded()
        edited = self.raw_text if text is None else text
        try:
            obj = reparse_edited_text(edited)
        except PlistEditorError as e:
            self._log(f"Error saving raw plist: {e}")
            raise

        try:
            location = self._locate_bundle()
            save_plist(location.info_plist, obj, self.plist_format)
        except (PlistEditorError, OSError) as e:
            self._log(f"Error saving raw plist: {e}")
            raise SaveError(f"failed to write Info.plist: {e}") from e

        self.descriptor = obj
        self.tracked = tracked_fields_from(obj)
        self.raw_text = ""
        self.editing_raw = False
        self._log("Raw Info.plist committed")

    # -- 保存与补丁 -----------------------------------------------------

    def save(self) -> str:
        """写回 `Info.plist` 并重新打包，返回输出 IPA 路径。"""
        current = self._require_loaded()
        updated = apply_field_edits(dict(current), self.tracked)
        output = output_path_for(self.input_ipa, self.output_dir)

        try:
            location = self._locate_bundle()
            self._log(f"Writing {location.info_plist}")
            save_plist(location.info_plist, updated, self.plist_format)
            self.descriptor = updated

            if cleanup.remove_path(output):
                self._log(f"Removed stale output: {output}")
            self._log(f"Packaging {output}")
            repackage_payload(location.payload_dir, output)
        except (PlistEditorError, OSError) as e:
            if self.output_ipa and not os.path.exists(self.output_ipa):
                self.output_ipa = ""
            self._log(f"Error saving changes: {e}")
            raise SaveError(f"failed to save ipa: {e}") from e

        self.output_ipa = output
        self._log(f"Output: {output}")
        return output

    def apply_arcade_patch(self) -> str:
        """把 `NSApplicationRequiresArcade` 置为 false 并立即保存，返回输出路径。"""
        current = self._require_loaded()
        if not has_feature_gate(current):
            raise PatchNotApplicable(f"{KEY_ARCADE} not present in Info.plist")

        self.descriptor = patch_arcade(apply_field_edits(dict(current), self.tracked))
        try:
            return self.save()
        except SaveError:
            # 打包失败时 Info.plist 可能已写入补丁，需与内存中的 plist 一起回退。
            self.descriptor = current
            self._restore_info_plist(current)
            raise

    def _restore_info_plist(self, obj: dict[str, Any]) -> None:
        try:
            location = self._locate_bundle()
            save_plist(location.info_plist, obj, self.plist_format)
        except (PlistEditorError, OSError) as e:
            self._log(f"Failed to restore Info.plist: {e}")

    # -- 生命周期 -------------------------------------------------------

    def reset(self) -> None:
        """删除临时目录与产出文件（不存在则跳过），并清空全部会话状态。"""
        self._discard_scratch()
        if self.output_ipa:
            try:
                cleanup.remove_path(self.output_ipa)
            except OSError as e:
                self._log(f"Failed to remove output {self.output_ipa}: {e}")
        self._clear_state()

    def close(self) -> str:
        """结束会话但保留产出文件：只删除临时目录，返回产出路径（可能为空）。"""
        output = self.output_ipa if self.output_ipa and os.path.exists(self.output_ipa) else ""
        self._discard_scratch()
        self._clear_state()
        return output

    def sweep_all(self) -> cleanup.SweepResult:
        """清理临时区与文档区内的全部 `.ipa`，成功时记录清理时间。"""
        result = cleanup.sweep_all([self.paths.temp_dir, self.paths.documents_dir])
        if self.output_ipa and not os.path.exists(self.output_ipa):
            self.output_ipa = ""
        self._log(result.message())
        if result.ok:
            self.settings.last_cleanup = datetime.now()
            if self.settings_store is not None:
                self.settings_store.save(self.settings)
        return result

    def cleanup_on_exit(self) -> int:
        return cleanup.cleanup_on_exit(self.settings, self.paths.temp_dir, verbose=self.verbose)
