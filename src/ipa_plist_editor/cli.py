"""
`ipa-plist-editor` 的命令行入口模块。

负责收集字段修改、原始文本编辑与清理参数，并驱动 `ipa_plist_editor.session.Session`。
"""

import argparse
import os
import shlex
import subprocess
import sys
import tempfile
from collections.abc import Sequence
from dataclasses import replace

from .errors import PlistEditorError
from .session import Session
from .settings import Settings, SettingsStore, default_paths
from .types import KEY_ARCADE, Op


def _add_op(ops: list[Op], kind: str, spec: str) -> None:
    """将一条命令行参数规范转换为内部 `Op` 并追加到列表。"""
    if kind in ("delete",):
        if not spec:
            raise SystemExit(f"Error: missing KEY_PATH for {kind}")
        ops.append(Op(kind=kind, key_path=spec, value=None))
        return

    if "=" not in spec:
        raise SystemExit(f"Error: expected KEY_PATH=VALUE, got: {spec}")
    k, v = spec.split("=", 1)
    if not k:
        raise SystemExit(f"Error: empty KEY_PATH in: {spec}")
    ops.append(Op(kind=kind, key_path=k, value=v))


def _parse_ops(ns: argparse.Namespace) -> list[Op]:
    """把 argparse 命名空间整理成统一的 `Op` 序列。"""
    ops: list[Op] = []
    for spec in ns.set:
        _add_op(ops, "set_string", spec)
    for spec in ns.set_int:
        _add_op(ops, "set_int", spec)
    for spec in ns.set_bool:
        _add_op(ops, "set_bool", spec)
    for spec in ns.delete:
        _add_op(ops, "delete", spec)
    return ops


def _log_step(message: str) -> None:
    """输出简洁的流程阶段提示。"""
    print(f"[ipa-plist-editor] {message}")


def _on_off(value: str) -> bool:
    return value == "on"


def _choose_candidate(
    *,
    kind: str,
    candidates: list[str],
    required_flag: str,
    context: str,
) -> str:
    """当候选有多个时，交互式让用户选择；非交互环境则报错。"""
    ordered = sorted(os.path.abspath(x) for x in candidates)
    if not sys.stdin.isatty():
        names = ", ".join(os.path.basename(x) for x in ordered)
        raise SystemExit(
            f"Error: multiple {kind} found {context} in non-interactive mode.\n"
            f"Candidates: {names}\n"
            f"Please pass the desired one via {required_flag}.\n"
        )

    print(f"Multiple {kind} found {context}. Please choose one:")
    for i, path in enumerate(ordered, start=1):
        print(f"  {i}) {path}")

    while True:
        raw = input(f"Select {kind} [1-{len(ordered)}]: ").strip()
        if raw.isdigit():
            idx = int(raw)
            if 1 <= idx <= len(ordered):
                selected = ordered[idx - 1]
                print(f"Selected {kind}: {selected}")
                return selected
        print("Invalid selection. Please enter a valid number.")


def _find_input_ipa_in_cwd() -> str:
    """在当前工作目录自动发现输入 IPA（跳过本工具生成的 `modified_*.ipa`）。"""
    cwd = os.getcwd()
    candidates: list[str] = []
    with os.scandir(cwd) as it:
        for entry in it:
            if not entry.is_file():
                continue
            name = entry.name.lower()
            if name.endswith(".ipa") and not name.startswith("modified_"):
                candidates.append(entry.path)

    if len(candidates) == 1:
        return os.path.abspath(candidates[0])
    if len(candidates) > 1:
        return _choose_candidate(
            kind=".ipa files",
            candidates=candidates,
            required_flag="-i/--input",
            context="in current directory",
        )
    raise SystemExit(
        "Error: missing -i/--input and no .ipa file found in current directory.\n"
        "Hint: pass input ipa path via -i.\n"
    )


def _edit_in_editor(text: str) -> str:
    """把文本写入临时文件并用 `$VISUAL`/`$EDITOR` 打开，返回编辑后的内容。"""
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR") or "vi"
    fd, path = tempfile.mkstemp(prefix="Info_", suffix=".plist")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        p = subprocess.run([*shlex.split(editor), path], check=False)
        if p.returncode != 0:
            raise SystemExit(f"Error: editor exited with status {p.returncode}")
        with open(path, encoding="utf-8") as f:
            return f.read()
    finally:
        if os.path.exists(path):
            os.remove(path)


def print_session_info(session: Session) -> None:
    """打印当前会话读取到的关键字段。"""
    fields = session.get_tracked_fields()
    if not session.has_feature_gate:
        arcade = "-"
    elif session.is_feature_gate_disabled:
        arcade = "present (disabled)"
    else:
        arcade = "present"
    app = session.location.bundle_name if session.location else "-"
    print("IPA Info:")
    print(f"  Input       : {session.input_ipa}")
    print(f"  App         : {app}")
    print(f"  Bundle ID   : {fields.bundle_id or '-'}")
    print(f"  Bundle Name : {fields.bundle_name or '-'}")
    print(f"  Version     : {fields.version or '-'}")
    print(f"  Build       : {fields.build or '-'}")
    print(f"  {KEY_ARCADE}: {arcade}")


def print_settings(settings: Settings) -> None:
    last = settings.last_cleanup.strftime("%Y-%m-%d %H:%M:%S") if settings.last_cleanup else "-"
    print("Settings:")
    print(f"  Show Output Log : {'on' if settings.show_output_log else 'off'}")
    print(f"  Clear On Exit   : {'on' if settings.clear_on_exit else 'off'}")
    print(f"  Last Cleanup    : {last}")


def build_parser() -> argparse.ArgumentParser:
    """构建并返回 `ipa-plist-editor` 命令行参数解析器。"""
    p = argparse.ArgumentParser(
        prog="ipa-plist-editor",
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "Edit the main app Info.plist inside an ipa (bundle id / name / version / build,\n"
            "raw XML, arcade patch) and repackage it as modified_<input>.ipa."
        ),
    )

    p.add_argument("-i", "--input", default="", help="Input .ipa path")
    p.add_argument(
        "-o",
        "--output-dir",
        default="",
        help="Directory for modified_<input>.ipa (default: next to the input)",
    )
    p.add_argument(
        "--main-app-name",
        default="",
        help="App bundle name under Payload (e.g. MyApp.app) when multiple .app exist",
    )
    p.add_argument(
        "--inspect",
        action="store_true",
        help="Only print the editable fields without writing an output ipa",
    )
    p.add_argument(
        "--print-plist",
        action="store_true",
        help="Only print Info.plist as XML without writing an output ipa",
    )
    p.add_argument("--verbose", action="store_true", help="Verbose logging")

    # 不使用空串作为默认值：`-b ""` 表示显式写入空串。
    p.add_argument("-b", "--bundle-id", default=None, help="New CFBundleIdentifier")
    p.add_argument("-d", "--display-name", default=None, help="New CFBundleName")
    p.add_argument("-v", "--version", default=None, help="New CFBundleShortVersionString")
    p.add_argument("-n", "--build", default=None, help="New CFBundleVersion")

    p.add_argument("--set", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as string")
    p.add_argument("--set-int", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as integer")
    p.add_argument("--set-bool", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as bool (true/false/1/0)")
    p.add_argument("--delete", action="append", default=[], metavar="KEY_PATH",
                   help="Delete Info.plist key/path")

    p.add_argument(
        "--raw-plist",
        default="",
        metavar="FILE",
        help="Replace Info.plist with the XML text in FILE (applied before field edits)",
    )
    p.add_argument(
        "--edit-raw",
        action="store_true",
        help="Edit Info.plist as XML in $VISUAL/$EDITOR before saving",
    )
    p.add_argument(
        "--patch-arcade",
        action="store_true",
        help=f"Set {KEY_ARCADE} to false (only when the key exists)",
    )

    p.add_argument(
        "--sweep",
        action="store_true",
        help="Delete all processed .ipa files in the temp and documents folders",
    )
    p.add_argument("--clear-on-exit", choices=("on", "off"), default=None,
                   help="Persist: clear processed .ipa files in the temp folder on exit")
    p.add_argument("--show-output-log", choices=("on", "off"), default=None,
                   help="Persist: always print pipeline steps")

    return p


def _wants_ipa(ns: argparse.Namespace, ops: list[Op]) -> bool:
    if ns.input or ns.inspect or ns.print_plist or ns.raw_plist or ns.edit_raw or ns.patch_arcade:
        return True
    if ops or any(v is not None for v in (ns.bundle_id, ns.display_name, ns.version, ns.build)):
        return True
    return not (ns.sweep or ns.clear_on_exit or ns.show_output_log)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI 入口：解析参数、处理偏好与清理，然后执行编辑流程。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    if ns.inspect and ns.print_plist:
        raise SystemExit("Error: --inspect and --print-plist cannot be used together.")
    if ns.raw_plist and ns.edit_raw:
        raise SystemExit("Error: --raw-plist and --edit-raw cannot be used together.")

    ops = _parse_ops(ns)

    def _abs(p: str) -> str:
        """将输入路径展开为绝对路径，统一后续文件校验逻辑。"""
        return os.path.abspath(os.path.expanduser(p))

    paths = default_paths()
    store = SettingsStore(paths.settings_file)
    settings = store.load()

    if ns.clear_on_exit is not None or ns.show_output_log is not None:
        if ns.clear_on_exit is not None:
            settings.clear_on_exit = _on_off(ns.clear_on_exit)
        if ns.show_output_log is not None:
            settings.show_output_log = _on_off(ns.show_output_log)
        store.save(settings)
        print_settings(settings)

    rc = 0
    if ns.sweep:
        sweeper = Session(settings=settings, paths=paths, settings_store=store, verbose=ns.verbose)
        result = sweeper.sweep_all()
        print(result.message())
        rc = 0 if result.ok else 1

    if not _wants_ipa(ns, ops):
        return rc

    _log_step("Resolving input ipa")
    if ns.input:
        input_ipa = _abs(ns.input)
        if not os.path.isfile(input_ipa):
            raise SystemExit(f"Error: ipa not found: {input_ipa}")
        _log_step(f"Using input ipa: {input_ipa}")
    else:
        input_ipa = _find_input_ipa_in_cwd()
        _log_step(f"Auto input ipa: {input_ipa}")

    output_dir = _abs(ns.output_dir) if ns.output_dir else os.path.dirname(input_ipa)
    raw_text = ""
    if ns.raw_plist:
        raw_path = _abs(ns.raw_plist)
        try:
            with open(raw_path, encoding="utf-8") as f:
                raw_text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise SystemExit(f"Error: failed to read {raw_path}: {e}") from e

    session = Session(
        settings=settings,
        paths=paths,
        settings_store=store,
        output_dir=output_dir,
        verbose=ns.verbose,
    )
    try:
        session.select_input(input_ipa, main_app_name=ns.main_app_name or "")
        _log_step("Extracting ipa")
        session.process()

        if ns.inspect:
            print_session_info(session)
            return rc
        if ns.print_plist:
            print(session.begin_raw_edit(), end="")
            return rc

        if ns.raw_plist:
            _log_step(f"Applying raw Info.plist: {ns.raw_plist}")
            session.begin_raw_edit()
            session.commit_raw_edit(raw_text)
        elif ns.edit_raw:
            original = session.begin_raw_edit()
            edited = _edit_in_editor(original)
            if edited == original:
                session.cancel_raw_edit()
                _log_step("Raw Info.plist unchanged")
            else:
                session.commit_raw_edit(edited)
                _log_step("Raw Info.plist updated")

        fields = session.get_tracked_fields()
        changes = {
            "bundle_id": ns.bundle_id,
            "bundle_name": ns.display_name,
            "version": ns.version,
            "build": ns.build,
        }
        changes = {k: v for k, v in changes.items() if v is not None}
        if changes:
            session.set_tracked_fields(replace(fields, **changes))
        if ops:
            session.apply_ops(ops)

        if ns.patch_arcade:
            _log_step("Patching arcade flag")
            output_ipa = session.apply_arcade_patch()
        else:
            _log_step("Saving ipa")
            output_ipa = session.save()

        fields = session.get_tracked_fields()
        print("Done:")
        print(f"  Input : {input_ipa}")
        print(f"  Output: {output_ipa}")
        print(f"  ID    : {fields.bundle_id}")
        print(f"  Name  : {fields.bundle_name}")
        print(f"  Ver   : {fields.version}")
        print(f"  Build : {fields.build}")
        if ops:
            print("  Plist : custom operations applied")
        if ns.patch_arcade:
            print(f"  Patch : {KEY_ARCADE} = false")
        return rc
    except PlistEditorError as e:
        raise SystemExit(f"Error: {e}") from e
    finally:
        session.close()
        session.cleanup_on_exit()
