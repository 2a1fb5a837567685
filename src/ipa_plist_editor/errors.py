"""
编辑流程中各阶段抛出的异常类型。

CLI 会把这些异常统一转换为 `SystemExit("Error: ...")`。
"""

from __future__ import annotations


class PlistEditorError(RuntimeError):
    """所有可预期错误的基类。"""


class InvalidArchive(PlistEditorError):
    """输入文件不是可用的 `.ipa`（扩展名不符、文件缺失或 ZIP 损坏）。"""


class StructureError(PlistEditorError):
    """解包后缺少 `Payload/`、`.app` 目录或 `Info.plist`。"""


class AmbiguousBundle(StructureError):
    """`Payload/` 下存在多个 `.app` 且未指定使用哪一个。"""


class ParseError(PlistEditorError):
    """`Info.plist` 字节格式不合法，或顶层不是字典。"""


class InvalidFormat(PlistEditorError):
    """原始文本无法编码为 UTF-8 字节。"""


class SaveError(PlistEditorError):
    """写回 `Info.plist` 或重新打包失败。"""


class InvalidOperation(PlistEditorError):
    """路径化 plist 操作的取值或目标类型不合法。"""


class PatchNotApplicable(PlistEditorError):
    """自动补丁所需的键在当前 `Info.plist` 中不存在。"""


class SessionError(PlistEditorError):
    """在错误的会话状态下调用了操作（例如尚未加载 IPA）。"""
