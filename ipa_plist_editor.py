#!/usr/bin/env python3
"""
源码目录下的入口，无需安装即可使用：

  python3 ipa_plist_editor.py -i App.ipa -b com.new.app

以 `ipa_plist_editor` 之名被导入时，本文件充当包入口，
子模块实际从 `src/ipa_plist_editor/` 加载。
"""

import os
import sys

_SRC = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")
_PACKAGE_DIR = os.path.join(_SRC, "ipa_plist_editor")

if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

# 根目录的同名模块会遮住 src 下的命名空间包，用 `__path__` 把子模块导入指回 src。
__path__ = [_PACKAGE_DIR]


def main(argv: list[str] | None = None) -> int:
    """转发给 `ipa_plist_editor.cli.main`。"""
    from ipa_plist_editor.cli import main as cli_main

    return cli_main(argv)


if __name__ == "__main__":
    raise SystemExit(main())
