"""
`python -m ipa_plist_editor` entrypoint.

The installed console script `ipa-plist-editor` calls the same
`ipa_plist_editor.cli:main`.
"""

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
