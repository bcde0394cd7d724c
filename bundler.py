"""Pack a Blue script and the interpreter sources into a runnable zipapp."""

from __future__ import annotations
import os
import shutil
import tempfile
import zipapp
from typing import List, Optional

from lexer import BlueError

INTERPRETER_MODULES = (
    "blue.py",
    "bundler.py",
    "corelib.py",
    "environment.py",
    "extensions.py",
    "interpreter.py",
    "lexer.py",
    "numeric.py",
    "objects.py",
    "parser.py",
    "printer.py",
    "pubsub.py",
)

MAIN_TEMPLATE = '''\
import sys

from blue import run_embedded

SOURCE = {source!r}

if __name__ == "__main__":
    sys.exit(run_embedded(SOURCE, {name!r}))
'''


class BundleError(BlueError):
    pass


def install_path() -> str:
    """Directory holding the interpreter sources; `BLUE_INSTALL_PATH` overrides it."""
    return os.environ.get("BLUE_INSTALL_PATH") or os.path.dirname(os.path.abspath(__file__))


def _copy_sources(source_dir: str, workspace: str) -> List[str]:
    copied: List[str] = []
    for name in INTERPRETER_MODULES:
        path = os.path.join(source_dir, name)
        if not os.path.isfile(path):
            raise BundleError(f"interpreter source {name} not found in {source_dir}")
        shutil.copy2(path, os.path.join(workspace, name))
        copied.append(name)
    ext_dir = os.path.join(source_dir, "ext")
    if os.path.isdir(ext_dir):
        target = os.path.join(workspace, "ext")
        os.makedirs(target, exist_ok=True)
        for name in sorted(os.listdir(ext_dir)):
            if name.endswith(".py"):
                shutil.copy2(os.path.join(ext_dir, name), os.path.join(target, name))
                copied.append(os.path.join("ext", name))
    return copied


def bundle(script: str, output: Optional[str] = None) -> str:
    """Write `<script>.pyz` (or `output`) and return its path.

    The archive embeds the script text in its ``__main__`` and runs it with the
    bundled interpreter. Third-party dependencies are not vendored; they must be
    installed where the archive runs.
    """
    try:
        with open(script, "r", encoding="utf-8") as handle:
            source = handle.read()
    except OSError as exc:
        raise BundleError(f"Failed to read {script}: {exc}")
    target = output or os.path.splitext(script)[0] + ".pyz"
    with tempfile.TemporaryDirectory(prefix="blue-bundle-") as workspace:
        _copy_sources(install_path(), workspace)
        with open(os.path.join(workspace, "__main__.py"), "w", encoding="utf-8") as handle:
            handle.write(MAIN_TEMPLATE.format(source=source, name=os.path.basename(script)))
        zipapp.create_archive(workspace, target=target, interpreter="/usr/bin/env python3")
    return os.path.abspath(target)
