"""Shared fixtures: a scripted process runner, workspaces and real tarballs."""

from __future__ import annotations

import hashlib
import io
import logging
import os
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from tcbuild.manifest import Manifest
from tcbuild.runner import RunResult
from tcbuild.workspace import Workspace

HOST = "x86_64-linux-gnu"
TARGET = "aarch64-linux-gnu"


class FakeRunner:
    """
    Stands in for ProcessRunner. Every command is recorded; rules registered
    with on() pick the return code and may run a side effect (e.g. create
    the directory `git worktree add` would have created).
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.calls: List[Tuple[List[str], Optional[str]]] = []
        self._rules: List[Tuple[Tuple[str, ...], int, str, Optional[Callable]]] = []

    def on(self, *words: str, returncode: int = 0, stdout: str = "",
           effect: Optional[Callable[[List[str], Optional[str]], None]] = None) -> "FakeRunner":
        self._rules.insert(0, (words, returncode, stdout, effect))
        return self

    def run(self, cmd, cwd=None, env=None, capture=False, query=False) -> RunResult:
        args = [str(c) for c in cmd]
        cwd = str(cwd) if cwd else None
        self.calls.append((args, cwd))
        for words, returncode, stdout, effect in self._rules:
            if all(w in args for w in words):
                if effect is not None and not self.dry_run:
                    effect(args, cwd)
                return RunResult(returncode, stdout, "")
        return RunResult(0)

    @property
    def commands(self) -> List[List[str]]:
        return [args for args, _ in self.calls]

    def commands_with(self, word: str) -> List[List[str]]:
        return [args for args in self.commands if word in args]


def make_tarball(path: Path, top: str, files: Dict[str, str]) -> str:
    """Write a gzip/xz/bz2 tarball (by suffix) with everything under `top/`; return its sha256."""
    mode = "w:gz"
    if path.name.endswith(".xz"):
        mode = "w:xz"
    elif path.name.endswith(".bz2"):
        mode = "w:bz2"
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, mode) as tar:
        info = tarfile.TarInfo(top)
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return hashlib.sha256(path.read_bytes()).hexdigest()


def truncate_tarball(path: Path, top: str) -> None:
    """Write a tarball of incompressible members, then cut it off halfway through."""
    make_tarball(path, top, {f"blob{i}": os.urandom(16 * 1024).hex() for i in range(4)})
    data = path.read_bytes()
    path.write_bytes(data[:len(data) // 2])


def make_manifest(**variables: str) -> Manifest:
    base = {"release": "r1", "target": TARGET}
    base.update(variables)
    return Manifest(base, "<test>")


def git_worktree_effect(args: List[str], cwd: Optional[str]) -> None:
    # git -C <mirror> worktree add <srcdir> <ref>
    srcdir = Path(args[args.index("add") + 1])
    srcdir.mkdir(parents=True)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def workspace(tmp_path):
    ws = Workspace(tmp_path / "ws", HOST, TARGET, "r1")
    ws.ensure()
    ws.snapshots.mkdir(parents=True, exist_ok=True)
    return ws


@pytest.fixture(autouse=True)
def _reset_tcbuild_logging():
    yield
    root = logging.getLogger("tcbuild")
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.NOTSET)
