# tcbuild/runner.py
"""
Process runner: the only place tcbuild starts external programs (git, cmake,
make, ninja, configure scripts, gcc).
"""

from __future__ import annotations

import inspect
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from tcbuild.logging import TRACE, get_logger

logger = get_logger("runner")

PathLike = Union[str, Path]


@dataclass
class RunResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_command(cmd: Sequence[PathLike]) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


class ProcessRunner:
    """
    Run commands synchronously.

    With dry_run, commands are logged instead of executed (query=True still
    executes: read-only queries the engine needs in order to plan).
    """

    def __init__(self, dry_run: bool = False, env: Optional[Dict[str, str]] = None,
                 scratch_dir: Optional[PathLike] = None):
        self.dry_run = dry_run
        self.extra_env = dict(env or {})
        self.scratch_dir = str(scratch_dir) if scratch_dir else None

    def environment(self, env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        full = dict(os.environ)
        full.update(self.extra_env)
        if self.scratch_dir:
            full["TMPDIR"] = self.scratch_dir
        if env:
            full.update(env)
        return full

    def run(self, cmd: Sequence[PathLike], cwd: Optional[PathLike] = None,
            env: Optional[Dict[str, str]] = None, capture: bool = False,
            query: bool = False) -> RunResult:
        args: List[str] = [str(c) for c in cmd]
        text = format_command(args)
        if logger.isEnabledFor(TRACE):
            caller = inspect.stack()[1]
            logger.trace("%s:%d: %s", caller.function, caller.lineno, text)
        if self.dry_run and not query:
            logger.notice("DRY RUN: %s", text)
            return RunResult(0)
        logger.notice("RUN: %s%s", text, f" (cwd={cwd})" if cwd else "")
        try:
            proc = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                env=self.environment(env),
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.PIPE if capture else None,
                text=True,
            )
        except FileNotFoundError as e:
            logger.warning("Command not found: %s", args[0])
            return RunResult(127, "", str(e))
        except OSError as e:
            logger.warning("Failed to start %s: %s", args[0], e)
            return RunResult(126, "", str(e))
        if proc.returncode != 0:
            logger.warning("Previous command failed (rc=%d): %s", proc.returncode, text)
        return RunResult(proc.returncode, proc.stdout or "", proc.stderr or "")
