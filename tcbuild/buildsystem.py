# tcbuild/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - build dispatch for one (package, stage)

API:
  bs = BuildSystem(manifest, workspace, runner)
  result = bs.build(component)   # StepResult

Dispatch, in priority order:
  - cmake flags resolve non-empty     -> cmake configure, build, install
  - configure flags resolve non-empty -> [autogen.sh], configure, make, make install
  - neither                           -> nothing to build, skipped

The first failing sub-step ends the build and is its result. Both styles
install into whatever prefix the flags encode.
"""

from __future__ import annotations

import shlex
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from tcbuild.errors import ErrorKind, StepResult
from tcbuild.logging import get_logger
from tcbuild.manifest import Component, Field, Manifest
from tcbuild.runner import ProcessRunner, format_command
from tcbuild.workspace import Workspace

logger = get_logger("buildsystem")


class BuildStyle(str, Enum):
    CMAKE = "cmake"
    CONFIGURE = "configure"
    NONE = "none"


# --- helpers ---
def parse_generator(cmakeflags: Optional[str]) -> Optional[str]:
    """Generator named by a `-G <name>` / `-G"<name>"` option, if any (last one wins, as in cmake)."""
    generator = None
    words = split_flags(cmakeflags)
    for i, word in enumerate(words):
        if word == "-G" and i + 1 < len(words):
            generator = words[i + 1]
        elif word.startswith("-G") and len(word) > 2:
            generator = word[2:]
    return generator


def build_tool_for(generator: Optional[str]) -> str:
    if generator and generator.startswith("Ninja"):
        return "ninja"
    return "make"


def select_build_style(manifest: Manifest, package: str, stage: Optional[str] = None) -> BuildStyle:
    if manifest.get(package, Field.CMAKEFLAGS, stage):
        return BuildStyle.CMAKE
    if manifest.get(package, Field.CONFIGURE, stage):
        return BuildStyle.CONFIGURE
    return BuildStyle.NONE


def split_flags(flags: Optional[str]) -> List[str]:
    return shlex.split(flags) if flags else []


# --- main BuildSystem class ---
class BuildSystem:
    def __init__(self, manifest: Manifest, workspace: Workspace, runner: ProcessRunner):
        self.manifest = manifest
        self.workspace = workspace
        self.runner = runner

    def build(self, component: Component) -> StepResult:
        style = select_build_style(self.manifest, component.package, component.stage)
        try:
            if style is BuildStyle.CMAKE:
                return self.cmake_build(component)
            if style is BuildStyle.CONFIGURE:
                return self.configure_build(component)
        except ValueError as e:
            # shlex on unbalanced quotes
            return StepResult.failure(f"Malformed build flags for {component}: {e}", ErrorKind.MANIFEST)
        logger.notice("Nothing to build for %s, skipping", component)
        return StepResult.success(style=style.value, skipped=True)

    def _prepare_builddir(self, component: Component) -> Path:
        builddir = self.workspace.build_dir(self.manifest, component.package, component.stage)
        if not builddir.is_dir():
            if self.runner.dry_run:
                logger.notice("DRY RUN: mkdir -p %s", builddir)
            else:
                builddir.mkdir(parents=True, exist_ok=True)
        return builddir

    def _run_steps(self, component: Component, style: BuildStyle,
                   steps: Sequence[Tuple[str, List[str]]], cwd: Path) -> StepResult:
        for name, cmd in steps:
            res = self.runner.run(cmd, cwd=cwd)
            if not res.ok:
                return StepResult.failure(
                    f"{name} step failed for {component} (rc={res.returncode}): {format_command(cmd)}",
                    ErrorKind.COMMAND, style=style.value, step=name, returncode=res.returncode)
        return StepResult.success(style=style.value, builddir=str(cwd))

    def cmake_build(self, component: Component) -> StepResult:
        m, package, stage = self.manifest, component.package, component.stage
        srcdir = self.workspace.source_dir(m, package)
        cmakedir = m.get(package, Field.CMAKEDIR, stage, warn=False)
        cmakeflags = m.get(package, Field.CMAKEFLAGS, stage)
        makeflags = m.get(package, Field.MAKEFLAGS, stage)
        builddir = self._prepare_builddir(component)

        generator = parse_generator(cmakeflags)
        tool = build_tool_for(generator)
        logger.debug("%s: generator=%s build tool=%s", component, generator, tool)
        source = srcdir / cmakedir if cmakedir else srcdir
        steps = [
            ("configure", ["cmake", *split_flags(cmakeflags), str(source)]),
            ("build", [tool, *split_flags(makeflags)]),
            ("install", [tool, "install"]),
        ]
        return self._run_steps(component, BuildStyle.CMAKE, steps, builddir)

    def configure_build(self, component: Component) -> StepResult:
        m, package, stage = self.manifest, component.package, component.stage
        srcdir = self.workspace.source_dir(m, package)
        configure_flags = m.get(package, Field.CONFIGURE, stage)
        makeflags = m.get(package, Field.MAKEFLAGS, stage)
        builddir = self._prepare_builddir(component)

        configure = srcdir / "configure"
        if not configure.is_file():
            autogen = srcdir / "autogen.sh"
            if autogen.is_file():
                self.runner.run(["./autogen.sh"], cwd=srcdir)
            if not configure.is_file() and not (self.runner.dry_run and autogen.is_file()):
                return StepResult.failure(f"No configure script found in {srcdir}", ErrorKind.MISSING_SCRIPT)

        steps = [
            ("configure", [str(configure), *split_flags(configure_flags)]),
            ("build", ["make", *split_flags(makeflags)]),
            ("install", ["make", "install"]),
        ]
        return self._run_steps(component, BuildStyle.CONFIGURE, steps, builddir)
