# tcbuild/orchestrator.py
"""
Batch orchestrator: retrieve-all, checkout-all, build-all.

Every phase visits all of its members even after a failure, then raises
PhaseFailed if any member failed. Retrieval and checkout run once per
package; the build runs once per component (each stage builds on its own).
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from tcbuild.buildsystem import BuildSystem
from tcbuild.checkout import Checkout
from tcbuild.errors import ErrorKind, ErrorLog, StepResult, TcbuildError
from tcbuild.fetcher import Fetcher
from tcbuild.logging import get_logger
from tcbuild.manifest import Component, Manifest
from tcbuild.runner import ProcessRunner
from tcbuild.workspace import Workspace

logger = get_logger("orchestrator")

PHASES = ("retrieve", "checkout", "build")


class PhaseFailed(TcbuildError):
    def __init__(self, phase: str, errors: ErrorLog):
        super().__init__(f"{phase} reported {len(errors)} error(s)")
        self.phase = phase
        self.errors = errors


class Orchestrator:
    def __init__(self, manifest: Manifest, workspace: Workspace, runner: ProcessRunner,
                 reference_dir: Optional[str] = None, timeout: int = 10, tries: int = 2):
        self.manifest = manifest
        self.workspace = workspace
        self.runner = runner
        self.fetcher = Fetcher(manifest, workspace, runner, reference_dir=reference_dir,
                               timeout=timeout, tries=tries)
        self.checkouts = Checkout(manifest, workspace, runner)
        self.buildsystem = BuildSystem(manifest, workspace, runner)
        self.results: Dict[str, Dict[str, StepResult]] = {p: {} for p in PHASES}

    def _run_phase(self, phase: str, members: Sequence[Any],
                   step: Callable[[Any], StepResult]) -> ErrorLog:
        logger.notice("%s_all called for: %s", phase, " ".join(str(m) for m in members))
        started = time.monotonic()
        errors = ErrorLog(phase)
        for member in members:
            try:
                result = step(member)
            except (OSError, TcbuildError) as e:
                logger.debug("%s of %s raised", phase, member, exc_info=True)
                result = StepResult.failure(str(e), ErrorKind.COMMAND)
            self.results[phase][str(member)] = result
            if not result.ok:
                logger.error("Failed to %s %s: %s", phase, member, result.message)
            errors.record(str(member), result)
        logger.notice("%s all took %d seconds", phase.capitalize(), int(time.monotonic() - started))
        if errors:
            raise PhaseFailed(phase, errors)
        return errors

    def retrieve_all(self, packages: Optional[Iterable[str]] = None) -> ErrorLog:
        packages = list(packages if packages is not None else self.manifest.packages)
        self.workspace.snapshots.mkdir(parents=True, exist_ok=True)
        return self._run_phase("retrieve", packages, self.fetcher.retrieve)

    def checkout_all(self, packages: Optional[Iterable[str]] = None) -> ErrorLog:
        packages = list(packages if packages is not None else self.manifest.packages)
        return self._run_phase("checkout", packages, self.checkouts.checkout)

    def build_all(self, components: Optional[Iterable[Component]] = None) -> ErrorLog:
        components = list(components if components is not None else self.manifest.components)
        return self._run_phase("build", components, self.buildsystem.build)

    def run(self, phases: Sequence[str] = PHASES) -> None:
        for phase in PHASES:
            if phase not in phases:
                logger.notice("Skipping %s phase", phase)
                continue
            getattr(self, f"{phase}_all")()


def summarize(errors: ErrorLog) -> List[str]:
    lines = [f"{errors.phase}_all reported the following error(s):"]
    lines.extend(errors.messages())
    return lines
