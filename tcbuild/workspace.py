# tcbuild/workspace.py
"""
Workspace layout for one release and the per-package paths derived from the
manifest.

  <root>/snapshots/                retrieved tarballs, bare git mirrors, source trees
  <root>/builds/                   per-component build trees
  <root>/builds/destdir/<host>     install root for host tools
  <root>/builds/destdir/<target>   install root for target artifacts
  <root>/sysroots/, <root>/toolchains/
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from tcbuild.errors import TcbuildError
from tcbuild.logging import get_logger
from tcbuild.manifest import Field, Manifest
from tcbuild.runner import ProcessRunner

logger = get_logger("workspace")


def detect_host_triple(runner: ProcessRunner) -> str:
    """Host triple from `gcc -dumpmachine`, falling back to <machine>-linux-gnu."""
    res = runner.run(["gcc", "-dumpmachine"], capture=True, query=True)
    triple = res.stdout.strip() if res.ok else ""
    if not triple:
        triple = f"{platform.machine() or 'unknown'}-linux-gnu"
        logger.warning("Could not query host triple from gcc, assuming %s", triple)
    return triple


@dataclass(frozen=True)
class Workspace:
    root: Path
    host: str
    target: str
    release: str = ""

    @property
    def snapshots(self) -> Path:
        return self.root / "snapshots"

    @property
    def builds(self) -> Path:
        return self.root / "builds"

    @property
    def sysroots(self) -> Path:
        return self.root / "sysroots"

    @property
    def toolchains(self) -> Path:
        return self.root / "toolchains"

    @property
    def destdir(self) -> Path:
        return self.builds / "destdir"

    @property
    def destdir_host(self) -> Path:
        return self.destdir / self.host

    @property
    def destdir_target(self) -> Path:
        return self.destdir / self.target

    def variables(self) -> Dict[str, str]:
        """Names a manifest may expand (`${workspace_destdir_target}` etc.)."""
        return {
            "host": self.host,
            "target": self.target,
            "release": self.release,
            "WORKSPACE": str(self.root),
            "workspace_snapshots": str(self.snapshots),
            "workspace_sysroots": str(self.sysroots),
            "workspace_toolchains": str(self.toolchains),
            "workspace_builds": str(self.builds),
            "workspace_destdir": str(self.destdir) + "/",
            "workspace_destdir_host": str(self.destdir_host),
            "workspace_destdir_target": str(self.destdir_target),
        }

    def ensure(self) -> None:
        """Create the workspace root; fail if it is not writable."""
        self.root.mkdir(parents=True, exist_ok=True)
        if not os.access(self.root, os.W_OK):
            raise TcbuildError(f"'{self.root}' is not writable")

    # ----------------------------
    # per-package paths
    # ----------------------------
    def _source_name(self, manifest: Manifest, package: str) -> str:
        name = manifest.source_name(package)
        if not name:
            raise TcbuildError(f"cannot derive source directory for {package}: filespec unset")
        return name

    def tarball_path(self, manifest: Manifest, package: str) -> Path:
        return self.snapshots / manifest.get(package, Field.FILESPEC)

    def mirror_path(self, manifest: Manifest, package: str) -> Path:
        return self.snapshots / manifest.get(package, Field.FILESPEC)

    def source_dir(self, manifest: Manifest, package: str) -> Path:
        return self.snapshots / self._source_name(manifest, package)

    def build_dir(self, manifest: Manifest, package: str, stage: Optional[str] = None) -> Path:
        name = self.source_dir(manifest, package).name
        if stage:
            name = f"{name}_{stage}"
        return self.builds / name

    def destination_dir(self, manifest: Manifest, package: str) -> Path:
        destdir = manifest.get(package, Field.DESTDIR, warn=False)
        if destdir:
            return Path(destdir)
        return self.source_dir(manifest, package)
