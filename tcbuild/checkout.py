# tcbuild/checkout.py
"""
Checkout layer: materialize a package's source tree.

Tarballs are extracted (top-level directory stripped) into the package's
destination directory; git packages get a linked worktree of the bare mirror
at the manifest's revision, else its branch, else the mirror's HEAD.
"""

from __future__ import annotations

import lzma
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import List

from tcbuild.errors import ErrorKind, StepResult
from tcbuild.logging import get_logger
from tcbuild.manifest import Field, Manifest, tar_mode_for
from tcbuild.runner import ProcessRunner
from tcbuild.workspace import Workspace

logger = get_logger("checkout")


def _strip(name: str, components: int) -> str:
    parts = [p for p in name.split("/") if p not in ("", ".")]
    return "/".join(parts[components:])


def extract_tarball(tarball: Path, dest: Path, mode: str, strip_components: int = 1) -> int:
    """Extract like `tar -x --strip-components=N`; returns the number of members written."""
    with tarfile.open(tarball, mode) as tar:
        members: List[tarfile.TarInfo] = []
        for member in tar.getmembers():
            name = _strip(member.name, strip_components)
            if not name:
                continue
            member.name = name
            if member.islnk():
                member.linkname = _strip(member.linkname, strip_components)
            members.append(member)
        kwargs = {"filter": "tar"} if hasattr(tarfile, "tar_filter") else {}
        tar.extractall(dest, members=members, **kwargs)
    return len(members)


class Checkout:
    def __init__(self, manifest: Manifest, workspace: Workspace, runner: ProcessRunner):
        self.manifest = manifest
        self.workspace = workspace
        self.runner = runner

    def checkout(self, package: str) -> StepResult:
        if self.manifest.is_tar(package):
            return self.tar_extract(package)
        return self.git_checkout(package)

    def tar_extract(self, package: str) -> StepResult:
        m, ws = self.manifest, self.workspace
        filespec = m.get(package, Field.FILESPEC)
        tarball = ws.tarball_path(m, package)
        dest = ws.destination_dir(m, package)
        mode = tar_mode_for(filespec)
        if mode is None:
            return StepResult.failure(f"Unable to determine how to extract {filespec}", ErrorKind.ARCHIVE)

        if dest.exists():
            logger.notice("%s already extracted to %s, skipping", filespec, dest)
            return StepResult.success(path=str(dest), skipped=True)

        logger.notice("Extracting %s to %s.", filespec, dest)
        if self.runner.dry_run:
            logger.notice("DRY RUN: extract %s to %s", tarball, dest)
            return StepResult.success(path=str(dest))
        try:
            dest.mkdir(parents=True)
            count = extract_tarball(tarball, dest, mode)
        except (OSError, EOFError, tarfile.TarError, lzma.LZMAError, zlib.error) as e:
            # a half-extracted tree would make the next run skip this package
            shutil.rmtree(dest, ignore_errors=True)
            return StepResult.failure(f"Failed to extract from {filespec} to {dest}: {e}", ErrorKind.ARCHIVE)
        logger.debug("Extracted %d entries from %s", count, filespec)
        return StepResult.success(path=str(dest))

    def git_checkout(self, package: str) -> StepResult:
        m, ws = self.manifest, self.workspace
        mirror = ws.mirror_path(m, package)
        srcdir = ws.source_dir(m, package)
        branch = m.get(package, Field.BRANCH, warn=False)
        revision = m.get(package, Field.REVISION, warn=False)

        if not srcdir.exists():
            # a revision pins a commit on some branch already, so it wins over the branch
            if revision:
                ref, what = revision, "revision"
            elif branch:
                ref, what = branch, "branch"
            else:
                ref, what = "HEAD", "default branch"
            logger.notice("Checking out %s %s for %s in %s", what, ref, package, srcdir)
            res = self.runner.run(["git", "-C", str(mirror), "worktree", "add", str(srcdir), ref])
            if not res.ok:
                return StepResult.failure(f"Failed to create worktree for {ref} in {srcdir}", ErrorKind.GIT)

        print(f"--------------------- {package} ----------------------", flush=True)
        self.runner.run(["git", "--no-pager", "-C", str(srcdir), "show", "--no-patch"])
        return StepResult.success(path=str(srcdir))
