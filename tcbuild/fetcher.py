# tcbuild/fetcher.py
"""
fetcher.py - retrieval layer for tcbuild

Features:
- Tarball retrieval: existing snapshot -> reference directory copy -> HTTP(S)/file download
  (bounded timeout, fixed number of tries)
- sha256 verification on every run when the manifest carries a digest
- Git retrieval: bare mirror clone (all branches plus code-review change refs,
  optionally seeded from a reference repository), then fetch --all --prune
"""

from __future__ import annotations

import hashlib
import http.client
import os
import shutil
import urllib.request
from pathlib import Path
from typing import Optional, Tuple

from tcbuild.errors import ErrorKind, StepResult
from tcbuild.logging import get_logger
from tcbuild.manifest import Field, Manifest
from tcbuild.runner import ProcessRunner
from tcbuild.workspace import Workspace

logger = get_logger("fetcher")

GIT_FETCH_REFSPECS = (
    "+refs/heads/*:refs/heads/*",
    "+refs/changes/*:refs/changes/*",
)


# -----------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------
def sha256_of_file(path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_sha256(path, expected: str) -> bool:
    if not os.path.exists(path):
        logger.error("%s: No such file or directory", path)
        return False
    got = sha256_of_file(path)
    if got.lower() != expected.strip().lower():
        logger.warning("Checksum mismatch for %s expected=%s got=%s", path, expected, got)
        return False
    return True


def download(url: str, dest: Path, timeout: int = 10, tries: int = 2) -> Tuple[bool, Optional[str]]:
    """
    Download url to dest, writing through a .part file so a failed attempt
    never leaves a file that looks complete. Returns (ok, last_error).
    """
    part = dest.with_name(dest.name + ".part")
    error = None
    for attempt in range(1, max(1, tries) + 1):
        try:
            with urllib.request.urlopen(url, timeout=timeout) as resp, open(part, "wb") as f:
                shutil.copyfileobj(resp, f, 65536)
            os.replace(part, dest)
            return True, None
        except (OSError, ValueError, http.client.HTTPException) as e:
            error = str(e)
            logger.warning("Download attempt %d/%d of %s failed: %s", attempt, tries, url, e)
            if part.exists():
                part.unlink()
    return False, error


# -----------------------------------------------------------------------
# Fetcher
# -----------------------------------------------------------------------
class Fetcher:
    def __init__(self, manifest: Manifest, workspace: Workspace, runner: ProcessRunner,
                 reference_dir: Optional[str] = None, timeout: int = 10, tries: int = 2):
        self.manifest = manifest
        self.workspace = workspace
        self.runner = runner
        self.reference_dir = Path(reference_dir) if reference_dir else None
        self.timeout = timeout
        self.tries = tries

    def retrieve(self, package: str) -> StepResult:
        if self.manifest.is_tar(package):
            return self.tar_fetch(package)
        return self.git_fetch(package)

    # -------------------------
    # tarballs
    # -------------------------
    def tar_fetch(self, package: str) -> StepResult:
        m, snapshots = self.manifest, self.workspace.snapshots
        filespec = m.get(package, Field.FILESPEC)
        url = m.get(package, Field.URL, warn=False)
        sha256 = m.get(package, Field.SHA256, warn=False)
        tarball = self.workspace.tarball_path(m, package)
        dry_run = self.runner.dry_run

        snapshots.mkdir(parents=True, exist_ok=True)
        if tarball.exists():
            logger.notice("%s already exists in %s", filespec, snapshots)
        elif self.reference_dir and (self.reference_dir / filespec).exists():
            source = self.reference_dir / filespec
            logger.notice("Copying %s from %s to %s", filespec, self.reference_dir, snapshots)
            if dry_run:
                logger.notice("DRY RUN: copy %s %s", source, tarball)
            else:
                try:
                    shutil.copy2(source, tarball)
                except OSError as e:
                    return StepResult.failure(
                        f"Failed to copy {filespec} from {self.reference_dir} to {snapshots}: {e}",
                        ErrorKind.COPY)
        else:
            if not url:
                return StepResult.failure(
                    f"{filespec} not found locally and {package}_url unset or empty", ErrorKind.NETWORK)
            remote = f"{url.rstrip('/')}/{filespec}"
            logger.notice("Downloading %s from %s to %s", filespec, remote, snapshots)
            if dry_run:
                logger.notice("DRY RUN: download %s", remote)
            else:
                ok, error = download(remote, tarball, timeout=self.timeout, tries=self.tries)
                if not ok:
                    return StepResult.failure(
                        f"Failed to download {filespec} from {remote} to {snapshots}: {error}",
                        ErrorKind.NETWORK, url=remote)

        if sha256:
            if dry_run and not tarball.exists():
                logger.notice("DRY RUN: verify sha256 of %s", tarball)
            elif not verify_sha256(tarball, sha256):
                return StepResult.failure(
                    f"Digest for {filespec} does not match digest in manifest!", ErrorKind.INTEGRITY,
                    path=str(tarball))
        else:
            logger.warning("No digest specified for %s, skipping integrity check", filespec)
        return StepResult.success(path=str(tarball))

    # -------------------------
    # git mirrors
    # -------------------------
    def git_fetch(self, package: str) -> StepResult:
        m = self.manifest
        filespec = m.get(package, Field.FILESPEC)
        url = m.get(package, Field.URL)
        if not url:
            return StepResult.failure(f"{package}_url unset or empty", ErrorKind.GIT)
        remote = f"{url.rstrip('/')}/{filespec}"
        mirror = self.workspace.mirror_path(m, package)

        self.workspace.snapshots.mkdir(parents=True, exist_ok=True)
        if mirror.is_dir():
            logger.notice("%s already exists in %s", filespec, self.workspace.snapshots)
        else:
            cmd = ["git", "clone"]
            reference = self.reference_dir / filespec if self.reference_dir else None
            if reference is not None and reference.is_dir():
                cmd += ["--reference", str(reference)]
            cmd.append("--bare")
            for refspec in GIT_FETCH_REFSPECS:
                cmd += ["--config", f"remote.origin.fetch={refspec}"]
            cmd += [remote, str(mirror)]
            logger.notice("Cloning %s to %s", package, mirror)
            if not self.runner.run(cmd).ok:
                return StepResult.failure(f"Failed to clone {remote} to {mirror}", ErrorKind.GIT)

        # pick up new refs and drop stale ones on every run
        if not self.runner.run(["git", "-C", str(mirror), "fetch", "--all", "--prune", "--quiet"]).ok:
            return StepResult.failure(f"Failed to update from {url} to {mirror}", ErrorKind.GIT)
        return StepResult.success(path=str(mirror))
