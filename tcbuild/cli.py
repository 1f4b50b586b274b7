#!/usr/bin/env python3
# tcbuild/cli.py
"""
tcbuild CLI - build a toolchain from a manifest

  tcbuild [-v|-q ...] [--release NAME] [--workspace DIR]
          [--with-git-reference-dir DIR] [--config PATH] [--dry-run]
          [--only PHASE ...] MANIFEST

MANIFEST is a path or an http(s) URL. Exit status is 0 on success and 1 when
the invocation or manifest is malformed or any phase reports errors.
"""

from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.text import Text

from tcbuild import config as config_mod
from tcbuild import logging as tlog
from tcbuild.errors import ManifestError, TcbuildError, UsageError
from tcbuild.fetcher import download
from tcbuild.manifest import errors_only, load_manifest, validate_manifest
from tcbuild.orchestrator import PHASES, Orchestrator, PhaseFailed, summarize
from tcbuild.runner import ProcessRunner
from tcbuild.workspace import Workspace, detect_host_triple

logger = tlog.get_logger("cli")
console = Console(stderr=True, highlight=False)


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(Text("✔ " + msg, style="bold green"), soft_wrap=True)


def print_warn(msg: str):
    console.print(Text("! " + msg, style="bold yellow"), soft_wrap=True)


def print_err(msg: str):
    console.print(Text("✖ " + msg, style="bold red"), soft_wrap=True)


# -----------------------
# Argparse wiring
# -----------------------
class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def make_parser() -> argparse.ArgumentParser:
    ap = _Parser(prog="tcbuild", description="Retrieve, check out and build the components listed in a manifest")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="log more (repeatable)")
    ap.add_argument("-q", "--quiet", action="count", default=0, help="log less (repeatable)")
    ap.add_argument("--release", help="override the manifest's release name")
    ap.add_argument("--workspace", help="workspace directory (default: ./<release>)")
    ap.add_argument("--with-git-reference-dir", dest="reference_dir", metavar="DIR",
                    help="local directory with reference git repositories and tarballs")
    ap.add_argument("--config", help="configuration file")
    ap.add_argument("--dry-run", action="store_true", help="log commands instead of running them")
    ap.add_argument("--only", action="append", choices=PHASES, metavar="PHASE",
                    help="run only this phase (repeatable): %s" % ", ".join(PHASES))
    ap.add_argument("manifest", nargs="?", help="manifest file or http(s) URL")
    return ap


def resolve_manifest(location: str, scratch: Path, timeout: int = 10, tries: int = 2) -> Path:
    if location.startswith(("http://", "https://")):
        name = location.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1] or "manifest"
        dest = scratch / name
        ok, error = download(location, dest, timeout=timeout, tries=tries)
        if not ok:
            raise TcbuildError(f"failed to download manifest {location}: {error}")
        return dest
    path = Path(location)
    if not path.is_file():
        raise UsageError(f"manifest not found: {location}")
    return path


def _build(args, cfg: config_mod.Config, scratch: Path, runner: Optional[ProcessRunner]) -> int:
    timeout = cfg.get("fetcher.timeout", 10)
    tries = cfg.get("fetcher.tries", 2)
    manifest_path = resolve_manifest(args.manifest, scratch, timeout=timeout, tries=tries)
    if runner is None:
        runner = ProcessRunner(dry_run=args.dry_run or cfg.get("build.dry_run", False),
                               env=cfg.get("build.env", {}), scratch_dir=scratch)

    # first pass only to learn release and target
    first = load_manifest(manifest_path)
    if not first.steps:
        raise ManifestError(f"steps unset or empty in {manifest_path}")
    release = args.release or first.release
    if not release:
        raise ManifestError(f"release unset or empty in {manifest_path}")

    host = cfg.get("build.host") or detect_host_triple(runner)
    root = Path(args.workspace or cfg.get("workspace.root") or Path.cwd() / release).resolve()
    workspace = Workspace(root, host, first.target or "", release)

    manifest = load_manifest(manifest_path, environment=workspace.variables())
    if args.release:
        manifest = manifest.with_overrides(release=args.release)
    issues = validate_manifest(manifest, release_override=args.release)
    for issue in issues:
        if issue.severity == "warning":
            logger.warning("%s", issue.message)
    errors = errors_only(issues)
    if errors:
        raise ManifestError(f"{manifest_path} failed validation", issues=[i.message for i in errors])

    workspace.ensure()
    logger.notice("Workspace %s (host=%s target=%s)", workspace.root, workspace.host, workspace.target)
    orchestrator = Orchestrator(
        manifest, workspace, runner,
        reference_dir=args.reference_dir or cfg.get("fetcher.reference_dir"),
        timeout=timeout, tries=tries,
    )
    orchestrator.run(args.only or PHASES)
    print_ok(f"release {release}: {len(manifest.components)} component(s) done")
    return 0


def main(argv: Optional[List[str]] = None, runner: Optional[ProcessRunner] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    try:
        args = parser.parse_args(argv)
        cfg = config_mod.load(args.config)
        verbosity = tlog.level_to_verbosity(cfg.get("logging.level", "WARNING")) + args.verbose - args.quiet
        tlog.configure_from(cfg.section("logging"), verbosity=verbosity)
        if not args.manifest:
            raise UsageError(f"Usage: {parser.prog} MANIFEST")
        ok, issues = config_mod.validate_config(cfg)
        if not ok:
            raise TcbuildError(f"invalid configuration {cfg.path or '<defaults>'}: " + "; ".join(issues))
        with tempfile.TemporaryDirectory(prefix="tcbuild-") as scratch:
            return _build(args, cfg, Path(scratch), runner)
    except UsageError as e:
        print_err(str(e))
        console.print(Text(parser.format_usage().rstrip()), soft_wrap=True)
        return 1
    except ManifestError as e:
        print_err(str(e))
        for issue in e.issues:
            console.print(Text("  " + issue), soft_wrap=True)
        return 1
    except PhaseFailed as e:
        lines = summarize(e.errors)
        print_err(lines[0])
        for line in lines[1:]:
            console.print(Text(line), soft_wrap=True)
        return 1
    except TcbuildError as e:
        print_err(str(e))
        return 1
    except KeyboardInterrupt:
        print_warn("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
