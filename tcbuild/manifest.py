# tcbuild/manifest.py
# -*- coding: utf-8 -*-
"""
manifest.py - manifest model, parser and validation

A manifest is a flat set of `<package>_<field>=value` declarations plus the
global scalars `release`, `target` and `steps`. Manifests are shell fragments
(the format the build scripts always sourced) or flat YAML mappings.

API:
  m = load_manifest(path, environment={...})
  m.get("llvm", Field.CMAKEFLAGS, stage="stage2")
  issues = validate_manifest(m)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from tcbuild.errors import ManifestError
from tcbuild.logging import get_logger

logger = get_logger("manifest")


class Field(str, Enum):
    URL = "url"
    FILESPEC = "filespec"
    BRANCH = "branch"
    REVISION = "revision"
    SHA256 = "sha256"
    DESTDIR = "destdir"
    CMAKEDIR = "cmakedir"
    CMAKEFLAGS = "cmakeflags"
    CONFIGURE = "configure"
    MAKEFLAGS = "makeflags"

    @property
    def stage_aware(self) -> bool:
        return self in STAGE_AWARE_FIELDS


STAGE_AWARE_FIELDS = frozenset({Field.CMAKEDIR, Field.CMAKEFLAGS, Field.CONFIGURE, Field.MAKEFLAGS})
RESERVED_NAMES = frozenset(f.value for f in Field) | {"steps", "release", "target"}

# compression suffix -> tarfile read mode
TAR_COMPRESSIONS: Tuple[Tuple[str, str], ...] = (
    (".xz", "r:xz"),
    (".bz", "r:bz2"),
    (".gz", "r:gz"),
)

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_COMPONENT_RE = re.compile(r"^(?P<package>[A-Za-z_][A-Za-z0-9_]*?)(?:_(?P<stage>stage[0-9]+))?$")


def is_tar_filespec(filespec: Optional[str]) -> bool:
    return bool(filespec) and ".tar." in filespec


def tar_mode_for(filespec: str) -> Optional[str]:
    """tarfile mode for a tarball name, None if the compression is not recognised."""
    _, _, compression = filespec.rpartition(".tar")
    for suffix, mode in TAR_COMPRESSIONS:
        if compression.startswith(suffix):
            return mode
    return None


# ----------------------------
# Component
# ----------------------------
@dataclass(frozen=True)
class Component:
    """One entry of `steps`: `<package>` or `<package>_stage<N>`."""
    name: str
    package: str
    stage: Optional[str] = None

    @classmethod
    def parse(cls, name: str) -> "Component":
        m = _COMPONENT_RE.match(name)
        if not m:
            raise ManifestError(f"invalid component name: {name!r}")
        return cls(name, m.group("package"), m.group("stage"))

    def __str__(self) -> str:
        return self.name


# ----------------------------
# Manifest
# ----------------------------
@dataclass(frozen=True)
class Manifest:
    variables: Mapping[str, str]
    source: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    # globals
    @property
    def steps(self) -> Tuple[str, ...]:
        return tuple((self.variables.get("steps") or "").split())

    @property
    def components(self) -> Tuple[Component, ...]:
        return tuple(Component.parse(s) for s in self.steps)

    @property
    def packages(self) -> Tuple[str, ...]:
        """Packages in step order, each listed once."""
        seen: Dict[str, None] = {}
        for c in self.components:
            seen.setdefault(c.package, None)
        return tuple(seen)

    @property
    def release(self) -> Optional[str]:
        return self.variables.get("release") or None

    @property
    def target(self) -> Optional[str]:
        return self.variables.get("target") or None

    def with_overrides(self, **values: str) -> "Manifest":
        merged = dict(self.variables)
        merged.update({k: v for k, v in values.items() if v is not None})
        return Manifest(merged, self.source)

    # field access
    def value(self, name: str) -> Optional[str]:
        val = self.variables.get(name)
        return val if val else None

    def _candidates(self, package: str, field: Field, stage: Optional[str]) -> List[str]:
        names = []
        if stage and field.stage_aware:
            names.append(f"{package}_{stage}_{field.value}")
        names.append(f"{package}_{field.value}")
        return names

    def get(self, package: str, field: Field, stage: Optional[str] = None, warn: bool = True) -> Optional[str]:
        """
        Value of `field` for `package`. Stage-aware fields look up
        `<package>_<stage>_<field>` first and fall back to `<package>_<field>`.
        Unset or empty yields None and a warning on every lookup.
        """
        names = self._candidates(package, field, stage)
        for name in names:
            val = self.value(name)
            if val is not None:
                return val
        if warn:
            logger.warning("%s unset or empty", " / ".join(names))
        return None

    def is_tar(self, package: str) -> bool:
        return is_tar_filespec(self.get(package, Field.FILESPEC))

    def source_name(self, package: str) -> Optional[str]:
        """
        Directory name of the package's source tree under snapshots/.
        Tarballs: filespec without `.tar.*`. Git: filespec without its
        extension, plus `~<branch>` (slashes -> dashes) and `_rev_<revision>`.
        """
        filespec = self.get(package, Field.FILESPEC)
        if not filespec:
            return None
        if is_tar_filespec(filespec):
            return filespec.rpartition(".tar.")[0]
        stem = filespec.rsplit(".", 1)[0] if "." in filespec else filespec
        suffix = ""
        branch = self.get(package, Field.BRANCH, warn=False)
        revision = self.get(package, Field.REVISION, warn=False)
        if branch:
            suffix += "~" + branch.replace("/", "-")
        if revision:
            suffix += f"_rev_{revision}"
        return stem + suffix


# ----------------------------
# Shell fragment parser
# ----------------------------
_DECLARATION_WORDS = frozenset({"export", "readonly", "declare", "typeset"})
_UNSUPPORTED_CHARS = "`()|&<>"


class _ShellFragmentParser:
    def __init__(self, text: str, environment: Optional[Mapping[str, str]], source: str):
        self.text = text
        self.env = dict(environment or {})
        self.source = source
        self.pos = 0
        self.line = 1
        self.values: Dict[str, str] = {}

    def error(self, msg: str) -> ManifestError:
        return ManifestError(f"{self.source}:{self.line}: {msg}")

    def lookup(self, name: str) -> Optional[str]:
        if name in self.values:
            return self.values[name]
        return self.env.get(name)

    def parse(self) -> Dict[str, str]:
        text, n = self.text, len(self.text)
        in_declaration = False
        while self.pos < n:
            c = text[self.pos]
            if c in " \t\r":
                self.pos += 1
                continue
            if c in "\n;":
                if c == "\n":
                    self.line += 1
                self.pos += 1
                in_declaration = False
                continue
            if c == "#":
                end = text.find("\n", self.pos)
                self.pos = n if end < 0 else end
                continue
            if c == "\\" and text.startswith("\\\n", self.pos):
                self.pos += 2
                self.line += 1
                continue
            m = _NAME_RE.match(text, self.pos)
            if m and text.startswith("=", m.end()):
                name = m.group(0)
                self.pos = m.end() + 1
                if text.startswith("(", self.pos):
                    raise self.error(f"array assignment to {name} is not supported")
                self.values[name] = self.read_word()
                continue
            word = self.read_word()
            if word in _DECLARATION_WORDS:
                in_declaration = True
            elif in_declaration and (word.startswith("-") or _NAME_RE.fullmatch(word)):
                continue
            else:
                raise self.error(f"unsupported statement: {word!r}")
        return self.values

    def read_word(self) -> str:
        text, n = self.text, len(self.text)
        out: List[str] = []
        while self.pos < n:
            c = text[self.pos]
            if c in " \t\r\n;":
                break
            if c == "\\":
                nxt = text[self.pos + 1] if self.pos + 1 < n else ""
                if nxt == "\n":
                    self.line += 1
                else:
                    out.append(nxt)
                self.pos += 2
            elif c == "'":
                end = text.find("'", self.pos + 1)
                if end < 0:
                    raise self.error("unterminated single quote")
                seg = text[self.pos + 1:end]
                self.line += seg.count("\n")
                out.append(seg)
                self.pos = end + 1
            elif c == '"':
                out.append(self.read_double_quoted())
            elif c == "$":
                out.append(self.read_expansion())
            elif c in _UNSUPPORTED_CHARS:
                raise self.error(f"unsupported shell syntax {c!r}")
            else:
                out.append(c)
                self.pos += 1
        return "".join(out)

    def read_double_quoted(self) -> str:
        text, n = self.text, len(self.text)
        out: List[str] = []
        self.pos += 1
        while True:
            if self.pos >= n:
                raise self.error("unterminated double quote")
            c = text[self.pos]
            if c == '"':
                self.pos += 1
                return "".join(out)
            if c == "\\" and self.pos + 1 < n and text[self.pos + 1] in '$`"\\\n':
                if text[self.pos + 1] == "\n":
                    self.line += 1
                else:
                    out.append(text[self.pos + 1])
                self.pos += 2
            elif c == "$":
                out.append(self.read_expansion())
            elif c == "`":
                raise self.error("command substitution is not supported")
            else:
                if c == "\n":
                    self.line += 1
                out.append(c)
                self.pos += 1

    def read_expansion(self) -> str:
        text = self.text
        start = self.pos + 1
        if text.startswith("{", start):
            end = text.find("}", start)
            if end < 0:
                raise self.error("unterminated ${")
            body = text[start + 1:end]
            self.pos = end + 1
            return self.expand_braced(body)
        if text.startswith("(", start):
            raise self.error("command substitution is not supported")
        m = _NAME_RE.match(text, start)
        if not m:
            self.pos += 1
            return "$"
        self.pos = m.end()
        return self.resolve(m.group(0))

    def expand_braced(self, body: str) -> str:
        m = _NAME_RE.match(body)
        if not m:
            raise self.error(f"bad substitution: ${{{body}}}")
        name, rest = m.group(0), body[m.end():]
        if not rest:
            return self.resolve(name)
        if rest.startswith(":-") or rest.startswith("-"):
            default = rest[2:] if rest.startswith(":-") else rest[1:]
            val = self.lookup(name)
            if val is None or (rest.startswith(":-") and val == ""):
                return expand_string(default, {**self.env, **self.values})
            return val
        raise self.error(f"unsupported substitution: ${{{body}}}")

    def resolve(self, name: str) -> str:
        val = self.lookup(name)
        if val is None:
            logger.debug("%s:%d: %s is unset, expanding to empty string", self.source, self.line, name)
            return ""
        return val


_SIMPLE_EXPANSION_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_string(value: str, variables: Mapping[str, str]) -> str:
    """Expand $name and ${name} in a plain string; unset names expand to ''."""
    return _SIMPLE_EXPANSION_RE.sub(lambda m: variables.get(m.group(1) or m.group(2), ""), value)


def parse_manifest_text(text: str, environment: Optional[Mapping[str, str]] = None,
                        source: str = "<manifest>") -> Dict[str, str]:
    """Parse a shell-fragment manifest into an ordered {name: value} dict."""
    return _ShellFragmentParser(text, environment, source).parse()


def _yaml_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return " ".join(_yaml_scalar(v) for v in value)
    if isinstance(value, dict):
        raise ManifestError("nested mappings are not allowed in a manifest")
    return str(value)


def parse_manifest_yaml(text: str, environment: Optional[Mapping[str, str]] = None,
                        source: str = "<manifest>") -> Dict[str, str]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"{source}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(f"{source}: manifest must be a mapping")
    values: Dict[str, str] = {}
    for key, raw in data.items():
        key = str(key)
        if not _NAME_RE.fullmatch(key):
            raise ManifestError(f"{source}: invalid variable name {key!r}")
        values[key] = expand_string(_yaml_scalar(raw), {**(environment or {}), **values})
    return values


def load_manifest(path, environment: Optional[Mapping[str, str]] = None) -> Manifest:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"cannot read manifest {path}: {e}") from e
    if path.suffix.lower() in (".yaml", ".yml"):
        values = parse_manifest_yaml(text, environment, str(path))
    else:
        values = parse_manifest_text(text, environment, str(path))
    return Manifest(values, str(path))


# ----------------------------
# Validation
# ----------------------------
@dataclass(frozen=True)
class ManifestIssue:
    severity: str  # "error" | "warning"
    message: str

    def __str__(self) -> str:
        return f"{self.severity}: {self.message}"


def validate_manifest(manifest: Manifest, release_override: Optional[str] = None) -> List[ManifestIssue]:
    """
    Check the whole manifest before anything is retrieved. Raises
    ManifestError when `steps` is missing; returns the remaining issues.
    """
    if not manifest.steps:
        raise ManifestError(f"steps unset or empty in {manifest.source or 'manifest'}")

    issues: List[ManifestIssue] = []

    def error(msg: str):
        issues.append(ManifestIssue("error", msg))

    def warning(msg: str):
        issues.append(ManifestIssue("warning", msg))

    if not manifest.release and not release_override:
        error("release unset or empty")
    if not manifest.target:
        error("target unset or empty")

    packages: List[str] = []
    for step in manifest.steps:
        try:
            component = Component.parse(step)
        except ManifestError as e:
            error(str(e))
            continue
        if component.package not in packages:
            packages.append(component.package)

    destdir_owners: Dict[str, str] = {}
    for package in packages:
        if package in RESERVED_NAMES:
            error(f"package name {package!r} collides with a reserved field name")
            continue
        filespec = manifest.value(f"{package}_{Field.FILESPEC.value}")
        url = manifest.value(f"{package}_{Field.URL.value}")
        if not filespec:
            error(f"{package}_filespec unset or empty")
            continue
        if is_tar_filespec(filespec):
            if tar_mode_for(filespec) is None:
                error(f"{package}: unable to determine how to extract {filespec}")
            destdir = manifest.value(f"{package}_{Field.DESTDIR.value}")
            if destdir and destdir in destdir_owners:
                warning(f"{package}: destdir {destdir} is also used by {destdir_owners[destdir]}; "
                        f"an existing destination is never extracted into, so {filespec} will be skipped")
            elif destdir:
                destdir_owners[destdir] = package
            if not url:
                warning(f"{package}_url unset or empty; {filespec} must come from the reference directory")
            if not manifest.value(f"{package}_{Field.SHA256.value}"):
                warning(f"{package}: no sha256 for {filespec}, integrity will not be checked")
        else:
            if not url:
                error(f"{package}_url unset or empty")
            branch = manifest.value(f"{package}_{Field.BRANCH.value}")
            revision = manifest.value(f"{package}_{Field.REVISION.value}")
            if branch and revision:
                warning(f"{package}: both branch and revision set; checking out revision {revision}")
            if manifest.source_name(package) == filespec:
                error(f"{package}: source directory would coincide with the git mirror {filespec}")
    return issues


def errors_only(issues: Iterable[ManifestIssue]) -> List[ManifestIssue]:
    return [i for i in issues if i.severity == "error"]
