import logging

import pytest

from conftest import make_manifest
from tcbuild.errors import ManifestError
from tcbuild.manifest import (
    Component,
    Field,
    errors_only,
    load_manifest,
    parse_manifest_text,
    tar_mode_for,
    validate_manifest,
)

SHELL_MANIFEST = r"""
# llvm two-stage build
release=2024.1
export target=aarch64-linux-gnu
llvm_url=https://github.com/llvm
llvm_filespec=llvm-project.git
llvm_branch="release/17.x"
llvm_makeflags="-j1"
llvm_cmakeflags="-G Ninja \
  -DCMAKE_INSTALL_PREFIX=${workspace_destdir_host}"
llvm_stage2_cmakeflags='-G "Unix Makefiles"'
llvm_stage2_url=https://example.invalid
steps="llvm_stage1 llvm_stage2"
"""


@pytest.fixture
def shell_manifest(tmp_path):
    path = tmp_path / "llvm.sh"
    path.write_text(SHELL_MANIFEST)
    return load_manifest(path, environment={"workspace_destdir_host": "/ws/builds/destdir/x86_64-linux-gnu"})


def test_shell_fragment_values(shell_manifest):
    m = shell_manifest
    assert m.release == "2024.1"
    assert m.target == "aarch64-linux-gnu"
    assert m.steps == ("llvm_stage1", "llvm_stage2")
    assert m.value("llvm_branch") == "release/17.x"
    assert m.value("llvm_cmakeflags").split() == [
        "-G", "Ninja", "-DCMAKE_INSTALL_PREFIX=/ws/builds/destdir/x86_64-linux-gnu"]
    assert m.value("llvm_stage2_cmakeflags") == '-G "Unix Makefiles"'


def test_stage_fallback(shell_manifest):
    m = shell_manifest
    assert m.get("llvm", Field.CMAKEFLAGS, "stage2") == '-G "Unix Makefiles"'
    assert m.get("llvm", Field.CMAKEFLAGS, "stage1").startswith("-G Ninja")
    assert m.get("llvm", Field.MAKEFLAGS, "stage2") == "-j1"


def test_package_fields_ignore_stage(shell_manifest):
    assert shell_manifest.get("llvm", Field.URL, "stage2") == "https://github.com/llvm"


def test_unset_field_warns_on_every_lookup(shell_manifest, caplog):
    caplog.set_level(logging.WARNING, logger="tcbuild")
    assert shell_manifest.get("llvm", Field.CONFIGURE, "stage1") is None
    assert shell_manifest.get("llvm", Field.CONFIGURE, "stage1") is None
    warnings = [r.getMessage() for r in caplog.records if "unset or empty" in r.getMessage()]
    assert warnings == ["llvm_stage1_configure / llvm_configure unset or empty"] * 2


def test_empty_value_counts_as_unset():
    m = make_manifest(foo_makeflags="-j8", foo_stage1_makeflags="")
    assert m.get("foo", Field.MAKEFLAGS, "stage1") == "-j8"


def test_default_expansion_and_earlier_assignments():
    values = parse_manifest_text('prefix=/opt\nflags="--prefix=$prefix ${missing:-x} ${prefix:-y}"\n')
    assert values["flags"] == "--prefix=/opt x /opt"


def test_declarations_and_semicolons():
    values = parse_manifest_text("readonly a=1; declare -x b=2\nexport c\n")
    assert values == {"a": "1", "b": "2"}


def test_command_substitution_rejected():
    with pytest.raises(ManifestError, match="command substitution"):
        parse_manifest_text("host=$(gcc -dumpmachine)\n")


def test_unsupported_syntax_reports_line():
    with pytest.raises(ManifestError) as exc:
        parse_manifest_text("a=1\nb=`uname`\n", source="m.sh")
    assert "m.sh:2:" in str(exc.value)


def test_yaml_manifest(tmp_path):
    path = tmp_path / "m.yaml"
    path.write_text(
        "release: r2\n"
        "target: riscv64-linux-gnu\n"
        "gcc_filespec: gcc-13.2.0.tar.xz\n"
        "gcc_configure: '--prefix=${workspace_builds}/gcc'\n"
        "steps: [gcc_stage1, gcc_stage2]\n"
    )
    m = load_manifest(path, environment={"workspace_builds": "/w/builds"})
    assert m.steps == ("gcc_stage1", "gcc_stage2")
    assert m.packages == ("gcc",)
    assert m.get("gcc", Field.CONFIGURE, "stage2") == "--prefix=/w/builds/gcc"


def test_yaml_manifest_rejects_nesting(tmp_path):
    path = tmp_path / "m.yml"
    path.write_text("gcc:\n  url: x\n")
    with pytest.raises(ManifestError):
        load_manifest(path)


@pytest.mark.parametrize("name,package,stage", [
    ("gcc", "gcc", None),
    ("bar_stage2", "bar", "stage2"),
    ("llvm_runtimes", "llvm_runtimes", None),
    ("llvm_runtimes_stage1", "llvm_runtimes", "stage1"),
])
def test_component_parse(name, package, stage):
    c = Component.parse(name)
    assert (c.package, c.stage, str(c)) == (package, stage, name)


def test_component_parse_rejects_garbage():
    with pytest.raises(ManifestError):
        Component.parse("2fast")


def test_packages_deduplicated_in_step_order():
    m = make_manifest(steps="binutils gcc_stage1 glibc gcc_stage2")
    assert m.packages == ("binutils", "gcc", "glibc")
    assert [str(c) for c in m.components] == ["binutils", "gcc_stage1", "glibc", "gcc_stage2"]


@pytest.mark.parametrize("filespec,mode", [
    ("binutils-2.41.tar.xz", "r:xz"),
    ("gmp-6.3.0.tar.bz2", "r:bz2"),
    ("zlib-1.3.tar.gz", "r:gz"),
    ("zstd-1.5.tar.zst", None),
])
def test_tar_mode_for(filespec, mode):
    assert tar_mode_for(filespec) == mode


def test_source_name_tarball():
    m = make_manifest(binutils_filespec="binutils-2.41.tar.xz")
    assert m.source_name("binutils") == "binutils-2.41"


def test_source_name_git_decorations():
    m = make_manifest(llvm_filespec="llvm-project.git", llvm_branch="release/17.x")
    assert m.source_name("llvm") == "llvm-project~release-17.x"
    m = make_manifest(llvm_filespec="llvm-project.git", llvm_revision="abc123")
    assert m.source_name("llvm") == "llvm-project_rev_abc123"
    m = make_manifest(llvm_filespec="llvm-project.git", llvm_branch="main", llvm_revision="abc123")
    assert m.source_name("llvm") == "llvm-project~main_rev_abc123"


def test_validate_missing_steps_raises():
    with pytest.raises(ManifestError, match="steps"):
        validate_manifest(make_manifest())


def test_validate_reports_errors_and_warnings():
    m = make_manifest(
        target="",
        steps="foo bar steps",
        foo_filespec="foo-1.0.tar.gz",
        bar_filespec="bar.git",
    )
    issues = validate_manifest(m)
    errors = [i.message for i in errors_only(issues)]
    warnings = [i.message for i in issues if i.severity == "warning"]
    assert "target unset or empty" in errors
    assert "bar_url unset or empty" in errors
    assert any("reserved" in e for e in errors)
    assert any("no sha256" in w for w in warnings)
    assert any("foo_url" in w for w in warnings)


def test_validate_release_override():
    m = make_manifest(release="", steps="foo", foo_filespec="foo-1.0.tar.gz",
                      foo_url="https://x", foo_sha256="00")
    assert errors_only(validate_manifest(m))
    assert not errors_only(validate_manifest(m, release_override="r9"))


def test_validate_branch_and_revision_warns():
    m = make_manifest(steps="llvm", llvm_filespec="llvm.git", llvm_url="https://x",
                      llvm_branch="main", llvm_revision="abc")
    issues = validate_manifest(m)
    assert not errors_only(issues)
    assert any("revision abc" in i.message for i in issues)


def test_validate_shared_destdir_warns(tmp_path):
    sysroot = str(tmp_path / "sysroot")
    m = make_manifest(steps="libc kernel", libc_filespec="libc.tar.xz", libc_url="https://x",
                      libc_sha256="00", libc_destdir=sysroot, kernel_filespec="headers.tar.xz",
                      kernel_url="https://x", kernel_sha256="00", kernel_destdir=sysroot)
    issues = validate_manifest(m)
    assert not errors_only(issues)
    shared = [i.message for i in issues if "also used by libc" in i.message]
    assert len(shared) == 1
    assert shared[0].startswith("kernel:")
