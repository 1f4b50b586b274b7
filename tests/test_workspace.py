import pytest

from conftest import HOST, TARGET, FakeRunner, make_manifest
from tcbuild.errors import TcbuildError
from tcbuild.workspace import Workspace, detect_host_triple


def test_layout_and_variables(tmp_path):
    ws = Workspace(tmp_path, HOST, TARGET, "r1")
    vars_ = ws.variables()
    assert vars_["WORKSPACE"] == str(tmp_path)
    assert vars_["workspace_snapshots"] == str(tmp_path / "snapshots")
    assert vars_["workspace_destdir"] == str(tmp_path / "builds" / "destdir") + "/"
    assert vars_["workspace_destdir_host"] == str(tmp_path / "builds" / "destdir" / HOST)
    assert vars_["workspace_destdir_target"] == str(tmp_path / "builds" / "destdir" / TARGET)
    assert (vars_["host"], vars_["target"], vars_["release"]) == (HOST, TARGET, "r1")


def test_tarball_paths(workspace):
    m = make_manifest(binutils_filespec="binutils-2.41.tar.xz")
    assert workspace.tarball_path(m, "binutils") == workspace.snapshots / "binutils-2.41.tar.xz"
    assert workspace.source_dir(m, "binutils") == workspace.snapshots / "binutils-2.41"
    assert workspace.build_dir(m, "binutils") == workspace.builds / "binutils-2.41"
    assert workspace.destination_dir(m, "binutils") == workspace.source_dir(m, "binutils")


def test_git_paths_with_branch(workspace):
    m = make_manifest(gcc_filespec="gcc.git", gcc_branch="releases/gcc-13")
    assert workspace.mirror_path(m, "gcc") == workspace.snapshots / "gcc.git"
    assert workspace.source_dir(m, "gcc") == workspace.snapshots / "gcc~releases-gcc-13"


def test_staged_build_dirs_are_distinct(workspace):
    m = make_manifest(gcc_filespec="gcc-13.2.0.tar.xz")
    stage1 = workspace.build_dir(m, "gcc", "stage1")
    stage2 = workspace.build_dir(m, "gcc", "stage2")
    assert stage1 == workspace.builds / "gcc-13.2.0_stage1"
    assert stage1 != stage2


def test_explicit_destdir(workspace, tmp_path):
    m = make_manifest(sysroot_filespec="sysroot.tar.xz", sysroot_destdir=str(tmp_path / "sysroot"))
    assert workspace.destination_dir(m, "sysroot") == tmp_path / "sysroot"


def test_source_dir_without_filespec(workspace):
    with pytest.raises(TcbuildError):
        workspace.source_dir(make_manifest(), "ghost")


def test_ensure_creates_root(tmp_path):
    ws = Workspace(tmp_path / "a" / "b", HOST, TARGET)
    ws.ensure()
    assert ws.root.is_dir()


def test_detect_host_triple():
    runner = FakeRunner().on("-dumpmachine", stdout="riscv64-unknown-linux-gnu\n")
    assert detect_host_triple(runner) == "riscv64-unknown-linux-gnu"


def test_detect_host_triple_fallback():
    runner = FakeRunner().on("-dumpmachine", returncode=127)
    assert detect_host_triple(runner).endswith("-linux-gnu")
