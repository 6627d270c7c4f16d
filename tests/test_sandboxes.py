import subprocess
import sys
from pathlib import Path

import pytest

from shipmatrix.builders import CargoBuilder
from shipmatrix.errors import SandboxError, ValidationError
from shipmatrix.models import BuildJob, CommandSpec, TargetSpec
from shipmatrix.sandbox import (
    ContainerSandbox,
    InProcessSandbox,
    LocalProcessSandbox,
    get_sandbox_factory,
    job_environment,
    synthetic_executable,
)
from shipmatrix.sandbox.base import resolve_inside
from shipmatrix.toolchain import RustupProvisioner


def _job(tmp_path: Path, triple: str = "x86_64-unknown-linux-gnu") -> BuildJob:
    spec = TargetSpec("linux", "x64", triple)
    working_directory = tmp_path / "work" / "linux-x64"
    return BuildJob(
        target=spec,
        architecture="x64",
        target_triple=triple,
        working_directory=working_directory,
        output_path=working_directory / "target" / triple / "release" / "tool",
    )


def _source(tmp_path: Path) -> Path:
    source = tmp_path / "src"
    (source / ".git").mkdir(parents=True)
    (source / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (source / "Cargo.toml").write_text("[package]\nname = \"tool\"\n", encoding="utf-8")
    return source


def test_job_environment_drops_unlisted_host_variables() -> None:
    env = job_environment(
        {"CARGO_TERM_COLOR": "never"},
        host={"PATH": "/usr/bin", "AWS_SECRET_ACCESS_KEY": "secret", "HOME": "/root"},
    )
    assert env == {"PATH": "/usr/bin", "HOME": "/root", "CARGO_TERM_COLOR": "never"}


def test_resolve_inside_refuses_escape(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    assert resolve_inside(root, Path("out/tool")) == (root / "out" / "tool").resolve()
    with pytest.raises(SandboxError):
        resolve_inside(root, Path("../elsewhere"))


def test_local_sandbox_stages_private_copy_without_vcs(tmp_path: Path) -> None:
    sandbox = LocalProcessSandbox(job=_job(tmp_path), source_dir=_source(tmp_path))

    sandbox.prepare()

    assert (sandbox.root / "Cargo.toml").is_file()
    assert not (sandbox.root / ".git").exists()
    sandbox.cleanup()
    assert not sandbox.root.exists()


def test_local_sandbox_missing_source_tree(tmp_path: Path) -> None:
    sandbox = LocalProcessSandbox(job=_job(tmp_path), source_dir=tmp_path / "absent")
    with pytest.raises(SandboxError) as excinfo:
        sandbox.prepare()
    assert excinfo.value.hint is not None


@pytest.mark.skipif(sys.platform.startswith("win"), reason="Uses a POSIX shell.")
def test_local_sandbox_runs_command_in_working_directory(tmp_path: Path) -> None:
    sandbox = LocalProcessSandbox(job=_job(tmp_path), source_dir=_source(tmp_path))
    sandbox.prepare()

    result = sandbox.run(CommandSpec(argv=(sys.executable, "-c", "import os; print(os.getcwd())")))

    assert result.returncode == 0
    assert Path(result.stdout.strip()).resolve() == sandbox.root.resolve()
    sandbox.cleanup()


def test_local_sandbox_missing_tool_is_nonzero_exit(tmp_path: Path) -> None:
    sandbox = LocalProcessSandbox(job=_job(tmp_path), source_dir=_source(tmp_path))
    sandbox.prepare()

    result = sandbox.run(CommandSpec(argv=("shipmatrix-no-such-tool",)))

    assert result.returncode == 127
    sandbox.cleanup()


def test_local_sandbox_timeout_is_sandbox_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sandbox = LocalProcessSandbox(job=_job(tmp_path), source_dir=_source(tmp_path), timeout=1)
    sandbox.prepare()

    def _timeout(*args: object, **kwargs: object) -> None:
        raise subprocess.TimeoutExpired(cmd="cargo", timeout=1)

    monkeypatch.setattr("shipmatrix.sandbox.local.subprocess.run", _timeout)
    with pytest.raises(SandboxError) as excinfo:
        sandbox.run(CommandSpec(argv=("cargo", "build")))
    assert excinfo.value.context["job"] == "linux-x64"


def _recording_engine(
    monkeypatch: pytest.MonkeyPatch,
    returncodes: dict[str, int] | None = None,
) -> list[list[str]]:
    calls: list[list[str]] = []

    def _run(argv: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(argv)
        assert kwargs["errors"] == "replace"
        code = (returncodes or {}).get(argv[1], 0)
        return subprocess.CompletedProcess(argv, code, stdout="ok", stderr="" if code == 0 else "no such image")

    monkeypatch.setattr("shipmatrix.sandbox.container.shutil.which", lambda _: "/usr/bin/docker")
    monkeypatch.setattr("shipmatrix.sandbox.container.subprocess.run", _run)
    return calls


def test_container_start_argv_mounts_job_directory(tmp_path: Path) -> None:
    job = _job(tmp_path)
    sandbox = ContainerSandbox(job=job, source_dir=_source(tmp_path), engine="podman")

    argv = sandbox.start_argv("shipmatrix-linux-x64-abc")

    assert argv == [
        "podman",
        "run",
        "--detach",
        "--name",
        "shipmatrix-linux-x64-abc",
        "--volume",
        f"{job.working_directory}:/work",
        "--workdir",
        "/work",
        "rust:1",
        "sleep",
        "infinity",
    ]


def test_provision_and_compile_share_one_container(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    job = _job(tmp_path)
    sandbox = ContainerSandbox(job=job, source_dir=_source(tmp_path))
    calls = _recording_engine(monkeypatch)

    sandbox.prepare()
    RustupProvisioner().provision(job.target_triple, sandbox)
    result = sandbox.run(CargoBuilder().compile_command(job))
    sandbox.cleanup()

    assert result.returncode == 0
    assert [argv[1] for argv in calls] == ["run", "exec", "exec", "rm"]
    container = calls[0][calls[0].index("--name") + 1]
    provision, compile_ = calls[1], calls[2]
    assert provision[provision.index(container) + 1 :][:3] == ["rustup", "target", "add"]
    assert compile_[compile_.index(container) + 1 :][:2] == ["cargo", "build"]
    assert compile_[2:6] == ["--workdir", "/work", "--env", "CARGO_TERM_COLOR=never"]
    assert calls[3] == ["docker", "rm", "--force", container]
    assert sandbox.container is None
    assert not job.working_directory.exists()


def test_container_that_fails_to_start_raises(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sandbox = ContainerSandbox(job=_job(tmp_path), source_dir=_source(tmp_path), image="missing:latest")
    calls = _recording_engine(monkeypatch, returncodes={"run": 125})

    with pytest.raises(SandboxError) as excinfo:
        sandbox.prepare()

    assert excinfo.value.context["image"] == "missing:latest"
    assert excinfo.value.context["stderr"] == "no such image"
    sandbox.cleanup()
    assert [argv[1] for argv in calls] == ["run"]


def test_container_run_before_prepare_raises(tmp_path: Path) -> None:
    sandbox = ContainerSandbox(job=_job(tmp_path), source_dir=_source(tmp_path))

    with pytest.raises(SandboxError):
        sandbox.run(CommandSpec(argv=("cargo", "build")))


def test_container_sandbox_requires_engine(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sandbox = ContainerSandbox(job=_job(tmp_path), source_dir=_source(tmp_path))
    monkeypatch.setattr("shipmatrix.sandbox.container.shutil.which", lambda _: None)

    with pytest.raises(SandboxError) as excinfo:
        sandbox.prepare()

    assert "docker" in str(excinfo.value)


def test_synthetic_executables_match_target_format() -> None:
    assert synthetic_executable("x86_64-unknown-linux-gnu", "x64").startswith(b"\x7fELF")
    assert synthetic_executable("x86_64-pc-windows-msvc", "x64").startswith(b"MZ")
    assert synthetic_executable("aarch64-apple-darwin", "arm64")[:4] == b"\xcf\xfa\xed\xfe"


def test_inprocess_sandbox_records_commands(tmp_path: Path) -> None:
    job = _job(tmp_path)
    sandbox = InProcessSandbox(job)
    sandbox.prepare()

    sandbox.run(CommandSpec(argv=("cargo", "build")))

    assert sandbox.read_file(job.output_path).startswith(b"\x7fELF")
    assert [command.argv for command in sandbox.commands] == [("cargo", "build")]
    sandbox.cleanup()
    assert not job.working_directory.exists()


def test_get_sandbox_factory(tmp_path: Path) -> None:
    factory = get_sandbox_factory("local", source_dir=tmp_path)
    sandbox = factory(_job(tmp_path))
    assert isinstance(sandbox, LocalProcessSandbox)
    assert sandbox.source_dir == tmp_path

    factory = get_sandbox_factory("container", source_dir=tmp_path, container_image="rust:1.80-slim")
    container = factory(_job(tmp_path))
    assert isinstance(container, ContainerSandbox)
    assert container.image == "rust:1.80-slim"
    assert get_sandbox_factory("container", source_dir=tmp_path)(_job(tmp_path)).image == "rust:1"

    with pytest.raises(ValidationError):
        get_sandbox_factory("vm", source_dir=tmp_path)
