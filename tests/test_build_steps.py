from __future__ import annotations

from fakes import FakeHost, FakeTool
from spdk_provisioner.pipeline import run_step
from spdk_provisioner.report import OutcomeKind, StepState
from spdk_provisioner.steps import (
    BuildSpdkStep,
    CloneSpdkStep,
    NvmeSelector,
    PythonEnvStep,
    SmokeTestStep,
)
from spdk_provisioner.steps.step_60_build_spdk import venv_env

SPDK = "/opt/spdk"
VENV = "/opt/spdk-venv"
BINARIES = [f"{SPDK}/build/bin/spdk_nvme_identify", f"{SPDK}/build/examples/hello_world"]
BDF = "0000:3d:00.0"


def _clone_step(host: FakeHost, **kwargs) -> CloneSpdkStep:
    def git(args, env):
        if args[0] == "clone":
            host.dirs.add(f"{args[2]}/.git")
        elif "submodule" in args:
            host.dirs.add(f"{SPDK}/dpdk/.git")
        return 0

    kwargs.setdefault("git", FakeTool("git", handler=git))
    kwargs.setdefault("chown", FakeTool("chown"))
    return CloneSpdkStep(spdk_dir=SPDK, parent_dir="/opt", repo_url="https://github.com/spdk/spdk", **kwargs)


def test_clone_fresh() -> None:
    host = FakeHost()
    step = _clone_step(host, owner="builder")

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.APPLIED
    assert step.git.calls == [
        ["clone", "https://github.com/spdk/spdk", SPDK],
        ["-C", SPDK, "submodule", "update", "--init"],
    ]
    assert step.chown.calls == [["-R", "builder:builder", SPDK]]


def test_clone_resumes_submodules_only() -> None:
    host = FakeHost(dirs=[f"{SPDK}/.git"])
    step = _clone_step(host)

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.APPLIED
    assert step.git.calls == [["-C", SPDK, "submodule", "update", "--init"]]
    assert step.chown.calls == []


def test_clone_present_is_skipped() -> None:
    host = FakeHost(dirs=[f"{SPDK}/.git", f"{SPDK}/dpdk/.git"])
    step = _clone_step(host)

    assert run_step(step, host).kind is OutcomeKind.SKIPPED
    assert step.git.calls == []


def test_clone_refuses_foreign_directory() -> None:
    host = FakeHost({f"{SPDK}/notes.txt": "mine"})
    step = _clone_step(host)

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.error_kind == "ExternalToolFailure"
    assert step.git.calls == []


def test_clone_network_failure_is_fatal() -> None:
    host = FakeHost()

    outcome = run_step(_clone_step(host, git=FakeTool("git", default=128)), host)

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.fatal


def _venv_step(host: FakeHost, *, has_elftools: bool = False) -> PythonEnvStep:
    state = {"elftools": has_elftools}

    def python(args, env):
        host.executables.add(f"{VENV}/bin/python")
        return 0

    def venv_python(args, env):
        if args[:2] == ["-c", "import elftools"]:
            return 0 if state["elftools"] else 1
        if args[-1] == "pyelftools":
            state["elftools"] = True
        return 0

    return PythonEnvStep(
        venv_dir=VENV,
        owner="builder",
        python=FakeTool("python3", handler=python),
        venv_python=FakeTool("venv-python", handler=venv_python),
        chown=FakeTool("chown"),
    )


def test_venv_created_with_pyelftools() -> None:
    host = FakeHost()
    step = _venv_step(host)

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.APPLIED
    assert step.python.calls == [["-m", "venv", VENV]]
    assert ["-m", "pip", "install", "pyelftools"] in step.venv_python.calls
    assert step.chown.calls == [["-R", "builder:builder", VENV]]


def test_venv_ready_is_skipped() -> None:
    host = FakeHost(executables=[f"{VENV}/bin/python"])
    step = _venv_step(host, has_elftools=True)

    assert run_step(step, host).kind is OutcomeKind.SKIPPED
    assert step.venv_python.calls == [["-c", "import elftools"]]


def test_existing_venv_missing_module_is_repaired() -> None:
    host = FakeHost(executables=[f"{VENV}/bin/python"])
    step = _venv_step(host)

    assert run_step(step, host).kind is OutcomeKind.APPLIED
    assert step.python.calls == []


def _build_step(host: FakeHost, **kwargs) -> BuildSpdkStep:
    def make(args, env):
        if args and args[0].startswith("-j"):
            host.executables.add(BINARIES[0])
        elif args[:1] == ["-C"]:
            host.executables.add(BINARIES[1])
        return 0

    kwargs.setdefault("configure", FakeTool("configure"))
    kwargs.setdefault("make", FakeTool("make", handler=make))
    return BuildSpdkStep(spdk_dir=SPDK, venv_dir=VENV, binaries=BINARIES, jobs=8, **kwargs)


def test_build_from_clean_tree() -> None:
    host = FakeHost()
    step = _build_step(host)

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.APPLIED
    assert step.configure.calls == [["--without-nvme-cuse"]]
    assert step.make.calls == [["-j8"], ["-C", "examples/nvme/hello_world"]]


def test_rebuild_cleans_previous_configuration() -> None:
    host = FakeHost({f"{SPDK}/mk/config.mk": "CONFIG_DEBUG=n\n"})
    step = _build_step(host)

    run_step(step, host)

    assert step.make.calls[0] == ["clean"]


def test_built_binaries_skip_build() -> None:
    host = FakeHost(executables=BINARIES)
    step = _build_step(host)

    assert run_step(step, host).kind is OutcomeKind.SKIPPED
    assert step.configure.calls == []


def test_build_missing_binary_after_make_fails() -> None:
    host = FakeHost()
    step = _build_step(host, make=FakeTool("make"))

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.fatal
    assert outcome.reason == "still unsatisfied after remediation"


def test_venv_env_prepends_bin() -> None:
    env = venv_env(VENV)
    assert env["VIRTUAL_ENV"] == VENV
    assert env["PATH"].startswith(f"{VENV}/bin:")


def _smoke_host(driver: str = "vfio-pci") -> FakeHost:
    host = FakeHost(
        {
            "/proc/mounts": "",
            f"/sys/bus/pci/devices/{BDF}/class": "0x010802\n",
            "/sys/kernel/mm/hugepages/hugepages-2048kB/nr_hugepages": "1024\n",
        }
    )
    host.links[f"/sys/bus/pci/devices/{BDF}/driver"] = f"../../../bus/pci/drivers/{driver}"
    return host


def _smoke_step(programs, setup_script=None) -> SmokeTestStep:
    return SmokeTestStep(
        spdk_dir=SPDK,
        binaries=BINARIES,
        selector=NvmeSelector(),
        target_driver="vfio-pci",
        page_size_kb=2048,
        programs=programs,
        setup_script=setup_script or FakeTool("setup.sh"),
    )


def test_smoke_tests_pass() -> None:
    host = _smoke_host()
    identify, hello = FakeTool("identify"), FakeTool("hello_world")
    step = _smoke_step([identify, hello])

    assert step.check(host) is StepState.SATISFIED
    assert run_step(step, host).kind is OutcomeKind.SKIPPED
    assert len(identify.calls) == 2
    assert step.setup_script.calls == []


def test_smoke_failure_reruns_setup_then_warns() -> None:
    host = _smoke_host()
    setup = FakeTool("setup.sh", default=(0, "NVMe devices\n"))
    step = _smoke_step([FakeTool("identify", default=1)], setup_script=setup)

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.FAILED
    assert not outcome.fatal
    assert setup.calls == [[], ["status"]]
    assert setup.envs[0] == {
        "NRHUGE": "1024",
        "HUGEPGSZ": "2048",
        "DRIVER_OVERRIDE": "vfio-pci",
        "PCI_ALLOWED": BDF,
    }


def test_smoke_tests_skipped_without_bound_device() -> None:
    host = _smoke_host(driver="nvme")
    identify = FakeTool("identify")
    step = _smoke_step([identify])

    outcome = run_step(step, host)

    assert outcome.kind is OutcomeKind.SKIPPED
    assert outcome.degraded
    assert "no NVMe device bound to vfio-pci" in outcome.reason
    assert identify.calls == []
