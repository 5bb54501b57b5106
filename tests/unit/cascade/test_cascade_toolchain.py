"""
End-to-end cascade runs against the fake toolchain from conftest.py.

Every tool is a real subprocess, so these tests cover argument passing,
stdout capture and artifact handling the way nasm and ld would see them.
"""

import os
import time

import pytest

from metax.cascade import (
    ArtifactManager,
    PipelineRunner,
    ProcessGateway,
    RunStatus,
    StageChain,
    TriggerController,
)

WAIT = 10


@pytest.fixture
def build(fake_toolchain):
    """Return a factory building a runner for the given sources."""

    def _build(*sources, include_path=None):
        chain = StageChain.from_paths([fake_toolchain.seed, *sources])
        gateway = ProcessGateway(timeout=WAIT)
        artifacts = ArtifactManager(
            gateway,
            assembler=str(fake_toolchain.assembler),
            linker=str(fake_toolchain.linker),
            include_path=include_path,
        )
        return chain, PipelineRunner(chain, artifacts, gateway)

    return _build


def wait_for(predicate, timeout=WAIT):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestCascadeRun:
    def test_two_stage_success(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="mov eax, 1\n", b_meta="mov eax, 2\n")
        chain, runner = build(a_meta, b_meta)

        result = runner.execute()

        assert result.success
        root = fake_toolchain.root
        for name in ("a.meta.asm", "a.meta.bin", "b.meta.asm", "b.meta.bin"):
            assert (root / name).exists(), name
        assert not (root / "a.meta.o").exists()
        assert not (root / "b.meta.o").exists()
        assert chain.compiler_for(2) == root / "a.meta.bin"

    def test_each_stage_uses_previous_compiler(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="first\n", b_meta="second\n")
        _, runner = build(a_meta, b_meta)

        runner.execute()

        root = fake_toolchain.root
        assert (root / "a.meta.asm").read_text() == "; compiled by seed.bin\nfirst\n"
        assert (root / "b.meta.asm").read_text() == "; compiled by a.meta.bin\nsecond\n"

    def test_binaries_are_executable(self, fake_toolchain, build):
        (a_meta,) = fake_toolchain.make_sources(a_meta="x\n")
        _, runner = build(a_meta)

        runner.execute()

        assert os.access(fake_toolchain.root / "a.meta.bin", os.X_OK)

    def test_assemble_failure_stops_cascade(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="ASM_FAIL\n", b_meta="ok\n")
        chain, runner = build(a_meta, b_meta)

        result = runner.execute()

        root = fake_toolchain.root
        assert result.status == RunStatus.FAILED
        assert result.failure_stage == 1
        assert result.error_kind == "AssembleError"
        assert "instruction expected" in result.diagnostic
        assert (root / "a.meta.asm").exists()
        assert not (root / "a.meta.o").exists()
        assert not (root / "a.meta.bin").exists()
        assert not (root / "b.meta.asm").exists()
        assert chain.compiler_for(2) is None

    def test_compile_failure_in_second_stage(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="ok\n", b_meta="COMPILE_FAIL\n")
        _, runner = build(a_meta, b_meta)

        result = runner.execute()

        root = fake_toolchain.root
        assert result.failure_stage == 2
        assert result.error_kind == "CompileError"
        assert "syntax error" in result.diagnostic
        assert (root / "a.meta.bin").exists()
        assert not (root / "b.meta.asm").exists()

    def test_link_failure_removes_object(self, fake_toolchain, build):
        (a_meta,) = fake_toolchain.make_sources(a_meta="LINK_FAIL\n")
        _, runner = build(a_meta)

        result = runner.execute()

        root = fake_toolchain.root
        assert result.error_kind == "LinkError"
        assert "_start" in result.diagnostic
        assert not (root / "a.meta.o").exists()
        assert not (root / "a.meta.bin").exists()

    def test_rerun_is_byte_identical(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="one\n", b_meta="two\n")
        _, runner = build(a_meta, b_meta)
        root = fake_toolchain.root
        names = ("a.meta.asm", "a.meta.bin", "b.meta.asm", "b.meta.bin")

        runner.execute()
        first = {name: (root / name).read_bytes() for name in names}
        runner.execute()
        second = {name: (root / name).read_bytes() for name in names}

        assert first == second

    def test_fixed_source_recovers(self, fake_toolchain, build):
        (a_meta,) = fake_toolchain.make_sources(a_meta="ASM_FAIL\n")
        _, runner = build(a_meta)

        assert not runner.execute().success
        a_meta.write_text("fixed\n")

        assert runner.execute().success


class TestAssemblerArguments:
    def test_without_include(self, fake_toolchain, build):
        (a_meta,) = fake_toolchain.make_sources(a_meta="x\n")
        _, runner = build(a_meta)

        runner.execute()

        root = fake_toolchain.root
        assert fake_toolchain.assembler_calls() == [
            [
                "-F", "dwarf", "-g", "-f", "elf32",
                "-o", str(root / "a.meta.o"), str(root / "a.meta.asm"),
            ]
        ]

    def test_include_passed_to_every_stage(self, fake_toolchain, build, tmp_path):
        include = tmp_path / "lib"
        include.mkdir()
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="x\n", b_meta="y\n")
        _, runner = build(a_meta, b_meta, include_path=include)

        runner.execute()

        calls = fake_toolchain.assembler_calls()
        assert len(calls) == 2
        for call in calls:
            assert call[call.index("-i") + 1] == str(include)


class TestWatchedCascade:
    """Trigger controller driving real runs."""

    def test_edit_triggers_rebuild(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="v1\n", b_meta="b\n")
        chain, runner = build(a_meta, b_meta)
        controller = TriggerController(chain, runner, poll_interval=0.05)
        controller.start()
        try:
            a_meta.write_text("version two\n")
            st = os.stat(a_meta)
            os.utime(a_meta, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

            assert wait_for(lambda: controller.runs_started >= 1)
            assert controller.wait_until_idle(WAIT)
        finally:
            controller.stop(timeout=WAIT)

        assert controller.last_result.success
        asm = (fake_toolchain.root / "a.meta.asm").read_text()
        assert "version two" in asm

    def test_resume_after_restart_uses_binaries_on_disk(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="a\n", b_meta="b v1\n")
        _, first_runner = build(a_meta, b_meta)
        assert first_runner.execute().success
        a_bin = fake_toolchain.root / "a.meta.bin"
        a_bin_before = a_bin.read_bytes()
        assembled_before = len(fake_toolchain.assembler_calls())

        # New session: fresh chain, resume mode, only b.meta edited
        chain, runner = build(a_meta, b_meta)
        controller = TriggerController(chain, runner, poll_interval=60, resume_from_changed=True)
        controller.start()
        try:
            b_meta.write_text("b v2\n")
            assert controller.notify_change(b_meta) is True
            assert controller.wait_until_idle(WAIT)
        finally:
            controller.stop(timeout=WAIT)

        result = controller.last_result
        assert result.success, result.message
        assert [outcome.index for outcome in result.stages] == [2]
        assert len(fake_toolchain.assembler_calls()) == assembled_before + 1
        assert a_bin.read_bytes() == a_bin_before
        asm = (fake_toolchain.root / "b.meta.asm").read_text()
        assert asm == "; compiled by a.meta.bin\nb v2\n"

    def test_changes_during_run_give_one_rerun(self, fake_toolchain, build):
        a_meta, b_meta = fake_toolchain.make_sources(a_meta="a\n", b_meta="b\n")
        chain, runner = build(a_meta, b_meta)
        controller = TriggerController(chain, runner, poll_interval=60)
        controller.start()
        try:
            assert controller.notify_change(a_meta) is True
            for _ in range(5):
                controller.notify_change(b_meta)
            assert controller.wait_until_idle(WAIT)
        finally:
            controller.stop(timeout=WAIT)

        assert controller.runs_started == 2
        assert controller.events_received == 6
        assert controller.last_result.success
