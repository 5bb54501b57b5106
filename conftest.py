"""
Pytest configuration for metax test suite.

This configuration enables the --full flag to run integration tests and
provides a fake cascade toolchain (compiler, assembler, linker) built from
small Python scripts, so cascade runs can be exercised without nasm or ld.
"""

import json
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List

import pytest


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Run full test suite including integration tests (slow)",
    )


def pytest_configure(config):
    """Configure pytest based on command-line options."""
    if config.getoption("--full"):
        # Remove the default marker expression that excludes integration tests
        markexpr = config.getoption("-m", "")
        if markexpr == "not integration":
            # Clear the marker expression to run all tests
            config.option.markexpr = ""


# Compiler: copies the source to stdout behind a header naming the compiler.
# argv[1] is the name of the wrapper that was executed (seed.bin, a.meta.bin).
COMPILER_SCRIPT = '''
import sys
from pathlib import Path

name = Path(sys.argv[1]).name
source = Path(sys.argv[-1])
text = source.read_text()
if "COMPILE_FAIL" in text:
    sys.stderr.write(source.name + ": syntax error\\n")
    sys.exit(1)
sys.stdout.write("; compiled by " + name + "\\n")
sys.stdout.write(text)
'''

# Assembler: logs its arguments, writes the object as a tagged copy of the asm.
ASSEMBLER_SCRIPT = '''
import json
import sys
from pathlib import Path

args = sys.argv[1:]
with open(Path(__file__).with_suffix(".log"), "a") as log:
    log.write(json.dumps(args) + "\\n")
obj = Path(args[args.index("-o") + 1])
asm = Path(args[-1])
text = asm.read_text()
if "ASM_FAIL" in text:
    sys.stderr.write(asm.name + ":1: error: parser: instruction expected\\n")
    sys.exit(2)
obj.write_text("OBJ\\n" + text)
'''

# Linker: the linked "binary" is a compiler wrapper, so it can build the next stage.
LINKER_SCRIPT = '''
import sys
from pathlib import Path

args = sys.argv[1:]
out = Path(args[args.index("-o") + 1])
obj = Path(args[-1])
text = obj.read_text()
if "LINK_FAIL" in text:
    sys.stderr.write("ld: warning: cannot find entry symbol _start\\n")
    sys.exit(1)
compiler = Path(__file__).with_name("compiler.py")
out.write_text(
    "#!/bin/sh\\n"
    'exec "' + sys.executable + '" "' + str(compiler) + '" "$0" "$@"\\n'
)
'''


def _make_executable(path: Path) -> None:
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _write_wrapper(path: Path, script: Path, pass_name: bool = False) -> Path:
    name_arg = ' "$0"' if pass_name else ""
    path.write_text(
        "#!/bin/sh\n"
        f'exec "{sys.executable}" "{script}"{name_arg} "$@"\n'
    )
    _make_executable(path)
    return path


@dataclass
class FakeToolchain:
    """Paths of a fake cascade toolchain inside a temp directory."""

    root: Path
    compiler_script: Path
    assembler: Path
    linker: Path
    seed: Path
    assembler_log: Path

    def make_sources(self, **contents: str) -> List[Path]:
        """Write source files (name=content) and return their paths in order."""
        paths = []
        for name, content in contents.items():
            path = self.root / name.replace("_", ".")
            path.write_text(content)
            paths.append(path)
        return paths

    def assembler_calls(self) -> List[List[str]]:
        if not self.assembler_log.exists():
            return []
        return [json.loads(line) for line in self.assembler_log.read_text().splitlines()]


@pytest.fixture
def fake_toolchain(tmp_path):
    """Create a fake compiler/assembler/linker toolchain in tmp_path."""
    if sys.platform == "win32":
        pytest.skip("fake toolchain uses POSIX shell wrappers")

    tools = tmp_path / "tools"
    tools.mkdir()

    compiler_script = tools / "compiler.py"
    compiler_script.write_text(COMPILER_SCRIPT)
    assembler_script = tools / "assembler.py"
    assembler_script.write_text(ASSEMBLER_SCRIPT)
    linker_script = tools / "linker.py"
    linker_script.write_text(LINKER_SCRIPT)

    return FakeToolchain(
        root=tmp_path,
        compiler_script=compiler_script,
        assembler=_write_wrapper(tools / "fake-nasm", assembler_script),
        linker=_write_wrapper(tools / "fake-ld", linker_script),
        seed=_write_wrapper(tmp_path / "seed.bin", compiler_script, pass_name=True),
        assembler_log=tools / "assembler.log",
    )
