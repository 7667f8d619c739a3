import json
import stat
import sys
from pathlib import Path

import pytest

# Stand-in for a vyper binary: logs its argv, answers --version and prints
# combined_json for its input files. Sources containing "syntax error" fail
# with a vyper-style diagnostic on stderr; "slow compile" records the pid and
# hangs.
_FAKE_VYPER_BODY = r'''
import json
import os
import sys
import time

args = sys.argv[1:]
with open(LOG, "a") as f:
    f.write(json.dumps(args) + "\n")

if args == ["--version"]:
    print(VERSION + "+commit.91361694")
    sys.exit(0)

files = args[args.index("combined_json") + 1:]
out = {"version": VERSION}
for path in files:
    with open(path) as f:
        source = f.read()
    if "syntax error" in source:
        sys.stderr.write("vyper.exceptions.SyntaxException: invalid syntax\n  line 3:4\n")
        sys.exit(1)
    if "slow compile" in source:
        with open(LOG + ".pid", "w") as f:
            f.write(str(os.getpid()))
        time.sleep(60)
    out[path] = {
        "abi": [{"type": "function", "name": "foo", "inputs": [], "outputs": [], "gas": 1234}],
        "bytecode": "0x6000",
        "bytecode_runtime": "0x6001",
        "method_identifiers": {"foo()": "0xc2985578"},
        "source_map": {},
    }
print(json.dumps(out))
'''


class FakeVyper:
    """A fake compiler binary and the log of its invocations."""

    def __init__(self, directory: Path, version: str):
        self.version = version
        self.path = directory / f"vyper-{version}"
        self.log = directory / f"vyper-{version}.log"

        header = (
            f"#!{sys.executable}\n"
            f"VERSION = {version!r}\n"
            f"LOG = {str(self.log)!r}\n"
        )
        self.path.write_text(header + _FAKE_VYPER_BODY)
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    @property
    def pid_file(self) -> Path:
        return self.log.with_name(self.log.name + ".pid")

    @property
    def invocations(self):
        if not self.log.exists():
            return []
        return [json.loads(line) for line in self.log.read_text().splitlines()]

    def compiled_files(self):
        """Files passed to each compile invocation."""
        return [
            args[args.index("combined_json") + 1:]
            for args in self.invocations
            if "combined_json" in args
        ]


@pytest.fixture
def fake_vyper(tmp_path):
    """Factory creating fake vyper binaries by version."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def factory(version: str) -> FakeVyper:
        return FakeVyper(bin_dir, version)

    return factory


@pytest.fixture
def project(tmp_path):
    """Project directory with a contracts/ folder and a writer helper."""
    root = tmp_path / "project"
    (root / "contracts").mkdir(parents=True)

    def write(name: str, content: str) -> Path:
        path = root / "contracts" / name
        path.write_text(content)
        return path

    write.root = root
    return write
