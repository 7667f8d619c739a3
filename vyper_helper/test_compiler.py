from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from .compiler import VyperCompiler, parse_combined_output, strip_gas_estimates
from .core_types import (
    CommandResult,
    CompilationError,
    CompilerProfile,
    InvalidSettingsError,
    OutputLimitExceededError,
    ResolvedGroup,
    SourceFile,
    VyperSettings,
)
from .utils import ProcessManager


@pytest.fixture
def mock_process_manager():
    """Mock ProcessManager instance."""
    return AsyncMock(spec=ProcessManager)


def test_strip_gas_estimates():
    abi = [
        {"type": "function", "name": "foo", "gas": 1234},
        {"type": "event", "name": "Transfer"},
    ]

    stripped = strip_gas_estimates(abi)

    assert stripped == [
        {"type": "function", "name": "foo"},
        {"type": "event", "name": "Transfer"},
    ]
    assert abi[0]["gas"] == 1234


def test_parse_combined_output(tmp_path):
    path = tmp_path / "contracts" / "Token.vy"
    payload = {
        "version": "0.3.10+commit.91361694",
        str(path): {
            "abi": [{"type": "function", "name": "foo", "gas": 99}],
            "bytecode": "0x60",
            "bytecode_runtime": "0x61",
            "method_identifiers": {"foo()": "0xc2985578"},
            "source_map": {"pc_pos_map": {}},
        },
    }

    (unit,) = parse_combined_output(payload, [path], root=tmp_path)

    assert unit.contract_name == "Token"
    assert unit.source_name == "contracts/Token.vy"
    assert unit.abi == [{"type": "function", "name": "foo"}]
    assert unit.deployed_bytecode == "0x61"
    assert unit.compiler_version == "0.3.10+commit.91361694"
    assert unit.metadata == {"source_map": {"pc_pos_map": {}}}
    assert unit.to_artifact()["deployedBytecode"] == "0x61"


def test_parse_combined_output_rejects_non_object_entries():
    with pytest.raises(ValueError):
        parse_combined_output({"a.vy": "oops"})


def test_build_command_order():
    compiler = VyperCompiler("vyper", "0.3.10")
    cmd = compiler.build_command(
        ["/p/A.vy", "/p/B.vy"], VyperSettings(evm_version="paris", optimize="gas")
    )

    assert cmd == [
        "vyper",
        "--evm-version",
        "paris",
        "--optimize",
        "gas",
        "-f",
        "combined_json",
        "/p/A.vy",
        "/p/B.vy",
    ]


@pytest.mark.asyncio
async def test_invalid_settings_fail_before_spawn(mock_process_manager):
    compiler = VyperCompiler("vyper", "0.3.9", process_manager=mock_process_manager)

    with pytest.raises(InvalidSettingsError):
        await compiler.compile_async(["/p/A.vy"], VyperSettings(optimize="gas"))

    mock_process_manager.run_command_async.assert_not_called()


@pytest.mark.asyncio
async def test_compile_empty_group_runs_nothing(mock_process_manager):
    compiler = VyperCompiler("vyper", "0.3.10", process_manager=mock_process_manager)

    assert await compiler.compile_async([]) == []
    mock_process_manager.run_command_async.assert_not_called()


@pytest.mark.asyncio
async def test_failure_message_carries_raw_diagnostics(mock_process_manager):
    stderr = "vyper.exceptions.StructureException: bad\n  contract \"A.vy\", line 2:0\n"
    mock_process_manager.run_command_async.return_value = CommandResult(
        success=False,
        stderr=stderr,
        return_code=1,
        command=["vyper", "-f", "combined_json", "/p/A.vy"],
    )
    compiler = VyperCompiler("vyper", "0.3.10", process_manager=mock_process_manager)

    with pytest.raises(CompilationError) as exc_info:
        await compiler.compile_async(["/p/A.vy"])

    error = exc_info.value
    assert str(error) == f"Command failed: vyper -f combined_json /p/A.vy\n{stderr}"
    assert error.stderr == stderr
    assert error.return_code == 1
    assert compiler.get_metrics()["total_compilations"] == 1
    assert compiler.get_metrics()["successful_compilations"] == 0


@pytest.mark.asyncio
async def test_truncated_output_is_a_distinct_error(mock_process_manager):
    mock_process_manager.run_command_async.return_value = CommandResult(
        success=False,
        stderr="Output exceeded the limit of 10 bytes",
        return_code=-1,
        command=["vyper"],
        truncated=True,
    )
    compiler = VyperCompiler(
        "vyper", "0.3.10", max_output_bytes=10, process_manager=mock_process_manager
    )

    with pytest.raises(OutputLimitExceededError) as exc_info:
        await compiler.compile_async(["/p/A.vy"])

    assert exc_info.value.error_code == "OUTPUT_LIMIT_EXCEEDED"
    assert mock_process_manager.run_command_async.call_args.kwargs["max_output_bytes"] == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("stdout", ["not json", "[1, 2]", '{"a.vy": 3}'])
async def test_malformed_output(mock_process_manager, stdout):
    mock_process_manager.run_command_async.return_value = CommandResult(
        success=True, stdout=stdout, command=["vyper"]
    )
    compiler = VyperCompiler("vyper", "0.3.10", process_manager=mock_process_manager)

    with pytest.raises(CompilationError) as exc_info:
        await compiler.compile_async(["/p/A.vy"])

    assert exc_info.value.error_code == "MALFORMED_OUTPUT"


@pytest.mark.asyncio
async def test_compile_group_with_fake_compiler(fake_vyper, project):
    vyper = fake_vyper("0.3.10")
    a = SourceFile.from_path(project("A.vy", "#pragma version ^0.3.10\n"))
    b = SourceFile.from_path(project("B.vy", "#pragma version ^0.3.10\n"))
    profile = CompilerProfile(
        version="0.3.10", path=str(vyper.path), settings=VyperSettings(optimize="gas")
    )
    compiler = VyperCompiler(str(vyper.path), "0.3.10")

    units = await compiler.compile_async(
        ResolvedGroup(profile=profile, sources=[a, b]), root=project.root
    )

    assert [u.contract_name for u in units] == ["A", "B"]
    assert [u.source_name for u in units] == ["contracts/A.vy", "contracts/B.vy"]
    assert all("gas" not in entry for u in units for entry in u.abi)
    assert vyper.invocations == [
        ["--optimize", "gas", "-f", "combined_json", str(a.path), str(b.path)]
    ]


@pytest.mark.asyncio
async def test_compile_error_from_fake_compiler(fake_vyper, project):
    vyper = fake_vyper("0.3.10")
    path = project("Broken.vy", "# @version 0.3.10\nsyntax error\n")
    compiler = VyperCompiler(str(vyper.path), "0.3.10")

    with pytest.raises(CompilationError) as exc_info:
        await compiler.compile_async([Path(path)])

    assert "vyper.exceptions.SyntaxException: invalid syntax\n  line 3:4\n" in str(
        exc_info.value
    )


def test_compile_sync(fake_vyper, project):
    vyper = fake_vyper("0.3.9")
    path = project("A.vy", "# @version 0.3.9\n")

    units = VyperCompiler(str(vyper.path), "0.3.9").compile([path])

    assert units[0].compiler_version == "0.3.9"
