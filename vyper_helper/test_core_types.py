from pathlib import Path

import pytest
from pydantic import ValidationError

from .core_types import (
    BuildError,
    BuildResult,
    CacheEntry,
    CommandResult,
    CompilationError,
    CompilerProfile,
    SourceFile,
    VyperConfig,
    VyperSettings,
    parse_version,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("0.3.10", "0.3.10"),
        ("v0.3.7", "0.3.7"),
        ("0.3.10+commit.91361694", "0.3.10"),
        ("0.4.0rc1", "0.4.0rc1"),
        ("0.1.0-beta.15", "0.1.0b15"),
    ],
)
def test_parse_version(text, expected):
    assert str(parse_version(text)) == expected


def test_parse_version_orders_numerically():
    assert parse_version("0.3.10") > parse_version("0.3.9")
    assert parse_version("0.4.0rc1") < parse_version("0.4.0")


def test_parse_version_invalid():
    with pytest.raises(ValueError, match="Invalid Vyper version"):
        parse_version("latest")


def test_settings_alias_and_fingerprint():
    by_alias = VyperSettings.model_validate({"evmVersion": "paris", "optimize": "gas"})
    by_name = VyperSettings(evm_version="paris", optimize="gas")

    assert by_alias == by_name
    assert by_alias.fingerprint() == by_name.fingerprint()
    assert VyperSettings().fingerprint() != by_name.fingerprint()
    assert VyperSettings(optimize=True).fingerprint() != VyperSettings(optimize="true").fingerprint()


def test_settings_reject_unknown_keys():
    with pytest.raises(ValidationError):
        VyperSettings.model_validate({"optimise": True})


def test_settings_keep_optimize_type():
    assert VyperSettings(optimize=False).optimize is False
    with pytest.raises(ValidationError):
        VyperSettings(optimize=1)


def test_profile_key_ignores_version_spelling():
    assert CompilerProfile(version="0.3.10").key == CompilerProfile(version="v0.3.10").key
    assert (
        CompilerProfile(version="0.3.10").key
        != CompilerProfile(version="0.3.10", settings=VyperSettings(optimize="gas")).key
    )


def test_profile_invalid_version():
    with pytest.raises(ValidationError):
        CompilerProfile(version="latest")


def test_config_requires_a_compiler():
    with pytest.raises(ValidationError):
        VyperConfig(compilers=[])


def test_config_cache_file():
    config = VyperConfig(compilers=[CompilerProfile(version="0.3.10")], cache_dir=Path("build"))
    assert config.cache_file == Path("build") / "vyper-files-cache.json"


def test_source_file_from_path(tmp_path):
    path = tmp_path / "A.vy"
    path.write_bytes(b"# @version ^0.3.7\n")

    source = SourceFile.from_path(path)

    assert source.path == path.resolve()
    assert source.version_pragma == "^0.3.7"
    assert source.content_hash == SourceFile.hash_content(b"# @version ^0.3.7\n")


@pytest.mark.asyncio
async def test_source_file_from_path_async(tmp_path):
    path = tmp_path / "A.vy"
    path.write_bytes(b"x: uint256\n")

    source = await SourceFile.from_path_async(path)

    assert source.version_pragma is None
    assert source.text == "x: uint256\n"


def test_cache_entry_round_trip():
    entry = CacheEntry("c", "s", "0.3.10", source_name="contracts/A.vy")
    assert CacheEntry.from_dict(entry.to_dict()) == entry


def test_command_result_rejects_negative_time():
    with pytest.raises(ValueError):
        CommandResult(success=True, execution_time=-1)


def test_build_result_errors():
    result = BuildResult(success=True)
    result.raise_for_errors()

    result.add_error("boom")

    assert not result.success
    with pytest.raises(BuildError, match="boom"):
        result.raise_for_errors()


def test_compilation_error_context():
    error = CompilationError("failed", command=["vyper"], return_code=2, stderr="bad")

    assert error.error_code == "COMPILATION_FAILED"
    assert error.context["return_code"] == 2
    assert error.stderr == "bad"


def test_exception_message_with_braces_is_kept_verbatim():
    error = CompilationError('Command failed: vyper\n{"error": {"line": 3}}')
    assert str(error) == 'Command failed: vyper\n{"error": {"line": 3}}'
