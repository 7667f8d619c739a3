from pathlib import Path

import pytest

from .core_types import (
    AmbiguityPolicy,
    AmbiguousCompilerVersionError,
    CompilerProfile,
    InvalidVersionPragmaError,
    NoMatchingCompilerVersionError,
    SourceFile,
    TestDirectiveError,
    UnsupportedCompilerVersionError,
    VyperSettings,
)
from .version_resolver import (
    VersionRange,
    VersionResolver,
    extract_version_pragma,
    has_test_directive,
)


def source(content: str, name: str = "Token.vy") -> SourceFile:
    return SourceFile.from_bytes(Path("/project/contracts") / name, content.encode())


@pytest.fixture
def profiles():
    return [
        CompilerProfile(version="0.3.7", path="vyper-0.3.7"),
        CompilerProfile(version="0.3.10", path="vyper-0.3.10"),
        CompilerProfile(version="0.3.9", path="vyper-0.3.9"),
    ]


@pytest.fixture
def resolver():
    return VersionResolver()


# --- Pragma extraction ---


@pytest.mark.parametrize(
    "content,expected",
    [
        ("# @version ^0.3.0\n", "^0.3.0"),
        ("#@version 0.3.7", "0.3.7"),
        ("#pragma version >=0.3.9 <0.4.0\n", ">=0.3.9 <0.4.0"),
        ('"""doc"""\n\n# @version ~0.3.7  # trailing\n', "~0.3.7"),
        ("x: uint256\n", None),
    ],
)
def test_extract_version_pragma(content, expected):
    assert extract_version_pragma(content) == expected


def test_has_test_directive():
    assert has_test_directive('#@ if mode == "test":\nx: uint256\n')
    assert has_test_directive("  # @ ignore\n")
    assert not has_test_directive("# @version 0.3.7\n# @dev docs\n")


# --- Ranges ---


@pytest.mark.parametrize(
    "pragma,version,expected",
    [
        ("0.3.7", "0.3.7", True),
        ("0.3.7", "0.3.8", False),
        ("^0.3.0", "0.3.10", True),
        ("^0.3.0", "0.4.0", False),
        ("^0.0.3", "0.0.4", False),
        ("~0.3.7", "0.3.10", True),
        ("~0.3", "0.4.0", False),
        (">=0.3.9 <0.4.0", "0.3.10", True),
        (">= 0.3.9", "0.3.9", True),
        ("0.3.x", "0.3.10", True),
        ("0.3", "0.4.0", False),
        (">0.3", "0.3.10", False),
        ("<=0.3", "0.3.10", True),
        ("0.3.7 - 0.3.9", "0.3.9", True),
        ("0.3.7 - 0.3.9", "0.3.10", False),
        ("0.2.16 || ^0.3.9", "0.3.10", True),
        ("0.2.16 || ^0.3.9", "0.3.7", False),
        ("*", "0.3.7", True),
    ],
)
def test_version_range_contains(pragma, version, expected):
    assert VersionRange.parse(pragma).contains(version) is expected


def test_prerelease_requires_same_release_in_range():
    assert not VersionRange.parse("^0.3.0").contains("0.4.0rc1")
    assert not VersionRange.parse(">=0.3.0").contains("0.4.0b1")
    assert VersionRange.parse(">=0.4.0rc1").contains("0.4.0rc2")
    assert VersionRange.parse(">=0.4.0rc1").contains("0.4.0")


def test_max_satisfying():
    version_range = VersionRange.parse("^0.3.7")
    assert str(version_range.max_satisfying(["0.3.7", "0.3.10", "0.4.0"])) == "0.3.10"
    assert version_range.max_satisfying(["0.2.16"]) is None


@pytest.mark.parametrize("pragma", ["abc", ">=", "0.x.3", "^0.3.0 <", "1.2.3.4.5x!"])
def test_invalid_ranges(pragma):
    with pytest.raises(ValueError):
        VersionRange.parse(pragma)


# --- Resolution ---


def test_resolve_picks_highest_satisfying(resolver, profiles):
    selected = resolver.resolve(source("# @version ^0.3.7\n"), profiles)
    assert selected.version == "0.3.10"


def test_resolve_exact(resolver, profiles):
    selected = resolver.resolve(source("# @version 0.3.9\n"), profiles)
    assert selected.path == "vyper-0.3.9"


def test_resolve_equal_versions_first_configured_wins(resolver):
    profiles = [
        CompilerProfile(version="0.3.10", path="a"),
        CompilerProfile(version="v0.3.10", path="b"),
    ]
    assert resolver.resolve(source("# @version 0.3.10\n"), profiles).path == "a"


def test_resolve_no_match(resolver, profiles):
    with pytest.raises(NoMatchingCompilerVersionError) as exc_info:
        resolver.resolve(source("# @version ^0.4.0\n"), profiles)

    assert "doesn't match any of the configured compilers in your config" in str(
        exc_info.value
    )
    assert exc_info.value.version_pragma == "^0.4.0"


def test_resolve_unsupported_pragma(resolver, profiles):
    with pytest.raises(UnsupportedCompilerVersionError) as exc_info:
        resolver.resolve(source("# @version 0.1.0-beta.15\n"), profiles)

    assert str(exc_info.value) == "Unsupported vyper version: 0.1.0-beta.15"


@pytest.mark.parametrize("pragma", [">=0.1.0", "0.1.0b17 || ^0.3.0"])
def test_resolve_satisfiable_range_reaching_below_supported_line(resolver, pragma):
    profiles = [CompilerProfile(version="0.3.10")]

    assert resolver.resolve(source(f"# @version {pragma}\n"), profiles).version == "0.3.10"


def test_resolve_unsupported_configured_compiler(resolver):
    profiles = [CompilerProfile(version="0.1.0b17")]
    with pytest.raises(UnsupportedCompilerVersionError, match="0.1.0b17"):
        resolver.resolve(source("# @version 0.3.7\n"), profiles)


def test_resolve_invalid_pragma(resolver, profiles):
    with pytest.raises(InvalidVersionPragmaError):
        resolver.resolve(source("# @version banana\n"), profiles)


def test_resolve_test_directive_named_by_path(resolver, profiles):
    with pytest.raises(TestDirectiveError) as exc_info:
        resolver.resolve(source('# @version 0.3.7\n#@ if mode == "test":\n'), profiles)

    assert "/project/contracts/Token.vy" in str(exc_info.value)
    assert "test directive" in str(exc_info.value)


def test_resolve_without_pragma_single_profile(resolver):
    profile = CompilerProfile(version="0.3.7")
    assert resolver.resolve(source("x: uint256\n"), [profile]) is profile


def test_resolve_without_pragma_ambiguous(resolver, profiles):
    with pytest.raises(AmbiguousCompilerVersionError):
        resolver.resolve(source("x: uint256\n"), profiles)


@pytest.mark.parametrize(
    "policy,expected", [(AmbiguityPolicy.LATEST, "0.3.10"), (AmbiguityPolicy.FIRST, "0.3.7")]
)
def test_resolve_without_pragma_policies(profiles, policy, expected):
    resolver = VersionResolver(ambiguity_policy=policy)
    assert resolver.resolve(source("x: uint256\n"), profiles).version == expected


def test_resolve_all_groups_by_version_and_settings(resolver):
    plain = CompilerProfile(version="0.3.10", path="vyper")
    tuned = CompilerProfile(
        version="0.3.10", path="vyper", settings=VyperSettings(optimize="codesize")
    )
    old = CompilerProfile(version="0.3.7", path="vyper-old")
    sources = [
        source("# @version 0.3.10\n", "A.vy"),
        source("# @version 0.3.7\n", "B.vy"),
        source("# @version ^0.3.10\n", "C.vy"),
    ]

    groups = resolver.resolve_all(sources, [plain, tuned, old])

    assert [g.profile.version for g in groups] == ["0.3.10", "0.3.7"]
    assert [p.name for p in groups[0].paths] == ["A.vy", "C.vy"]
    assert groups[0].profile is plain
    assert len(groups[1]) == 1
