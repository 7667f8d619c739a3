#!/usr/bin/env python3
"""
Version resolution for Vyper sources.

Reads the version pragma of a source file, interprets it as a semantic
version range and selects the configured compiler profile that satisfies it.
The same scan rejects sources carrying Brownie test directives.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger
from packaging.version import Version

from .core_types import (
    DEFAULT_MIN_SUPPORTED_VERSION,
    AmbiguityPolicy,
    AmbiguousCompilerVersionError,
    CompilerProfile,
    ConfigurationError,
    InvalidVersionPragmaError,
    NoMatchingCompilerVersionError,
    ResolvedGroup,
    SourceFile,
    TestDirectiveError,
    UnsupportedCompilerVersionError,
    parse_version,
)

# "# @version ^0.3.0" (legacy) and "#pragma version ^0.3.10"
VERSION_PRAGMA_PATTERN = re.compile(
    rb"^[ \t]*#[ \t]*(?:@version|pragma[ \t]+version)[ \t]+(?P<constraint>[^\r\n#]+)",
    re.MULTILINE,
)

# Brownie test directives, e.g. '#@ if mode == "test":' and '#@ ignore'
TEST_DIRECTIVE_PATTERN = re.compile(rb"^[ \t]*#[ \t]*@[ \t]*(?:if|ignore)\b", re.MULTILINE)

_OPERATOR_SPACING = re.compile(r"(\^|~>?|>=|<=|>|<|==?)\s+")
_HYPHEN_RANGE = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_COMPARATOR = re.compile(r"^(?P<op>\^|~>?|>=|<=|>|<|==?)?(?P<version>\S+)$")
_PARTIAL = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?P<pre>[-.]?[A-Za-z][0-9A-Za-z.-]*)?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)

_WILDCARDS = {"x", "X", "*", None}


def extract_version_pragma(content: Union[bytes, str]) -> Optional[str]:
    """Return the version constraint declared in a source, if any."""
    if isinstance(content, str):
        content = content.encode("utf-8")

    match = VERSION_PRAGMA_PATTERN.search(content)
    if match is None:
        return None
    return match.group("constraint").decode("utf-8", errors="replace").strip() or None


def has_test_directive(content: Union[bytes, str]) -> bool:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return TEST_DIRECTIVE_PATTERN.search(content) is not None


@dataclass(frozen=True, slots=True)
class Comparator:
    """A single bound such as >=0.3.0."""

    op: str
    version: Version
    text: str

    def matches(self, version: Version) -> bool:
        if self.op == "<":
            return version < self.version
        if self.op == "<=":
            return version <= self.version
        if self.op == ">":
            return version > self.version
        if self.op == ">=":
            return version >= self.version
        return version == self.version

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


@dataclass(frozen=True, slots=True)
class _Partial:
    major: Optional[int]
    minor: Optional[int]
    patch: Optional[int]
    pre: str
    text: str

    @classmethod
    def parse(cls, text: str) -> _Partial:
        match = _PARTIAL.match(text)
        if match is None:
            raise ValueError(f"invalid version '{text}'")

        parts = []
        seen_wildcard = False
        for name in ("major", "minor", "patch"):
            value = match.group(name)
            if value in _WILDCARDS:
                seen_wildcard = True
                parts.append(None)
            elif seen_wildcard:
                raise ValueError(f"invalid version '{text}'")
            else:
                parts.append(int(value))

        pre = match.group("pre") or ""
        if pre and parts[2] is None:
            raise ValueError(f"pre-release requires a full version in '{text}'")

        return cls(parts[0], parts[1], parts[2], pre, text)

    def version(self, major=None, minor=None, patch=None, pre: bool = True) -> Version:
        """Build a version, filling wildcards with zero unless overridden."""
        major = self.major if major is None else major
        minor = self.minor if minor is None else minor
        patch = self.patch if patch is None else patch
        suffix = self.pre if pre else ""
        return parse_version(f"{major or 0}.{minor or 0}.{patch or 0}{suffix}")


class VersionRange:
    """
    A semantic version range in npm syntax, as used in Vyper pragmas.

    Supports exact versions, comparison operators, caret and tilde ranges,
    x-ranges, hyphen ranges, conjunction with spaces and disjunction with
    "||". A pre-release version only satisfies a comparator set that names a
    pre-release of the same major.minor.patch.
    """

    def __init__(self, text: str, comparator_sets: List[List[Comparator]]) -> None:
        self.text = text
        self.comparator_sets = comparator_sets

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        sets = []
        for alternative in text.split("||"):
            sets.append(cls._parse_set(alternative.strip()))
        return cls(text.strip(), sets)

    @classmethod
    def _parse_set(cls, text: str) -> List[Comparator]:
        if text in ("", "*", "x", "X"):
            return []

        hyphen = _HYPHEN_RANGE.match(text)
        if hyphen:
            return cls._desugar(">=", _Partial.parse(hyphen["low"])) + cls._desugar(
                "<=", _Partial.parse(hyphen["high"])
            )

        comparators: List[Comparator] = []
        for token in _OPERATOR_SPACING.sub(r"\1", text).split():
            match = _COMPARATOR.match(token)
            if match is None:
                raise ValueError(f"invalid comparator '{token}'")
            op = match.group("op") or "="
            comparators.extend(cls._desugar(op, _Partial.parse(match.group("version"))))
        return comparators

    @staticmethod
    def _desugar(op: str, p: _Partial) -> List[Comparator]:
        text = p.text

        def bound(bound_op: str, version: Version) -> Comparator:
            return Comparator(bound_op, version, text)

        if op in ("=", "=="):
            if p.major is None:
                return []
            if p.minor is None:
                return [bound(">=", p.version()), bound("<", p.version(major=p.major + 1, minor=0))]
            if p.patch is None:
                return [bound(">=", p.version()), bound("<", p.version(minor=p.minor + 1, patch=0))]
            return [bound("==", p.version())]

        if op == "^":
            if p.major is None:
                return []
            if p.major > 0 or p.minor is None:
                upper = p.version(major=p.major + 1, minor=0, patch=0, pre=False)
            elif p.minor > 0 or p.patch is None:
                upper = p.version(minor=p.minor + 1, patch=0, pre=False)
            else:
                upper = p.version(patch=p.patch + 1, pre=False)
            return [bound(">=", p.version()), bound("<", upper)]

        if op in ("~", "~>"):
            if p.major is None:
                return []
            if p.minor is None:
                upper = p.version(major=p.major + 1, minor=0, patch=0, pre=False)
            else:
                upper = p.version(minor=p.minor + 1, patch=0, pre=False)
            return [bound(">=", p.version()), bound("<", upper)]

        if p.major is None:
            if op == ">=":
                return []
            raise ValueError(f"cannot compare against a wildcard in '{op}{text}'")

        # Partial versions compare against the whole line they name
        if p.minor is None or p.patch is None:
            if p.minor is None:
                next_line = p.version(major=p.major + 1, minor=0, patch=0)
            else:
                next_line = p.version(minor=p.minor + 1, patch=0)
            if op == ">":
                return [bound(">=", next_line)]
            if op == "<=":
                return [bound("<", next_line)]
            return [bound(op, p.version())]

        return [bound(op, p.version())]

    def lower_bounds(self) -> List[Comparator]:
        """Comparators that bound the range from below."""
        return [
            comparator
            for comparator_set in self.comparator_sets
            for comparator in comparator_set
            if comparator.op in (">", ">=", "==")
        ]

    def contains(self, version: Union[str, Version]) -> bool:
        parsed = parse_version(version)
        return any(
            self._set_contains(comparator_set, parsed)
            for comparator_set in self.comparator_sets
        )

    @staticmethod
    def _set_contains(comparators: Sequence[Comparator], version: Version) -> bool:
        if not all(comparator.matches(version) for comparator in comparators):
            return False
        if version.is_prerelease:
            return any(
                comparator.version.is_prerelease
                and comparator.version.release == version.release
                for comparator in comparators
            )
        return True

    def max_satisfying(self, versions: Iterable[Union[str, Version]]) -> Optional[Version]:
        matching = [parse_version(v) for v in versions if self.contains(v)]
        return max(matching) if matching else None

    def __str__(self) -> str:
        return " || ".join(
            " ".join(str(c) for c in comparator_set) or "*"
            for comparator_set in self.comparator_sets
        )

    def __repr__(self) -> str:
        return f"VersionRange({self.text!r})"


class VersionResolver:
    """
    Selects the configured compiler profile for each source file.

    Selection is deterministic: with a pragma, the highest configured
    version satisfying it wins (first configured among equal versions);
    without one, the ambiguity policy decides.
    """

    def __init__(
        self,
        ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.ERROR,
        min_supported_version: str = DEFAULT_MIN_SUPPORTED_VERSION,
    ) -> None:
        self.ambiguity_policy = AmbiguityPolicy(ambiguity_policy)
        self.min_supported_version = parse_version(min_supported_version)

    def validate_source(self, source: SourceFile) -> None:
        """Fail if the source carries a test directive."""
        if has_test_directive(source.content):
            raise TestDirectiveError(source.path)

    def check_supported(self, profiles: Sequence[CompilerProfile]) -> None:
        for profile in profiles:
            if profile.parsed_version < self.min_supported_version:
                raise UnsupportedCompilerVersionError(
                    profile.version, compiler_path=profile.path
                )

    def resolve(
        self, source: SourceFile, profiles: Sequence[CompilerProfile]
    ) -> CompilerProfile:
        """
        Return the profile that compiles the given source.

        Raises:
            TestDirectiveError: If the source carries a test directive
            UnsupportedCompilerVersionError: If a profile is below the supported
                line, or no profile satisfies a pragma naming a version below it
            InvalidVersionPragmaError: If the pragma cannot be parsed
            NoMatchingCompilerVersionError: If no profile satisfies the pragma
            AmbiguousCompilerVersionError: If there is no pragma, several
                profiles and the policy is "error"
        """
        if not profiles:
            raise ConfigurationError(
                "No Vyper compilers are configured", error_code="NO_COMPILERS_CONFIGURED"
            )

        self.validate_source(source)
        self.check_supported(profiles)

        if source.version_pragma is None:
            return self._resolve_without_pragma(source, profiles)

        try:
            version_range = VersionRange.parse(source.version_pragma)
        except ValueError as e:
            raise InvalidVersionPragmaError(source.path, source.version_pragma, str(e)) from e

        matching = [p for p in profiles if version_range.contains(p.parsed_version)]
        if not matching:
            # Only an unsatisfiable range is blamed on an unsupported declared version
            for comparator in version_range.lower_bounds():
                if comparator.version < self.min_supported_version:
                    raise UnsupportedCompilerVersionError(
                        comparator.text, source_path=str(source.path)
                    )
            raise NoMatchingCompilerVersionError(
                source.path,
                source.version_pragma,
                configured_versions=[p.version for p in profiles],
            )

        selected = max(matching, key=lambda p: p.parsed_version)
        logger.debug(
            f"Resolved {source.path.name} ({source.version_pragma}) -> {selected.version}"
        )
        return selected

    def _resolve_without_pragma(
        self, source: SourceFile, profiles: Sequence[CompilerProfile]
    ) -> CompilerProfile:
        if len(profiles) == 1:
            return profiles[0]

        if self.ambiguity_policy == AmbiguityPolicy.FIRST:
            selected = profiles[0]
        elif self.ambiguity_policy == AmbiguityPolicy.LATEST:
            selected = max(profiles, key=lambda p: p.parsed_version)
        else:
            raise AmbiguousCompilerVersionError(source.path, [p.version for p in profiles])

        logger.debug(
            f"No version pragma in {source.path.name}, "
            f"using {selected.version} ({self.ambiguity_policy.value} policy)"
        )
        return selected

    def resolve_all(
        self, sources: Iterable[SourceFile], profiles: Sequence[CompilerProfile]
    ) -> List[ResolvedGroup]:
        """Resolve every source and group them by profile, in first-seen order."""
        groups: Dict[Tuple[str, str], ResolvedGroup] = {}
        for source in sources:
            profile = self.resolve(source, profiles)
            group = groups.setdefault(profile.key, ResolvedGroup(profile=profile))
            group.sources.append(source)
        return list(groups.values())
