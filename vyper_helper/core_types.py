#!/usr/bin/env python3
"""
Core types and data models for the Vyper helper module.

This module provides the shared data model (source files, compiler profiles,
settings, cache entries, compiled units) and the exception hierarchy used by
the resolver, settings builder, cache, invoker and build manager.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, TypeAlias, Union

import aiofiles
from loguru import logger
from packaging.version import InvalidVersion, Version
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    field_validator,
)

PathLike: TypeAlias = Union[str, Path]
OptimizeValue: TypeAlias = Union[bool, str]

DEFAULT_MAX_OUTPUT_BYTES = 500 * 1024 * 1024
DEFAULT_MIN_SUPPORTED_VERSION = "0.2.0"
DEFAULT_CACHE_FILENAME = "vyper-files-cache.json"


def parse_version(version: Union[str, Version]) -> Version:
    """
    Parse a Vyper version string into a comparable semantic version.

    Accepts the forms printed by the toolchain and used in pragmas, e.g.
    "0.3.10", "v0.3.7", "0.4.0rc1", "0.1.0-beta.15" and
    "0.3.10+commit.91361694". Build metadata after "+" is ignored.

    Raises:
        ValueError: If the string is not a valid version
    """
    if isinstance(version, Version):
        return version

    text = str(version).strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    text = text.split("+", 1)[0]

    try:
        return Version(text)
    except InvalidVersion:
        raise ValueError(f"Invalid Vyper version: {version!r}") from None


class AmbiguityPolicy(StrEnum):
    """How to pick a compiler for a file without a version pragma."""

    ERROR = "error"  # Refuse to guess when more than one compiler is configured
    LATEST = "latest"  # Highest configured version, first configured among ties
    FIRST = "first"  # First configured compiler


class VyperSettings(BaseModel):
    """Abstract compiler settings, translated to flags per compiler version."""

    model_config = ConfigDict(
        extra="forbid", frozen=True, populate_by_name=True, str_strip_whitespace=True
    )

    evm_version: Optional[StrictStr] = Field(
        default=None, alias="evmVersion", description="Target EVM version"
    )
    optimize: Optional[Union[StrictBool, StrictStr]] = Field(
        default=None,
        description="Optimizer switch (bool) or named optimization mode (str)",
    )

    def normalized(self) -> Dict[str, Any]:
        """Return the set fields only, so unset and missing hash alike."""
        return {
            key: value
            for key, value in sorted(self.model_dump().items())
            if value is not None
        }

    def fingerprint(self) -> str:
        """Stable hash of the normalized settings."""
        canonical = json.dumps(self.normalized(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CompilerProfile(BaseModel):
    """One configured compiler installation and the settings to use with it."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    version: str = Field(description="Compiler version, e.g. 0.3.10")
    path: str = Field(default="vyper", description="Path or name of the compiler binary")
    settings: VyperSettings = Field(default_factory=VyperSettings)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        parse_version(v)
        return v

    @property
    def parsed_version(self) -> Version:
        return parse_version(self.version)

    @property
    def settings_fingerprint(self) -> str:
        return self.settings.fingerprint()

    @property
    def key(self) -> Tuple[str, str]:
        """Grouping key: files sharing it are compiled by one invocation."""
        return (str(self.parsed_version), self.settings_fingerprint)

    def __str__(self) -> str:
        return f"vyper {self.version} ({self.path})"


class VyperConfig(BaseModel):
    """Configuration for a build: the compilers and how to use them."""

    model_config = ConfigDict(
        extra="forbid", validate_assignment=True, use_enum_values=False
    )

    compilers: List[CompilerProfile] = Field(
        min_length=1, description="Configured compiler profiles, in priority order"
    )
    ambiguity_policy: AmbiguityPolicy = Field(
        default=AmbiguityPolicy.ERROR,
        description="Compiler choice for files without a version pragma",
    )
    min_supported_version: str = Field(
        default=DEFAULT_MIN_SUPPORTED_VERSION,
        description="Lowest compiler version this tool can drive",
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES,
        gt=0,
        description="Ceiling for the output of a single compiler invocation",
    )
    timeout: Optional[float] = Field(
        default=None, gt=0, description="Timeout per compiler invocation in seconds"
    )
    cache_dir: Path = Field(default=Path("cache"), description="Cache directory")
    cache_filename: str = Field(default=DEFAULT_CACHE_FILENAME)

    @field_validator("min_supported_version")
    @classmethod
    def validate_min_supported_version(cls, v: str) -> str:
        parse_version(v)
        return v

    @property
    def cache_file(self) -> Path:
        return Path(self.cache_dir) / self.cache_filename


@dataclass(frozen=True, slots=True)
class SourceFile:
    """
    A source file as read for one build pass.

    Identity is the absolute path; the content and its hash never change
    after construction.
    """

    path: Path
    content: bytes = field(repr=False)
    content_hash: str
    version_pragma: Optional[str] = None

    @staticmethod
    def hash_content(content: bytes) -> str:
        return hashlib.sha256(content).hexdigest()

    @classmethod
    def from_bytes(cls, path: PathLike, content: bytes) -> SourceFile:
        # version_resolver imports this module
        from .version_resolver import extract_version_pragma

        return cls(
            path=Path(path).resolve(),
            content=content,
            content_hash=cls.hash_content(content),
            version_pragma=extract_version_pragma(content),
        )

    @classmethod
    def from_path(cls, path: PathLike) -> SourceFile:
        source_path = Path(path).resolve()
        return cls.from_bytes(source_path, source_path.read_bytes())

    @classmethod
    async def from_path_async(cls, path: PathLike) -> SourceFile:
        source_path = Path(path).resolve()
        async with aiofiles.open(source_path, "rb") as f:
            content = await f.read()
        return cls.from_bytes(source_path, content)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


@dataclass
class ResolvedGroup:
    """A compiler profile and the files compiled together with it."""

    profile: CompilerProfile
    sources: List[SourceFile] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return self.profile.key

    @property
    def paths(self) -> List[Path]:
        return [source.path for source in self.sources]

    def __len__(self) -> int:
        return len(self.sources)


@dataclass
class CacheEntry:
    """What was compiled for a source path at its last successful build."""

    content_hash: str
    settings_hash: str
    compiler_version: str
    source_name: Optional[str] = None
    last_modified: float = field(default_factory=time.time)
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_hash": self.content_hash,
            "settings_hash": self.settings_hash,
            "compiler_version": self.compiler_version,
            "source_name": self.source_name,
            "last_modified": self.last_modified,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CacheEntry:
        return cls(
            content_hash=data["content_hash"],
            settings_hash=data["settings_hash"],
            compiler_version=data["compiler_version"],
            source_name=data.get("source_name"),
            last_modified=data.get("last_modified", time.time()),
            success=data.get("success", True),
        )


class CompiledUnit(BaseModel):
    """Normalized compiler output for one contract."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    contract_name: str
    source_name: str
    source_path: Path
    abi: List[Dict[str, Any]] = Field(default_factory=list)
    bytecode: str = ""
    deployed_bytecode: str = ""
    method_identifiers: Dict[str, str] = Field(default_factory=dict)
    compiler_version: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Other keys reported by the compiler"
    )

    def to_artifact(self) -> Dict[str, Any]:
        """Artifact shape handed to artifact writers."""
        return {
            "contractName": self.contract_name,
            "sourceName": self.source_name,
            "abi": self.abi,
            "bytecode": self.bytecode,
            "deployedBytecode": self.deployed_bytecode,
            "linkReferences": {},
            "deployedLinkReferences": {},
        }


@dataclass(frozen=True, slots=True)
class CommandResult:
    """
    Immutable result of a command execution.

    Output is kept verbatim: callers match on compiler diagnostics.
    """

    success: bool
    stdout: str = ""
    stderr: str = ""
    return_code: int = 0
    command: List[str] = field(default_factory=list)
    execution_time: float = 0.0
    timestamp: float = field(default_factory=time.time)
    truncated: bool = False

    def __post_init__(self) -> None:
        if self.execution_time < 0:
            raise ValueError("execution_time cannot be negative")

    @property
    def output(self) -> str:
        """Get combined output (stderr + stdout)."""
        return f"{self.stderr}\n{self.stdout}".strip()

    @property
    def command_str(self) -> str:
        return " ".join(self.command)


class BuildResult(BaseModel):
    """Outcome of a build pass."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    success: bool = Field(description="Whether every group compiled")
    units: List[CompiledUnit] = Field(default_factory=list)
    compiled_files: List[Path] = Field(default_factory=list)
    cached_files: List[Path] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration_ms: float = Field(default=0.0, ge=0.0)
    metrics: Dict[str, Any] = Field(default_factory=dict)

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        if self.success:
            self.success = False

    def raise_for_errors(self) -> None:
        """Raise BuildError if the pass failed."""
        if not self.success:
            raise BuildError(
                "\n\n".join(self.errors) or "Build failed",
                error_code="BUILD_FAILED",
                errors=self.errors,
            )


class VyperHelperException(Exception):
    """Base exception for Vyper helper errors."""

    def __init__(
        self, message: str, *, error_code: Optional[str] = None, **kwargs: Any
    ):
        super().__init__(message)
        self.error_code = error_code
        self.context = kwargs

        # Messages may carry raw compiler output, braces included
        logger.bind(error_code=error_code, context=kwargs).error(
            f"{type(self).__name__}: {message}"
        )


class ConfigurationError(VyperHelperException):
    """Invalid compiler configuration for the files being built."""

    pass


class NoMatchingCompilerVersionError(ConfigurationError):
    """No configured compiler satisfies a file's version pragma."""

    def __init__(self, source_path: PathLike, version_pragma: str, **kwargs: Any):
        self.source_path = Path(source_path)
        self.version_pragma = version_pragma
        super().__init__(
            "The Vyper version pragma statement in this file doesn't match any "
            f"of the configured compilers in your config.\n"
            f"  File: {self.source_path}\n  Pragma: {version_pragma}",
            error_code="NO_MATCHING_COMPILER_VERSION",
            source_path=str(self.source_path),
            version_pragma=version_pragma,
            **kwargs,
        )


class AmbiguousCompilerVersionError(ConfigurationError):
    """A file has no version pragma and several compilers are configured."""

    def __init__(self, source_path: PathLike, versions: List[str], **kwargs: Any):
        self.source_path = Path(source_path)
        self.versions = versions
        super().__init__(
            f"The file {self.source_path} has no version pragma and several "
            f"compilers are configured ({', '.join(versions)}). Add a version "
            "pragma or set an ambiguity policy.",
            error_code="AMBIGUOUS_COMPILER_VERSION",
            source_path=str(self.source_path),
            versions=versions,
            **kwargs,
        )


class InvalidVersionPragmaError(ConfigurationError):
    """A version pragma could not be parsed."""

    def __init__(self, source_path: PathLike, version_pragma: str, reason: str):
        self.source_path = Path(source_path)
        self.version_pragma = version_pragma
        super().__init__(
            f"Invalid version pragma '{version_pragma}' in {self.source_path}: {reason}",
            error_code="INVALID_VERSION_PRAGMA",
            source_path=str(self.source_path),
            version_pragma=version_pragma,
        )


class UnsupportedCompilerVersionError(ConfigurationError):
    """A version is below the lowest compiler line this tool supports."""

    def __init__(self, version: str, **kwargs: Any):
        self.version = version
        super().__init__(
            f"Unsupported vyper version: {version}",
            error_code="UNSUPPORTED_COMPILER_VERSION",
            version=version,
            **kwargs,
        )


class InvalidSettingsError(ConfigurationError):
    """Settings cannot be expressed for the selected compiler version."""

    pass


class TestDirectiveError(VyperHelperException):
    """A source file contains a Brownie test directive."""

    __test__ = False

    def __init__(self, source_path: PathLike, **kwargs: Any):
        self.source_path = Path(source_path)
        super().__init__(
            f"We found a test directive in the file at path {self.source_path}. "
            "Test directives are a Brownie feature not supported by this tool.",
            error_code="TEST_DIRECTIVE_PRESENT",
            source_path=str(self.source_path),
            **kwargs,
        )


class CompilationError(VyperHelperException):
    """The external compiler failed or produced unusable output."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        return_code: Optional[int] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("error_code", "COMPILATION_FAILED")
        super().__init__(
            message, command=command, return_code=return_code, stderr=stderr, **kwargs
        )
        self.command = command
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr


class OutputLimitExceededError(CompilationError):
    """The compiler produced more output than the configured ceiling."""

    pass


class CompilerNotFoundError(VyperHelperException):
    """A compiler binary could not be found or queried."""

    pass


class BuildError(VyperHelperException):
    """Raised when a build pass fails."""

    pass
