#!/usr/bin/env python3
"""
Translation of abstract Vyper settings into compiler command-line flags.

The optimizer flag dialect changed incompatibly in Vyper 0.3.10 (boolean
flags before, named modes after), and optimizer control did not exist before
0.3.1. Every (optimize shape, version range) pair is an explicit rule in
OPTIMIZE_RULES.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, List, Mapping, Optional, Tuple, Union

from packaging.version import Version

from .core_types import InvalidSettingsError, VyperSettings, parse_version

VERSION_0_3_1 = parse_version("0.3.1")
VERSION_0_3_10 = parse_version("0.3.10")

SettingsLike = Union[VyperSettings, Mapping[str, Any], None]


class OptimizeShape(StrEnum):
    """The shape of an 'optimize' setting value."""

    UNSET = "unset"
    ENABLED = "enabled"  # optimize=True
    DISABLED = "disabled"  # optimize=False
    MODE = "mode"  # optimize="gas", "codesize", "none", ...

    @classmethod
    def of(cls, optimize: Any) -> OptimizeShape:
        if optimize is None:
            return cls.UNSET
        # bool first: bool is a subclass of int
        if isinstance(optimize, bool):
            return cls.ENABLED if optimize else cls.DISABLED
        if isinstance(optimize, str):
            return cls.MODE
        raise InvalidSettingsError(
            "The 'optimize' setting has an invalid type value. "
            f"Type is: {type(optimize).__name__}.",
            error_code="INVALID_OPTIMIZE_TYPE",
            optimize=repr(optimize),
        )


ENABLED_UNSUPPORTED = (
    "The 'optimize' setting with value 'true' is not supported for versions of "
    "the Vyper compiler older than 0.3.1 or starting from 0.3.10. "
    "You are currently using version {version}."
)
MODE_UNSUPPORTED = (
    "The 'optimize' setting, when specified as a string value, is available "
    "only starting from the Vyper compiler version 0.3.10. "
    "You are currently using version {version}."
)


@dataclass(frozen=True, slots=True)
class OptimizeRule:
    """
    Flags (or an error) for one optimize shape over a half-open version range.

    min_version is inclusive and max_version exclusive; None leaves the side
    unbounded. Flags may reference {mode}.
    """

    shape: OptimizeShape
    min_version: Optional[Version] = None
    max_version: Optional[Version] = None
    flags: Tuple[str, ...] = ()
    error: Optional[str] = None

    def applies_to(self, shape: OptimizeShape, version: Version) -> bool:
        if shape != self.shape:
            return False
        if self.min_version is not None and version < self.min_version:
            return False
        if self.max_version is not None and version >= self.max_version:
            return False
        return True

    def apply(self, version_text: str, optimize: Any) -> List[str]:
        if self.error is not None:
            raise InvalidSettingsError(
                self.error.format(version=version_text),
                error_code="UNSUPPORTED_OPTIMIZE_SETTING",
                compiler_version=version_text,
                optimize=optimize,
            )
        return [flag.format(mode=optimize) for flag in self.flags]


OPTIMIZE_RULES: Tuple[OptimizeRule, ...] = (
    OptimizeRule(OptimizeShape.ENABLED, max_version=VERSION_0_3_1, error=ENABLED_UNSUPPORTED),
    # The optimizer is enabled by default
    OptimizeRule(OptimizeShape.ENABLED, VERSION_0_3_1, VERSION_0_3_10),
    OptimizeRule(OptimizeShape.ENABLED, min_version=VERSION_0_3_10, error=ENABLED_UNSUPPORTED),
    OptimizeRule(OptimizeShape.DISABLED, max_version=VERSION_0_3_10, flags=("--no-optimize",)),
    OptimizeRule(OptimizeShape.DISABLED, min_version=VERSION_0_3_10, flags=("--optimize", "none")),
    OptimizeRule(OptimizeShape.MODE, max_version=VERSION_0_3_10, error=MODE_UNSUPPORTED),
    OptimizeRule(OptimizeShape.MODE, min_version=VERSION_0_3_10, flags=("--optimize", "{mode}")),
)


def _read_settings(settings: SettingsLike) -> Tuple[Optional[str], Any]:
    if settings is None:
        return None, None
    if isinstance(settings, VyperSettings):
        return settings.evm_version, settings.optimize
    evm_version = settings.get("evm_version", settings.get("evmVersion"))
    return evm_version, settings.get("optimize")


def get_optimize_flags(compiler_version: Optional[str], optimize: Any) -> List[str]:
    """Return the optimizer flags for a compiler version."""
    shape = OptimizeShape.of(optimize)
    if shape == OptimizeShape.UNSET:
        return []

    if not compiler_version:
        raise InvalidSettingsError(
            "The 'compilerVersion' parameter must be set when the setting "
            "'optimize' is set.",
            error_code="COMPILER_VERSION_REQUIRED",
            optimize=optimize,
        )

    try:
        version = parse_version(compiler_version)
    except ValueError as e:
        raise InvalidSettingsError(
            str(e), error_code="INVALID_COMPILER_VERSION", compiler_version=compiler_version
        ) from e

    for rule in OPTIMIZE_RULES:
        if rule.applies_to(shape, version):
            return rule.apply(compiler_version, optimize)

    raise InvalidSettingsError(
        f"No optimizer rule for optimize={optimize!r} with version {compiler_version}",
        error_code="UNSUPPORTED_OPTIMIZE_SETTING",
    )


def build_settings_command(
    compiler_version: Optional[str], settings: SettingsLike
) -> List[str]:
    """
    Build the settings arguments accepted by a given compiler version.

    Args:
        compiler_version: Version of the compiler that will receive the flags;
            required whenever 'optimize' is set
        settings: VyperSettings or a mapping with 'evm_version'/'evmVersion'
            and 'optimize' keys

    Returns:
        Command-line arguments, e.g. ["--evm-version", "paris", "--optimize", "gas"]

    Raises:
        InvalidSettingsError: If the settings cannot be expressed for the version
    """
    evm_version, optimize = _read_settings(settings)

    args: List[str] = []
    if evm_version is not None:
        args.extend(["--evm-version", str(evm_version)])
    args.extend(get_optimize_flags(compiler_version, optimize))
    return args


def get_settings_cmd(compiler_version: Optional[str], settings: SettingsLike) -> str:
    """Settings arguments as a single flag string."""
    return " ".join(build_settings_command(compiler_version, settings))
