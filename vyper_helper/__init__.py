#!/usr/bin/env python3
"""
Vyper Helper Module

This module provides incremental compilation of Vyper contracts across
multiple installed compiler versions, with support for both command-line and
programmatic usage.

Features:
- Per-file compiler selection from version pragmas (semantic version ranges)
- Version-aware translation of settings into compiler flags
- Content-addressed build cache keyed by compiler version and settings
- One compiler process per (version, settings) group, groups in parallel
- Normalized, reproducible compiler output (ABI gas estimates removed)
"""

import sys

from loguru import logger

from .api import (
    build_project,
    compile_files,
    compiler_manager,  # shared instance
    get_settings_command,
    load_config,
    resolve_compiler,
)
from .build_manager import BuildManager
from .cache import CompilationCache
from .compiler import VyperCompiler, parse_combined_output, strip_gas_estimates
from .compiler_manager import CompilerManager
from .core_types import (
    AmbiguityPolicy,
    AmbiguousCompilerVersionError,
    BuildError,
    BuildResult,
    CacheEntry,
    CompilationError,
    CompiledUnit,
    CompilerNotFoundError,
    CompilerProfile,
    ConfigurationError,
    InvalidSettingsError,
    InvalidVersionPragmaError,
    NoMatchingCompilerVersionError,
    OutputLimitExceededError,
    ResolvedGroup,
    SourceFile,
    TestDirectiveError,
    UnsupportedCompilerVersionError,
    VyperConfig,
    VyperHelperException,
    VyperSettings,
)
from .settings import build_settings_command, get_settings_cmd
from .utils import load_json, save_json
from .version_resolver import VersionRange, VersionResolver

__version__ = "0.1.0"
__license__ = "GPL-3.0-or-later"

logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level="INFO",
)


__all__ = [
    # Core types
    "AmbiguityPolicy",
    "BuildResult",
    "CacheEntry",
    "CompiledUnit",
    "CompilerProfile",
    "ResolvedGroup",
    "SourceFile",
    "VyperConfig",
    "VyperSettings",

    # Exceptions
    "VyperHelperException",
    "ConfigurationError",
    "AmbiguousCompilerVersionError",
    "InvalidSettingsError",
    "InvalidVersionPragmaError",
    "NoMatchingCompilerVersionError",
    "UnsupportedCompilerVersionError",
    "TestDirectiveError",
    "CompilationError",
    "OutputLimitExceededError",
    "CompilerNotFoundError",
    "BuildError",

    # Classes
    "BuildManager",
    "CompilationCache",
    "CompilerManager",
    "VersionRange",
    "VersionResolver",
    "VyperCompiler",

    # Functions
    "build_project",
    "build_settings_command",
    "compile_files",
    "get_settings_cmd",
    "get_settings_command",
    "load_config",
    "load_json",
    "parse_combined_output",
    "resolve_compiler",
    "save_json",
    "strip_gas_estimates",

    # Instances
    "compiler_manager",
]
