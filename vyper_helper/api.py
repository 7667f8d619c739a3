#!/usr/bin/env python3
"""
High-level API for the Vyper helper module.
"""
from typing import List, Optional, Sequence, Union

from .build_manager import BuildManager
from .compiler_manager import CompilerManager
from .core_types import (
    DEFAULT_MIN_SUPPORTED_VERSION,
    AmbiguityPolicy,
    BuildResult,
    CompiledUnit,
    CompilerProfile,
    PathLike,
    SourceFile,
    VyperConfig,
    VyperSettings,
)
from .settings import SettingsLike, get_settings_cmd
from .utils import default_config_manager
from .version_resolver import VersionResolver


# Shared compiler manager for global use
compiler_manager = CompilerManager()


def load_config(config_file: PathLike) -> VyperConfig:
    """Load and validate a JSON build configuration."""
    return default_config_manager.load_config_with_model(config_file, VyperConfig)


def get_settings_command(compiler_version: Optional[str], settings: SettingsLike) -> str:
    """
    Flags for the given settings and compiler version, e.g. "--optimize gas".
    """
    return get_settings_cmd(compiler_version, settings)


def resolve_compiler(
    source_file: PathLike,
    profiles: Sequence[CompilerProfile],
    ambiguity_policy: Union[str, AmbiguityPolicy] = AmbiguityPolicy.ERROR,
    min_supported_version: str = DEFAULT_MIN_SUPPORTED_VERSION,
) -> CompilerProfile:
    """
    Select the configured compiler profile for a source file.
    """
    resolver = VersionResolver(
        ambiguity_policy=AmbiguityPolicy(ambiguity_policy),
        min_supported_version=min_supported_version,
    )
    return resolver.resolve(SourceFile.from_path(source_file), profiles)


def compile_files(
    source_files: Sequence[PathLike],
    compiler_path: str,
    compiler_version: str,
    settings: Optional[VyperSettings] = None,
    timeout: Optional[float] = None,
) -> List[CompiledUnit]:
    """
    Compile files together with one compiler, without caching.
    """
    profile = CompilerProfile(
        version=compiler_version, path=compiler_path, settings=settings or VyperSettings()
    )
    compiler = compiler_manager.get_compiler(profile)
    return compiler.compile(source_files, profile.settings, timeout)


def build_project(
    source_files: Sequence[PathLike],
    config: Union[VyperConfig, PathLike],
    root: Optional[PathLike] = None,
    force: bool = False,
) -> BuildResult:
    """
    Incrementally build a set of source files.
    """
    if not isinstance(config, VyperConfig):
        config = load_config(config)

    build_manager = BuildManager(config, root=root)
    return build_manager.build(source_files, force=force)
