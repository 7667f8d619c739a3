#!/usr/bin/env python3
"""
Build Manager with async support and incremental compilation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .cache import CompilationCache
from .compiler_manager import CompilerManager
from .core_types import (
    BuildResult,
    CompiledUnit,
    PathLike,
    ResolvedGroup,
    SourceFile,
    VyperConfig,
)
from .settings import build_settings_command
from .version_resolver import VersionResolver


@dataclass
class BuildMetrics:
    """Build performance metrics."""
    total_files: int = 0
    compiled_files: int = 0
    cached_files: int = 0
    groups: int = 0
    failed_groups: int = 0
    total_time: float = 0.0
    compile_time: float = 0.0
    cache_hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "compiled_files": self.compiled_files,
            "cached_files": self.cached_files,
            "groups": self.groups,
            "failed_groups": self.failed_groups,
            "total_time": self.total_time,
            "compile_time": self.compile_time,
            "cache_hit_rate": self.cache_hit_rate,
        }


@dataclass
class CompilationPlan:
    """Stale files grouped by profile, and the files served from cache."""
    to_compile: List[ResolvedGroup] = field(default_factory=list)
    cached: List[SourceFile] = field(default_factory=list)

    @property
    def stale_count(self) -> int:
        return sum(len(group) for group in self.to_compile)


class BuildManager:
    """
    Incremental build orchestration for a Vyper project.

    Features:
    - Per-file compiler version resolution from version pragmas
    - Hash-based change detection keyed by compiler version and settings
    - One compiler process per (version, settings) group, groups in parallel
    - All-or-nothing cache persistence: a failed pass leaves the cache as it was
    """

    def __init__(
        self,
        config: VyperConfig,
        root: Optional[PathLike] = None,
        compiler_manager: Optional[CompilerManager] = None,
        cache: Optional[CompilationCache] = None,
        cache_enabled: bool = True,
    ) -> None:
        self.config = config
        self.root = Path(root).resolve() if root else Path.cwd()
        self.compiler_manager = compiler_manager or CompilerManager(
            max_output_bytes=config.max_output_bytes
        )
        self.resolver = VersionResolver(
            ambiguity_policy=config.ambiguity_policy,
            min_supported_version=config.min_supported_version,
        )
        self.cache_enabled = cache_enabled

        cache_file = config.cache_file
        if not cache_file.is_absolute():
            cache_file = self.root / cache_file
        self.cache = cache or CompilationCache(cache_file)

        logger.debug(
            f"Initialized BuildManager: root={self.root}, "
            f"compilers={[p.version for p in config.compilers]}, "
            f"cache={self.cache.cache_file if cache_enabled else None}"
        )

    async def build_async(
        self, source_files: Sequence[PathLike], force: bool = False
    ) -> BuildResult:
        """
        Compile the stale files among source_files.

        Configuration and content errors (unresolvable pragma, invalid
        settings, test directive) are raised before any compiler runs.
        Compiler failures are reported in the returned BuildResult; groups
        are independent, but the cache is only updated when all succeed.

        Args:
            source_files: Source files of this pass
            force: Ignore the cache and compile everything

        Returns:
            BuildResult with the compiled units and per-group errors
        """
        start_time = time.time()
        metrics = BuildMetrics(total_files=len(source_files))

        async with self.cache.lock() as cache_usable:
            use_cache = self.cache_enabled and cache_usable
            if use_cache:
                await self.cache.load_async()

            sources = await self._read_sources(source_files)
            groups = self.resolver.resolve_all(sources, self.config.compilers)
            for group in groups:
                # Settings errors surface before any process is spawned
                build_settings_command(group.profile.version, group.profile.settings)

            plan = self._create_compilation_plan(groups, force or not use_cache)
            metrics.groups = len(plan.to_compile)
            metrics.compiled_files = plan.stale_count
            metrics.cached_files = len(plan.cached)

            logger.info(
                f"Starting build: {metrics.compiled_files} to compile in "
                f"{metrics.groups} groups, {metrics.cached_files} cached",
                extra={"root": str(self.root), "force": force},
            )

            compile_start = time.time()
            outcomes = await self._compile_groups(plan.to_compile)
            metrics.compile_time = time.time() - compile_start

            result = BuildResult(
                success=True,
                cached_files=[source.path for source in plan.cached],
            )
            for group, outcome in zip(plan.to_compile, outcomes):
                if isinstance(outcome, BaseException):
                    metrics.failed_groups += 1
                    result.add_error(str(outcome))
                else:
                    result.units.extend(outcome)
                    result.compiled_files.extend(group.paths)

            if result.success and use_cache:
                self._update_cache(plan.to_compile)
                self.cache.prune_missing()
                await self.cache.save_async()
            elif not result.success:
                logger.error(
                    f"Build failed: {metrics.failed_groups} of {metrics.groups} "
                    "groups failed, cache left unchanged"
                )

        metrics.total_time = time.time() - start_time
        metrics.cache_hit_rate = (
            metrics.cached_files / metrics.total_files if metrics.total_files else 0.0
        )
        result.duration_ms = metrics.total_time * 1000
        result.metrics = metrics.to_dict()

        if result.success:
            logger.info(
                f"Build completed successfully in {metrics.total_time:.2f}s",
                extra={"metrics": metrics.to_dict()},
            )
        return result

    def build(self, source_files: Sequence[PathLike], force: bool = False) -> BuildResult:
        """Build source files synchronously."""
        return asyncio.run(self.build_async(source_files, force))

    async def _read_sources(self, source_files: Sequence[PathLike]) -> List[SourceFile]:
        paths: Dict[Path, None] = {}
        for source_file in source_files:
            path = Path(source_file)
            if not path.is_absolute():
                path = self.root / path
            paths[path.resolve()] = None

        for path in paths:
            if not path.is_file():
                raise FileNotFoundError(f"Source file not found: {path}")

        return list(await asyncio.gather(*(SourceFile.from_path_async(p) for p in paths)))

    def _create_compilation_plan(
        self, groups: List[ResolvedGroup], force: bool
    ) -> CompilationPlan:
        plan = CompilationPlan()
        for group in groups:
            stale = [
                source
                for source in group.sources
                if force or self.cache.is_stale(source, group.profile)
            ]
            plan.cached.extend(source for source in group.sources if source not in stale)
            if stale:
                plan.to_compile.append(ResolvedGroup(profile=group.profile, sources=stale))
        return plan

    async def _compile_groups(
        self, groups: List[ResolvedGroup]
    ) -> List[List[CompiledUnit] | BaseException]:
        tasks = [
            asyncio.create_task(
                self._compile_group(group), name=f"vyper_{group.profile.version}"
            )
            for group in groups
        ]
        try:
            return await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _compile_group(self, group: ResolvedGroup) -> List[CompiledUnit]:
        compiler = self.compiler_manager.get_compiler(group.profile)
        return await compiler.compile_async(
            group, timeout=self.config.timeout, root=self.root
        )

    def _update_cache(self, groups: List[ResolvedGroup]) -> None:
        for group in groups:
            for source in group.sources:
                self.cache.record_success(
                    source, group.profile, source_name=self._source_name(source.path)
                )

    def _source_name(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def clean(self) -> None:
        """Delete the compilation cache, forcing a full rebuild next pass."""
        self.cache.delete()

    def get_metrics(self) -> Dict[str, Any]:
        """Get build manager metrics."""
        return {
            "cache_entries": len(self.cache),
            "cache_file": str(self.cache.cache_file),
            "cache_enabled": self.cache_enabled,
            "compilers": [p.version for p in self.config.compilers],
            "compiler_metrics": {
                f"{path}@{version}": compiler.get_metrics()
                for (path, version), compiler in self.compiler_manager.compilers.items()
            },
        }
