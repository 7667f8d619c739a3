#!/usr/bin/env python3
"""
Vyper compiler invocation and output normalization.

A VyperCompiler wraps one installed compiler binary. Each call compiles a
whole group of files with a single process and turns the combined JSON
output into CompiledUnit records.
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger

from .core_types import (
    DEFAULT_MAX_OUTPUT_BYTES,
    CommandResult,
    CompilationError,
    CompiledUnit,
    OutputLimitExceededError,
    PathLike,
    ResolvedGroup,
    SourceFile,
    VyperSettings,
)
from .settings import build_settings_command
from .utils import ProcessManager

# Keys of a combined_json contract entry mapped onto CompiledUnit fields
_UNIT_FIELDS = {
    "abi": "abi",
    "bytecode": "bytecode",
    "bytecode_runtime": "deployed_bytecode",
    "method_identifiers": "method_identifiers",
}


def strip_gas_estimates(abi: Iterable[Any]) -> List[Any]:
    """Remove the non-deterministic 'gas' key from every ABI entry."""
    return [
        {key: value for key, value in entry.items() if key != "gas"}
        if isinstance(entry, dict)
        else entry
        for entry in abi
    ]


def _source_name(path: Path, root: Optional[Path]) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def parse_combined_output(
    payload: Dict[str, Any],
    sources: Sequence[Union[SourceFile, PathLike]] = (),
    compiler_version: Optional[str] = None,
    root: Optional[PathLike] = None,
) -> List[CompiledUnit]:
    """
    Turn a combined_json payload into one CompiledUnit per contract.

    The payload maps each input path (as passed to the compiler) to its
    contract output; a top-level "version" key holds the compiler version.
    Vyper compiles one contract per file, named after the file stem.
    """
    root_path = Path(root).resolve() if root is not None else None
    known: Dict[str, Path] = {}
    for source in sources:
        path = source.path if isinstance(source, SourceFile) else Path(source).resolve()
        known[str(path)] = path
        known[path.as_posix()] = path

    reported_version = payload.get("version")
    units = []
    for key, output in payload.items():
        if key == "version":
            continue
        if not isinstance(output, dict):
            raise ValueError(f"unexpected output for '{key}': {type(output).__name__}")

        source_path = known.get(key) or Path(key).resolve()
        fields: Dict[str, Any] = {}
        metadata: Dict[str, Any] = {}
        for name, value in output.items():
            if name in _UNIT_FIELDS:
                fields[_UNIT_FIELDS[name]] = value
            else:
                metadata[name] = value

        fields["abi"] = strip_gas_estimates(fields.get("abi") or [])

        units.append(
            CompiledUnit(
                contract_name=source_path.stem,
                source_name=_source_name(source_path, root_path),
                source_path=source_path,
                compiler_version=compiler_version or reported_version,
                metadata=metadata,
                **fields,
            )
        )

    return units


class CompilerMetrics:
    """Tracks compiler invocation metrics."""

    def __init__(self) -> None:
        self.total_compilations = 0
        self.successful_compilations = 0
        self.total_compilation_time = 0.0
        self.files_compiled = 0

    def record_compilation(self, success: bool, duration: float, file_count: int) -> None:
        self.total_compilations += 1
        self.total_compilation_time += duration
        if success:
            self.successful_compilations += 1
            self.files_compiled += file_count

    @property
    def success_rate(self) -> float:
        if self.total_compilations == 0:
            return 0.0
        return self.successful_compilations / self.total_compilations

    @property
    def average_compilation_time(self) -> float:
        if self.total_compilations == 0:
            return 0.0
        return self.total_compilation_time / self.total_compilations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_compilations": self.total_compilations,
            "successful_compilations": self.successful_compilations,
            "success_rate": self.success_rate,
            "total_compilation_time": self.total_compilation_time,
            "average_compilation_time": self.average_compilation_time,
            "files_compiled": self.files_compiled,
        }


class VyperCompiler:
    """
    One installed Vyper compiler.

    Invoked as `<path> [settings flags] -f combined_json <file...>`; stdout
    must hold a single JSON object.
    """

    def __init__(
        self,
        path: str,
        version: str,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        process_manager: Optional[ProcessManager] = None,
    ) -> None:
        self.path = path
        self.version = version
        self.max_output_bytes = max_output_bytes
        self.process_manager = process_manager or ProcessManager()
        self.metrics = CompilerMetrics()

        logger.debug(f"Initialized compiler: vyper {version} at {path}")

    def build_command(
        self, files: Sequence[PathLike], settings: Optional[VyperSettings] = None
    ) -> List[str]:
        """Full command line for compiling the given files together."""
        return [
            self.path,
            *build_settings_command(self.version, settings),
            "-f",
            "combined_json",
            *(str(f) for f in files),
        ]

    async def compile_async(
        self,
        sources: Union[ResolvedGroup, Sequence[Union[SourceFile, PathLike]]],
        settings: Optional[VyperSettings] = None,
        timeout: Optional[float] = None,
        root: Optional[PathLike] = None,
    ) -> List[CompiledUnit]:
        """
        Compile a group of files with one compiler process.

        Args:
            sources: A ResolvedGroup (its profile settings are used when
                settings is None) or a sequence of files
            settings: Settings to translate into flags
            timeout: Timeout in seconds
            root: Project root used to compute source names

        Returns:
            One CompiledUnit per contract

        Raises:
            InvalidSettingsError: If the settings are invalid for this version
            CompilationError: If the process fails, exits nonzero, exceeds the
                output ceiling or prints malformed output; the message carries
                the compiler's own output verbatim
        """
        if isinstance(sources, ResolvedGroup):
            settings = settings if settings is not None else sources.profile.settings
            sources = sources.sources

        paths = [s.path if isinstance(s, SourceFile) else Path(s) for s in sources]
        if not paths:
            return []

        cmd = self.build_command(paths, settings)
        start_time = time.time()

        logger.debug(
            f"Compiling {len(paths)} files with vyper {self.version}",
            extra={"source_files": [str(p) for p in paths], "command": cmd},
        )

        result = await self.process_manager.run_command_async(
            cmd, timeout=timeout, max_output_bytes=self.max_output_bytes
        )

        try:
            units = self._process_result(result, sources, root)
        except CompilationError:
            self.metrics.record_compilation(False, time.time() - start_time, len(paths))
            raise

        duration = time.time() - start_time
        self.metrics.record_compilation(True, duration, len(paths))
        logger.info(
            f"Compiled {len(paths)} files with vyper {self.version} in {duration * 1000:.1f}ms",
            extra={"contracts": len(units), "duration_ms": duration * 1000},
        )
        return units

    def compile(
        self,
        sources: Union[ResolvedGroup, Sequence[Union[SourceFile, PathLike]]],
        settings: Optional[VyperSettings] = None,
        timeout: Optional[float] = None,
        root: Optional[PathLike] = None,
    ) -> List[CompiledUnit]:
        """Synchronous wrapper around compile_async."""
        return asyncio.run(self.compile_async(sources, settings, timeout, root))

    def _process_result(
        self,
        result: CommandResult,
        sources: Sequence[Union[SourceFile, PathLike]],
        root: Optional[PathLike],
    ) -> List[CompiledUnit]:
        failure = {
            "command": result.command,
            "return_code": result.return_code,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }

        if result.truncated:
            raise OutputLimitExceededError(
                f"Command failed: {result.command_str}\n{result.stderr}",
                error_code="OUTPUT_LIMIT_EXCEEDED",
                **failure,
            )

        if not result.success:
            raise CompilationError(
                f"Command failed: {result.command_str}\n{result.stderr}{result.stdout}",
                **failure,
            )

        try:
            payload = json.loads(result.stdout)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            return parse_combined_output(payload, sources, self.version, root)
        except ValueError as e:
            raise CompilationError(
                f"Malformed compiler output from {result.command_str}: {e}\n"
                f"{result.stderr}{result.stdout}",
                error_code="MALFORMED_OUTPUT",
                **failure,
            ) from e

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()

    def __repr__(self) -> str:
        return f"VyperCompiler(path={self.path!r}, version={self.version!r})"
