#!/usr/bin/env python3
"""
Utility functions for the Vyper helper module.

This module provides configuration loading, atomic file writes and external
process execution with bounded output buffering.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import subprocess
import time
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiofiles
import aiofiles.os
from loguru import logger
from pydantic import BaseModel, ValidationError

from .core_types import (
    DEFAULT_MAX_OUTPUT_BYTES,
    CommandResult,
    PathLike,
    VyperHelperException,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

_READ_CHUNK_SIZE = 64 * 1024


class FileOperationError(VyperHelperException):
    """Exception raised for file operation errors."""

    pass


class ConfigurationManager:
    """JSON configuration loading and saving with validation."""

    def load_json(self, file_path: PathLike) -> Dict[str, Any]:
        """
        Load and parse a JSON file.

        Raises:
            FileOperationError: If the file cannot be read or parsed
        """
        path = Path(file_path)

        if not path.exists():
            raise FileOperationError(
                f"JSON file not found: {path}",
                error_code="FILE_NOT_FOUND",
                file_path=str(path),
            )

        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise FileOperationError(
                f"Invalid JSON in file {path}: {e}",
                error_code="INVALID_JSON",
                file_path=str(path),
                json_error=str(e),
            ) from e
        except OSError as e:
            raise FileOperationError(
                f"Failed to read file {path}: {e}",
                error_code="FILE_READ_ERROR",
                file_path=str(path),
                os_error=str(e),
            ) from e

    def save_json(self, file_path: PathLike, data: Any, indent: int = 2) -> None:
        """Atomically save data to a JSON file."""
        path = Path(file_path)
        try:
            content = json.dumps(data, indent=indent, ensure_ascii=False)
        except TypeError as e:
            raise FileOperationError(
                f"Failed to serialize JSON for {path}: {e}",
                error_code="FILE_WRITE_ERROR",
                file_path=str(path),
                error=str(e),
            ) from e

        FileManager.atomic_write_text(path, content)
        logger.debug(f"JSON data saved to {path}")

    def load_config_with_model(
        self, file_path: PathLike, model_class: Type[ModelT]
    ) -> ModelT:
        """
        Load and validate configuration using a Pydantic model.

        Raises:
            FileOperationError: If the file cannot be loaded or is invalid
        """
        data = self.load_json(file_path)

        try:
            return model_class.model_validate(data)
        except ValidationError as e:
            raise FileOperationError(
                f"Invalid configuration in {file_path}: {e}",
                error_code="INVALID_CONFIGURATION",
                file_path=str(file_path),
                validation_errors=e.errors(),
            ) from e


class FileManager:
    """File helpers. Writes go to a sibling temp file renamed over the target."""

    @staticmethod
    def _temp_path(path: Path) -> Path:
        return path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")

    @staticmethod
    def _discard(temp_path: Path) -> None:
        with suppress(OSError):
            temp_path.unlink(missing_ok=True)

    @staticmethod
    def atomic_write_text(path: PathLike, content: str) -> None:
        """
        Replace a file's content atomically.

        A crash at any point leaves either the old or the new content.
        """
        target = Path(path)
        temp_path = FileManager._temp_path(target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except OSError as e:
            FileManager._discard(temp_path)
            raise FileOperationError(
                f"Failed to write {target}: {e}",
                error_code="FILE_WRITE_ERROR",
                file_path=str(target),
                os_error=str(e),
            ) from e

    @staticmethod
    async def atomic_write_text_async(path: PathLike, content: str) -> None:
        """Async variant of atomic_write_text."""
        target = Path(path)
        temp_path = FileManager._temp_path(target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(temp_path, target)
        except OSError as e:
            FileManager._discard(temp_path)
            raise FileOperationError(
                f"Failed to write {target}: {e}",
                error_code="FILE_WRITE_ERROR",
                file_path=str(target),
                os_error=str(e),
            ) from e
        except asyncio.CancelledError:
            FileManager._discard(temp_path)
            raise

    @staticmethod
    def find_executable(name: str, paths: Optional[List[str]] = None) -> Optional[Path]:
        """Find an executable in the system PATH or the given directories."""
        result = shutil.which(name)
        if result:
            return Path(result)

        for path_str in paths or []:
            exe_path = Path(path_str) / name
            if exe_path.is_file() and os.access(exe_path, os.X_OK):
                return exe_path

        return None


class _OutputLimitReached(Exception):
    pass


class _OutputBudget:
    """Shared byte budget for the output streams of one process."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0

    def consume(self, size: int) -> None:
        self.used += size
        if self.used > self.limit:
            raise _OutputLimitReached()


class ProcessManager:
    """External process execution with bounded output and cancellation."""

    @staticmethod
    async def _drain(
        stream: Optional[asyncio.StreamReader], sink: bytearray, budget: _OutputBudget
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            if not chunk:
                return
            budget.consume(len(chunk))
            sink.extend(chunk)

    @staticmethod
    def _cancel(readers: List[asyncio.Future]) -> None:
        for reader in readers:
            if not reader.done():
                reader.cancel()

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    @staticmethod
    async def run_command_async(
        command: List[str],
        timeout: Optional[float] = None,
        cwd: Optional[PathLike] = None,
        env: Optional[Dict[str, str]] = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> CommandResult:
        """
        Run a command asynchronously and collect its output.

        stdout and stderr together may not exceed max_output_bytes; past the
        ceiling the process is killed and the result is marked truncated.
        Cancelling the awaiting task kills the process.

        Args:
            command: Command and arguments to execute
            timeout: Command timeout in seconds
            cwd: Working directory for the command
            env: Extra environment variables
            max_output_bytes: Output ceiling in bytes

        Returns:
            CommandResult with execution details
        """
        start_time = time.time()

        logger.bind(
            command=command, timeout=timeout, cwd=str(cwd) if cwd else None
        ).debug(f"Executing command: {' '.join(command)}")

        final_env = os.environ.copy()
        if env:
            final_env.update(env)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=final_env,
            )
        except FileNotFoundError:
            return CommandResult(
                success=False,
                stderr=f"Command not found: {command[0]}",
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
            )
        except OSError as e:
            return CommandResult(
                success=False,
                stderr=f"Failed to start {command[0]}: {e}",
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
            )

        stdout = bytearray()
        stderr = bytearray()
        budget = _OutputBudget(max_output_bytes)
        readers = [
            asyncio.ensure_future(ProcessManager._drain(process.stdout, stdout, budget)),
            asyncio.ensure_future(ProcessManager._drain(process.stderr, stderr, budget)),
        ]

        try:
            await asyncio.wait_for(asyncio.gather(*readers), timeout=timeout)
            return_code = await process.wait()
        except asyncio.TimeoutError:
            ProcessManager._cancel(readers)
            await ProcessManager._terminate(process)
            return CommandResult(
                success=False,
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=f"Command timed out after {timeout}s",
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
            )
        except _OutputLimitReached:
            ProcessManager._cancel(readers)
            await ProcessManager._terminate(process)
            logger.error(
                f"Output of {command[0]} exceeded {max_output_bytes} bytes, process killed"
            )
            return CommandResult(
                success=False,
                stdout="",
                stderr=(
                    f"Output exceeded the limit of {max_output_bytes} bytes"
                    f"\n{stderr.decode('utf-8', errors='replace')}"
                ),
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
                truncated=True,
            )
        except asyncio.CancelledError:
            logger.warning(f"Cancelled, killing {command[0]} (pid {process.pid})")
            ProcessManager._cancel(readers)
            await ProcessManager._terminate(process)
            raise

        execution_time = time.time() - start_time
        result = CommandResult(
            success=return_code == 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            return_code=return_code,
            command=command,
            execution_time=execution_time,
        )

        if result.success:
            logger.debug(f"Command completed successfully in {execution_time:.2f}s")
        else:
            logger.bind(command=" ".join(command), stderr=result.stderr).error(
                f"Command failed with code {result.return_code} in {execution_time:.2f}s"
            )

        return result

    @staticmethod
    def run_command(
        command: List[str],
        timeout: Optional[float] = None,
        cwd: Optional[PathLike] = None,
    ) -> CommandResult:
        """Run a short-lived command synchronously."""
        start_time = time.time()

        logger.debug(f"Executing command: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                success=False,
                stderr=f"Command timed out after {timeout}s",
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
            )
        except (FileNotFoundError, PermissionError):
            return CommandResult(
                success=False,
                stderr=f"Command not found: {command[0]}",
                return_code=-1,
                command=command,
                execution_time=time.time() - start_time,
            )

        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout.decode("utf-8", errors="replace"),
            stderr=result.stderr.decode("utf-8", errors="replace"),
            return_code=result.returncode,
            command=command,
            execution_time=time.time() - start_time,
        )


def load_json(file_path: PathLike) -> Dict[str, Any]:
    """Load a JSON file using the default configuration manager."""
    return default_config_manager.load_json(file_path)


def save_json(file_path: PathLike, data: Any, indent: int = 2) -> None:
    """Save a JSON file using the default configuration manager."""
    default_config_manager.save_json(file_path, data, indent)


default_config_manager = ConfigurationManager()
default_process_manager = ProcessManager()
