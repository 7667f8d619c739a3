#!/usr/bin/env python3
"""
Compiler Manager for configured and detected Vyper compilers.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .compiler import VyperCompiler
from .core_types import (
    DEFAULT_MAX_OUTPUT_BYTES,
    CompilerNotFoundError,
    CompilerProfile,
    parse_version,
)
from .utils import FileManager, ProcessManager

# "0.3.10+commit.91361694", "0.1.0b17+commit.1a2b3c4d"
_VERSION_OUTPUT = re.compile(r"(\d+\.\d+\.\d+(?:[-.]?[A-Za-z]+[.]?\d*)?)(?:\+commit\.[0-9a-f]+)?")


class CompilerManager:
    """
    Creates and caches one VyperCompiler per installed binary.
    """

    def __init__(
        self,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        process_manager: Optional[ProcessManager] = None,
    ):
        self.max_output_bytes = max_output_bytes
        self.process_manager = process_manager or ProcessManager()
        self.compilers: Dict[Tuple[str, str], VyperCompiler] = {}

    def get_compiler(self, profile: CompilerProfile) -> VyperCompiler:
        """Get the compiler that runs a profile."""
        key = (profile.path, str(profile.parsed_version))
        compiler = self.compilers.get(key)
        if compiler is None:
            compiler = VyperCompiler(
                path=profile.path,
                version=profile.version,
                max_output_bytes=self.max_output_bytes,
                process_manager=self.process_manager,
            )
            self.compilers[key] = compiler
        return compiler

    def detect_version(self, path: str) -> str:
        """
        Ask a compiler binary for its version.

        Raises:
            CompilerNotFoundError: If the binary cannot be run or its output
                has no version
        """
        result = self.process_manager.run_command([path, "--version"], timeout=30)
        if not result.success:
            raise CompilerNotFoundError(
                f"Failed to query compiler version of {path}: {result.output}",
                error_code="COMPILER_VERSION_UNAVAILABLE",
                compiler_path=path,
            )

        match = _VERSION_OUTPUT.search(result.stdout) or _VERSION_OUTPUT.search(result.stderr)
        if match is None:
            raise CompilerNotFoundError(
                f"Unrecognized version output from {path}: {result.output}",
                error_code="COMPILER_VERSION_UNAVAILABLE",
                compiler_path=path,
            )

        version = match.group(1)
        parse_version(version)
        return version

    def detect_compilers(
        self, names: Sequence[str] = ("vyper",), paths: Optional[List[str]] = None
    ) -> List[CompilerProfile]:
        """
        Find Vyper binaries on PATH (or the given directories) and return a
        profile with default settings for each.
        """
        profiles = []
        for name in names:
            exe = FileManager.find_executable(name, paths)
            if exe is None:
                continue
            try:
                version = self.detect_version(str(exe))
            except CompilerNotFoundError as e:
                logger.warning(f"Skipping {exe}: {e}")
                continue
            logger.info(f"Detected vyper {version} at {exe}")
            profiles.append(CompilerProfile(version=version, path=str(exe)))
        return profiles
