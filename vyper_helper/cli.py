#!/usr/bin/env python3
"""
Command-line interface for the Vyper helper module.
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError

from .build_manager import BuildManager
from .compiler_manager import CompilerManager
from .core_types import (
    AmbiguityPolicy,
    CompiledUnit,
    CompilerProfile,
    VyperConfig,
    VyperHelperException,
    VyperSettings,
)
from .utils import default_config_manager, save_json


def _parse_optimize(value: Optional[str]):
    if value is None:
        return None
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vyper-helper",
        description="Incremental Vyper compilation with multiple compiler versions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build with compilers listed in a config file
  vyper-helper contracts/*.vy --config vyper.json

  # Build with a single compiler
  vyper-helper contracts/A.vy --compiler-path vyper --compiler-version 0.3.10 --optimize gas

  # Ignore the cache
  vyper-helper contracts/*.vy --config vyper.json --force
""",
    )

    parser.add_argument("source_files", nargs="*", type=Path, help="Vyper source files")
    parser.add_argument("--config", type=Path, help="Build configuration file (JSON)")
    parser.add_argument("--root", type=Path, help="Project root (default: current directory)")

    compiler_group = parser.add_argument_group("Compiler options")
    compiler_group.add_argument("--compiler-path", help="Vyper binary to use instead of --config")
    compiler_group.add_argument("--compiler-version", help="Version of --compiler-path")
    compiler_group.add_argument("--evm-version", help="Target EVM version")
    compiler_group.add_argument(
        "--optimize", help="true, false, or an optimization mode such as gas or codesize"
    )
    compiler_group.add_argument(
        "--ambiguity-policy",
        choices=[policy.value for policy in AmbiguityPolicy],
        help="Compiler choice for files without a version pragma",
    )

    build_group = parser.add_argument_group("Build options")
    build_group.add_argument("--cache-dir", type=Path, help="Directory for the cache file")
    build_group.add_argument(
        "--artifacts-dir", type=Path, default=Path("artifacts"), help="Artifact output directory"
    )
    build_group.add_argument("--force", action="store_true", help="Ignore the cache")
    build_group.add_argument("--clean", action="store_true", help="Delete the cache and exit")

    parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase verbosity")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress non-error output")
    parser.add_argument(
        "--list-compilers", action="store_true", help="List vyper binaries on PATH and exit"
    )
    return parser


def _load_config(args: argparse.Namespace) -> VyperConfig:
    if args.config:
        config = default_config_manager.load_config_with_model(args.config, VyperConfig)
    elif args.compiler_path or args.compiler_version:
        compiler_manager = CompilerManager()
        path = args.compiler_path or "vyper"
        version = args.compiler_version or compiler_manager.detect_version(path)
        config = VyperConfig(compilers=[CompilerProfile(version=version, path=path)])
    else:
        detected = CompilerManager().detect_compilers()
        if not detected:
            raise VyperHelperException(
                "No compiler configured: pass --config or --compiler-path, "
                "or put vyper on PATH",
                error_code="NO_COMPILERS_CONFIGURED",
            )
        config = VyperConfig(compilers=detected)

    overrides = {}
    if args.evm_version is not None:
        overrides["evm_version"] = args.evm_version
    if args.optimize is not None:
        overrides["optimize"] = _parse_optimize(args.optimize)
    if overrides:
        config.compilers = [
            profile.model_copy(
                update={"settings": VyperSettings(**{**profile.settings.model_dump(), **overrides})}
            )
            for profile in config.compilers
        ]

    if args.ambiguity_policy:
        config.ambiguity_policy = AmbiguityPolicy(args.ambiguity_policy)
    if args.cache_dir:
        config.cache_dir = args.cache_dir
    return config


def write_artifacts(units: List[CompiledUnit], artifacts_dir: Path) -> List[Path]:
    """Write one JSON artifact per contract under <artifacts>/<source name>/."""
    written = []
    for unit in units:
        target = artifacts_dir / unit.source_name / f"{unit.contract_name}.json"
        save_json(target, unit.to_artifact())
        written.append(target)
    return written


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function for command-line usage.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    logger.remove()
    if args.quiet:
        logger.add(sys.stderr, level="WARNING")
    elif args.verbose >= 1:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="INFO")

    if args.list_compilers:
        profiles = CompilerManager().detect_compilers()
        if profiles:
            print("Available compilers:")
            for profile in profiles:
                print(f"  vyper {profile.version}: {profile.path}")
        else:
            print("No vyper compilers found.")
        return 0

    try:
        config = _load_config(args)
        build_manager = BuildManager(config, root=args.root)

        if args.clean:
            build_manager.clean()
            return 0

        if not args.source_files:
            parser.error("no source files given")

        result = build_manager.build(args.source_files, force=args.force)
    except VyperHelperException as e:
        logger.error(f"Build failed: {e}")
        return 1
    except ValidationError as e:
        logger.error(f"Invalid compiler options: {e}")
        return 1
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1

    artifacts_dir = args.artifacts_dir
    if not artifacts_dir.is_absolute():
        artifacts_dir = build_manager.root / artifacts_dir
    write_artifacts(result.units, artifacts_dir)

    if result.success:
        logger.info(
            f"Build successful: {len(result.compiled_files)} compiled, "
            f"{len(result.cached_files)} cached (took {result.duration_ms:.2f}ms)"
        )
        return 0

    logger.error("Build failed:")
    for error in result.errors:
        logger.error(f"  {error}")
    return 1
