#!/usr/bin/env python3
"""
CLI entrypoint for literalflow.

Usage:
    literalflow resolve app.py --call request_location_updates
    literalflow resolve app.py --call connect --arg host --mode both
    literalflow check path/to/project/ --declare ACCESS_COARSE_LOCATION

Returns:
    0: no findings
    1: findings reported (check)
    3: Error
"""

import argparse
import fnmatch
import logging
import sys
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import yaml

from .cfg import CFGConstructionError, format_cfg
from .checks.providers import DEFAULT_CONSTANTS, PermissionCheck
from .config import MODES, LiteralFlowConfig, ScanConfig
from .frontend.loader import load_code_file, load_source_file
from .semantics.adapter import Argument
from .semantics.graph_adapter import GraphAdapter
from .semantics.resolver import CallSignatures, StringFlowResolver

logger = logging.getLogger(__name__)


# ── Shared arguments ────────────────────────────────────────────────────────

def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to .literalflow.yml config file (default: auto-detect in target dir)",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default=None,
        help="Representation to analyze: source tree, bytecode graph, or both (default: from config, else tree)",
    )
    parser.add_argument(
        "--max-states",
        type=int,
        default=None,
        help="State budget for every traversal (default: 20000)",
    )
    parser.add_argument(
        "--no-trace-calls",
        action="store_true",
        help="Do not follow calls to functions in the same module",
    )


def _parse_argument(text: str) -> Argument:
    """``0`` selects a positional argument, ``provider`` a keyword argument."""
    return int(text) if text.isdigit() else text


def _load_config(args: argparse.Namespace) -> LiteralFlowConfig:
    """
    Load the config file, then let explicit flags override it.
    """
    target = args.target.resolve()
    config_root = target if target.is_dir() else target.parent
    cfg = LiteralFlowConfig.load(config_root, args.config)

    if args.mode is not None:
        cfg.analysis.mode = args.mode
    if args.max_states is not None:
        cfg.analysis.max_states = args.max_states
    if args.no_trace_calls:
        cfg.analysis.trace_calls = False
    return cfg


def _known_constants(cfg: LiteralFlowConfig) -> Dict[str, str]:
    known = dict(DEFAULT_CONSTANTS)
    known.update(cfg.constants)
    return known


def _iter_targets(target: Path, scan: ScanConfig) -> Iterator[Path]:
    """Files under ``target`` matched by the include globs and no exclude glob."""
    if target.is_file():
        yield target
        return

    seen = set()
    for pattern in scan.include:
        for path in sorted(target.glob(pattern)):
            if not path.is_file() or path in seen:
                continue
            relative = path.relative_to(target).as_posix()
            if any(_excluded(relative, pattern) for pattern in scan.exclude):
                continue
            seen.add(path)
            yield path


def _excluded(relative: str, pattern: str) -> bool:
    if fnmatch.fnmatch(relative, pattern):
        return True
    # "**/name" also matches at the top level
    return pattern.startswith("**/") and fnmatch.fnmatch(relative, pattern[3:])


def _resolvers(path: Path, cfg: LiteralFlowConfig, signatures: CallSignatures) -> Optional[List[StringFlowResolver]]:
    """One resolver per requested representation; None if the file cannot be loaded."""
    known = _known_constants(cfg)
    options = dict(trace_calls=cfg.analysis.trace_calls, signatures=signatures)
    resolvers = []

    if cfg.analysis.mode in ("tree", "both") and path.suffix == ".py":
        unit = load_source_file(path, known)
        if unit is None:
            return None
        resolvers.append(StringFlowResolver.for_source(unit, cfg.analysis.max_states, **options))

    if cfg.analysis.mode in ("graph", "both"):
        unit = load_code_file(path, known)
        if unit is None:
            return None
        resolvers.append(StringFlowResolver.for_bytecode(unit, cfg.analysis.max_states, **options))
    return resolvers


# ── Subcommand handlers ─────────────────────────────────────────────────────

def _handle_resolve(args: argparse.Namespace) -> int:
    """Handle ``literalflow resolve FILE --call NAME``."""
    if not args.target.exists():
        print(f"Error: File not found: {args.target}", file=sys.stderr)
        return 3
    if not args.target.is_file():
        print(f"Error: Not a file: {args.target}", file=sys.stderr)
        return 3

    try:
        cfg = _load_config(args)
    except (ValueError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    resolvers = _resolvers(args.target, cfg, CallSignatures(cfg.signatures))
    if resolvers is None:
        print(f"Error: Cannot load {args.target}", file=sys.stderr)
        return 3
    if not resolvers:
        print(f"Error: No representation of {args.target} for mode {cfg.analysis.mode}", file=sys.stderr)
        return 3

    argument = _parse_argument(args.arg)
    print(f"Analyzing: {args.target}")
    for resolver in resolvers:
        representation = "graph" if isinstance(resolver.adapter, GraphAdapter) else "tree"
        for site in resolver.find_call_sites(args.call):
            if args.verbose and representation == "graph":
                try:
                    logger.debug("%s", format_cfg(resolver.adapter.unit.cfg_for(site.code)))
                except CFGConstructionError as e:
                    logger.debug("No CFG for %s: %s", site.code.co_qualname, e)
            candidates = resolver.resolve_possible_string_values(site, argument)
            line = resolver.site_line(site)
            print(f"  line {line}: {resolver.site_name(site)} [{representation}]")
            if not candidates:
                print("    (unresolved)")
            for candidate in candidates:
                print(f"    {candidate}")
    return 0


def _handle_check(args: argparse.Namespace) -> int:
    """Handle ``literalflow check PATH``."""
    if not args.target.exists():
        print(f"Error: Target not found: {args.target}", file=sys.stderr)
        return 3

    try:
        cfg = _load_config(args)
    except (ValueError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    declared = list(cfg.scan.declared) + list(args.declare or [])
    check = PermissionCheck(
        declared,
        signatures=CallSignatures(cfg.signatures),
        trace_calls=cfg.analysis.trace_calls,
        max_states=cfg.analysis.max_states,
        target_api=args.target_api if args.target_api is not None else cfg.scan.target_api,
    )
    known = _known_constants(cfg)

    print(f"Analyzing: {args.target}")
    findings = []
    errors = 0
    for path in _iter_targets(args.target, cfg.scan):
        if cfg.analysis.mode in ("tree", "both") and path.suffix == ".py":
            unit = load_source_file(path, known)
            if unit is None:
                errors += 1
            else:
                findings.extend(check.check_source(unit))
        if cfg.analysis.mode in ("graph", "both"):
            code_unit = load_code_file(path, known)
            if code_unit is None:
                errors += 1
            else:
                findings.extend(check.check_bytecode(code_unit))

    for finding in findings:
        print(f"  {finding} [{finding.representation}]")
    print(f"{len(findings)} finding(s)")

    if errors and args.target.is_file():
        print(f"Error: Cannot load {args.target}", file=sys.stderr)
        return 3
    return 1 if findings else 0


# ── Main entry point ────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="literalflow",
        description="literalflow: resolve string literals flowing into call arguments",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ── resolve subcommand ───────────────────────────────────────────────
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print the possible string values of a call argument",
    )
    resolve_parser.add_argument("target", type=Path, help="Python source or .pyc file")
    resolve_parser.add_argument(
        "--call", action="append", required=True,
        help="Simple name of the called function (repeatable)",
    )
    resolve_parser.add_argument(
        "--arg", default="0",
        help="Positional index or keyword name of the argument (default: 0)",
    )
    _add_common_arguments(resolve_parser)

    # ── check subcommand ─────────────────────────────────────────────────
    check_parser = subparsers.add_parser(
        "check",
        help="Report location calls whose provider needs an undeclared permission",
    )
    check_parser.add_argument("target", type=Path, help="Python file or project directory")
    check_parser.add_argument(
        "--declare", action="append", default=None,
        help="Declared permission, e.g. ACCESS_FINE_LOCATION (repeatable)",
    )
    check_parser.add_argument(
        "--target-api", type=int, default=None,
        help="API level the project targets (overrides scan.target-api)",
    )
    _add_common_arguments(check_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "resolve":
        return _handle_resolve(args)
    elif args.command == "check":
        return _handle_check(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
