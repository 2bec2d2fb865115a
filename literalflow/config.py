"""
Configuration file loader for ``.literalflow.yml``.

Defaults let the tool run without a config file. A config file can add
known constants, declare call signatures, and narrow the scan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .checks.providers import DEFAULT_TARGET_API
from .semantics.adapter import DEFAULT_MAX_STATES

CONFIG_NAMES = (".literalflow.yml", ".literalflow.yaml")
MODES = ("tree", "graph", "both")


def _get(raw: Dict[str, Any], key: str, default: Any) -> Any:
    """Look up ``key`` spelled with hyphens or underscores."""
    return raw.get(key.replace("_", "-"), raw.get(key, default))


@dataclass
class AnalysisConfig:
    mode: str = "tree"
    max_states: int = DEFAULT_MAX_STATES
    trace_calls: bool = True


@dataclass
class ScanConfig:
    exclude: List[str] = field(default_factory=lambda: [
        "tests/**",
        "test/**",
        "**/test_*.py",
        "docs/**",
        "setup.py",
        "conftest.py",
    ])
    include: List[str] = field(default_factory=lambda: ["**/*.py"])
    declared: List[str] = field(default_factory=list)
    target_api: int = DEFAULT_TARGET_API


@dataclass
class LiteralFlowConfig:
    """Top-level configuration for literalflow."""
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    constants: Dict[str, str] = field(default_factory=dict)
    signatures: Dict[str, List[str]] = field(default_factory=dict)
    scan: ScanConfig = field(default_factory=ScanConfig)

    @classmethod
    def load(cls, repo_root: Path, path: Optional[Path] = None) -> "LiteralFlowConfig":
        """Load config from ``path`` or from .literalflow.yml under ``repo_root``."""
        if path is None:
            for name in CONFIG_NAMES:
                candidate = Path(repo_root) / name
                if candidate.exists():
                    path = candidate
                    break
            else:
                return cls()

        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        return cls._from_dict(raw)

    @classmethod
    def _from_dict(cls, raw: Dict[str, Any]) -> "LiteralFlowConfig":
        analysis_raw = raw.get("analysis") or {}
        scan_raw = raw.get("scan") or {}

        analysis = AnalysisConfig(
            mode=str(_get(analysis_raw, "mode", "tree")),
            max_states=int(_get(analysis_raw, "max_states", DEFAULT_MAX_STATES)),
            trace_calls=bool(_get(analysis_raw, "trace_calls", True)),
        )
        if analysis.mode not in MODES:
            raise ValueError(f"analysis.mode: expected one of {', '.join(MODES)}, got {analysis.mode!r}")
        if analysis.max_states <= 0:
            raise ValueError(f"analysis.max-states: must be positive, got {analysis.max_states}")

        constants = raw.get("constants") or {}
        if not isinstance(constants, dict):
            raise ValueError("constants: expected a mapping of dotted name to string")
        signatures = raw.get("signatures") or {}
        if not isinstance(signatures, dict):
            raise ValueError("signatures: expected a mapping of call name to parameter types")

        scan = ScanConfig()
        if "exclude" in scan_raw:
            scan.exclude = list(scan_raw["exclude"])
        if "include" in scan_raw:
            scan.include = list(scan_raw["include"])
        if "declared" in scan_raw:
            scan.declared = list(scan_raw["declared"])
        scan.target_api = int(_get(scan_raw, "target_api", DEFAULT_TARGET_API))
        if scan.target_api <= 0:
            raise ValueError(f"scan.target-api: must be positive, got {scan.target_api}")

        return cls(
            analysis=analysis,
            constants={str(k): str(v) for k, v in constants.items()},
            signatures={str(k): [str(t) for t in (v or [])] for k, v in signatures.items()},
            scan=scan,
        )

    def to_yaml(self) -> str:
        """Serialise to YAML string."""
        data = {
            "analysis": {
                "mode": self.analysis.mode,
                "max-states": self.analysis.max_states,
                "trace-calls": self.analysis.trace_calls,
            },
            "constants": dict(self.constants),
            "signatures": {name: list(types) for name, types in self.signatures.items()},
            "scan": {
                "exclude": list(self.scan.exclude),
                "include": list(self.scan.include),
                "declared": list(self.scan.declared),
                "target-api": self.scan.target_api,
            },
        }
        header = "# .literalflow.yml: literalflow configuration\n\n"
        return header + yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
