"""
Configuration and path management for adsift.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

# Default settings
DEFAULT_SCAN_DELAY = 0.3  # seconds


@dataclass
class AdsiftConfig:
    """Main configuration."""

    # Network blocking
    adblock_enabled: bool = True

    # User-supplied filter rules
    custom_rules_enabled: bool = True
    rule_files: list[str] = field(default_factory=list)

    # Element heuristics
    heuristics_enabled: bool = True
    scan_delay: float = DEFAULT_SCAN_DELAY

    @classmethod
    def load(cls, path: Path | None = None) -> "AdsiftConfig":
        """Load configuration from file."""
        if path is None:
            path = get_config_dir() / "config.json"

        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls(
            adblock_enabled=data.get("adblock_enabled", True),
            custom_rules_enabled=data.get("custom_rules_enabled", True),
            rule_files=list(data.get("rule_files", [])),
            heuristics_enabled=data.get("heuristics_enabled", True),
            scan_delay=float(data.get("scan_delay", DEFAULT_SCAN_DELAY)),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = get_config_dir() / "config.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "adblock_enabled": self.adblock_enabled,
            "custom_rules_enabled": self.custom_rules_enabled,
            "rule_files": self.rule_files,
            "heuristics_enabled": self.heuristics_enabled,
            "scan_delay": self.scan_delay,
        }

        with open(path, "w") as f:
            json.dump(data, f, indent=2)


def get_config_dir() -> Path:
    """Get config directory following platform conventions."""
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

    return base / "adsift"


def resolve_rule_files(cfg: AdsiftConfig | None = None) -> list[Path]:
    """Resolve the rule files to load.

    Priority:
    1. rule_files from config, in order
    2. ADSIFT_RULE_FILE environment variable, appended last
    """
    if cfg is None:
        cfg = AdsiftConfig.load()

    paths = [Path(p).expanduser() for p in cfg.rule_files]

    env_path = os.environ.get("ADSIFT_RULE_FILE")
    if env_path:
        paths.append(Path(env_path).expanduser())

    return paths
