"""Configuration management for SLURM Manager."""
from __future__ import annotations

import argparse
import getpass
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "slurm-manager"


@dataclass
class Config:
    """Application configuration."""

    host: str = "127.0.0.1"
    port: int = 5000
    user: str = ""
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    history_days: int = 7
    refresh_cache: int = 20
    command_timeout: float = 10
    max_workers: int = 8
    confirm_threshold: int = 100
    log_level: str = "INFO"

    def __post_init__(self):
        # Default user to current user if not specified
        if not self.user:
            self.user = getpass.getuser()
        self.cache_dir = Path(self.cache_dir)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        """Create config from parsed arguments."""
        return cls(
            host=args.host,
            port=args.port,
            user=args.user,
            cache_dir=args.cache_dir.expanduser().resolve(),
            history_days=args.history_days,
            refresh_cache=args.refresh_cache,
            command_timeout=args.command_timeout,
            max_workers=args.max_workers,
            confirm_threshold=args.confirm_threshold,
            log_level=args.log_level,
        )

    def validate(self) -> List[str]:
        """
        Check value ranges.

        Returns list of error messages (empty if valid).
        """
        errors = []
        if not 1 <= self.port <= 65535:
            errors.append(f"Port must be between 1 and 65535, got {self.port}")
        if self.history_days < 1:
            errors.append("History days must be at least 1")
        if self.max_workers < 1:
            errors.append("Max workers must be at least 1")
        if self.command_timeout <= 0:
            errors.append("Command timeout must be positive")
        if self.confirm_threshold < 1:
            errors.append("Confirmation threshold must be at least 1")
        return errors


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="SLURM Manager - job, history and array cancellation API for Slurm clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Array cancellation selectors:
  (empty) or all    Entire array
  0-10              Index range (inclusive)
  0-20:2            Index range with step
  1,3,5,7           Explicit list of indices
""",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port to bind to (default: 5000)",
    )
    parser.add_argument(
        "--user",
        default=getpass.getuser(),
        help="Slurm username to filter jobs (default: current user)",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DEFAULT_CACHE_DIR,
        help=f"Directory for persistent caches (default: {DEFAULT_CACHE_DIR})",
    )
    parser.add_argument(
        "--history-days",
        type=int,
        default=7,
        help="Days of job history to show (default: 7)",
    )
    parser.add_argument(
        "--refresh-cache",
        type=int,
        default=20,
        help="Cache refresh interval in seconds (default: 20)",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=10,
        help="Timeout for slurm commands in seconds (default: 10)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=8,
        help="Parallel scontrol calls when refreshing jobs (default: 8)",
    )
    parser.add_argument(
        "--confirm-threshold",
        type=int,
        default=100,
        help="Array cancellations above this many tasks need confirmation (default: 100)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)
