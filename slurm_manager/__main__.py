"""Entry point for running slurm_manager as a module."""

import logging

from slurm_manager.app import run_app
from slurm_manager.config import Config, parse_args
from slurm_manager.logging_utils import setup_logging


def main() -> None:
    """Main entry point."""
    args = parse_args()
    config = Config.from_args(args)
    setup_logging(getattr(logging, config.log_level))
    run_app(config)


if __name__ == "__main__":
    main()
