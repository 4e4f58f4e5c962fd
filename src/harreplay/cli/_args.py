"""Argument registration helpers reused across commands."""
from __future__ import annotations

import argparse


def add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )


def add_repo_root_flag(parser: argparse.ArgumentParser) -> None:
    """Add --repo-root, the directory searched for .harreplay/config.yaml."""
    parser.add_argument(
        "--repo-root",
        type=str,
        help="Directory containing .harreplay/config.yaml (defaults to the current directory)",
    )


def add_log_file_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-file",
        type=str,
        help="Write harreplay logs to this file",
    )


__all__ = ["add_json_flag", "add_repo_root_flag", "add_log_file_flag"]
