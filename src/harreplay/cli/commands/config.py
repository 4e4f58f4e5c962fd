"""
harreplay config command.

SUMMARY: Show the effective configuration (defaults + project file + environment)
"""

from __future__ import annotations

import argparse

import yaml

from harreplay.cli import OutputFormatter, add_json_flag, add_repo_root_flag, exit_code_for, load_config
from harreplay.core.exceptions import HarReplayError

SUMMARY = "Show the effective configuration (defaults + project file + environment)"


def register_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--section",
        help="Only show one top-level section (e.g. replay, logging)",
    )
    add_json_flag(parser)
    add_repo_root_flag(parser)


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    try:
        cfg = load_config(args)
    except HarReplayError as exc:
        formatter.error(exc)
        return exit_code_for(exc)

    section = getattr(args, "section", None)
    if section:
        if section not in cfg:
            formatter.error(KeyError(section), f"Unknown configuration section: {section}")
            return 1
        cfg = {section: cfg[section]}

    if formatter.json_mode:
        formatter.json_output(cfg)
    else:
        formatter.text(yaml.safe_dump(cfg, sort_keys=False).rstrip())
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=SUMMARY)
    register_args(parser)
    raise SystemExit(main(parser.parse_args()))
