"""
harreplay extract command.

SUMMARY: Unpack the embedded replay server bundle into a directory
"""

from __future__ import annotations

import argparse
from pathlib import Path

from harreplay.cli import OutputFormatter, add_json_flag, add_repo_root_flag, exit_code_for, load_config
from harreplay.core.bundle import BUNDLE_ROOT_NAME, EmbeddedBundleProvider
from harreplay.core.exceptions import HarReplayError

SUMMARY = "Unpack the embedded replay server bundle into a directory"


def register_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dest",
        required=True,
        help="Scratch directory to extract into (created if missing)",
    )
    add_json_flag(parser)
    add_repo_root_flag(parser)


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    try:
        replay_cfg = load_config(args).get("replay") or {}
        root_name = str((replay_cfg.get("bundle") or {}).get("root_name") or BUNDLE_ROOT_NAME)
        dest = Path(args.dest).expanduser()
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            formatter.error(exc, f"Cannot create {dest}: {exc}")
            return 1
        server_dir = EmbeddedBundleProvider(root_name=root_name).provide(dest.resolve())
    except HarReplayError as exc:
        formatter.error(exc)
        return exit_code_for(exc)

    formatter.success(
        {"serverDir": str(server_dir), "files": sorted(p.name for p in server_dir.iterdir())},
        f"Extracted replay server to {server_dir}",
    )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=SUMMARY)
    register_args(parser)
    raise SystemExit(main(parser.parse_args()))
