"""
harreplay CLI package.

Commands live in ``harreplay/cli/commands``; each module exposes ``SUMMARY``,
``register_args(parser)`` and ``main(args) -> int`` and is discovered
automatically.
"""
from ._args import add_json_flag, add_log_file_flag, add_repo_root_flag
from ._output import OutputFormatter
from ._utils import exit_code_for, get_repo_root, load_config, setup_logging


def main(argv=None) -> int:
    from ._dispatcher import main as _main

    return _main(argv)


__all__ = [
    "OutputFormatter",
    "add_json_flag",
    "add_log_file_flag",
    "add_repo_root_flag",
    "exit_code_for",
    "get_repo_root",
    "load_config",
    "main",
    "setup_logging",
]
