"""
Command-line interface for in-place data masking.

Available commands:
- run: Mask the configured columns in one transaction
- rules: Print the effective rule registry
"""

import sys

from utils.logging import configure_from_env, shutdown_logging

from .commands import cmd_rules, cmd_run
from .credentials import resolve_dsn
from .parser import create_parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the db-mask CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_env(
        level=args.log_level,
        log_file=args.log_file,
        json_format=True if args.log_json else None,
    )

    if args.command == 'run':
        exit_code = cmd_run(args)
    elif args.command == 'rules':
        exit_code = cmd_rules(args)
    else:
        parser.print_help()
        exit_code = 1

    shutdown_logging()
    sys.exit(exit_code)


__all__ = [
    'main',
    'cmd_run',
    'cmd_rules',
    'create_parser',
    'resolve_dsn',
]


if __name__ == '__main__':
    main()
