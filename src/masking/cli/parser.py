"""
Command-line argument parser configuration.

This module sets up the argument parser for the db-mask CLI tool,
defining all commands and their options.
"""

import argparse


def _comma_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="db-mask",
        description="Mask sensitive PostgreSQL columns in place, keeping protected rows intact",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mask with the built-in rules, connection from DIRECT_URL / DATABASE_URL
  db-mask run

  # Rules from a YAML file, only two tables, reproducible values
  db-mask run --config masking_rules.yaml --tables member,test_table --seed 42

  # Rehearse a run: everything is executed, then rolled back
  db-mask run --dry-run --output summary.json

  # Credentials from Vault, metrics pushed when the run ends
  db-mask run --use-vault --pushgateway pushgateway:9091

  # Show the effective rule registry
  db-mask rules --config masking_rules.yaml
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: LOG_LEVEL or INFO)'
    )
    parser.add_argument(
        '--log-json',
        action='store_true',
        help='Emit JSON log lines instead of console format (default: LOG_JSON)'
    )
    parser.add_argument(
        '--log-file',
        help='Also write logs to this file, rotated (default: LOG_FILE)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== Run command ==========
    run_parser = subparsers.add_parser('run', help='Run one masking pass in a single transaction')
    run_parser.add_argument(
        '--dsn',
        help='PostgreSQL connection string (default: Vault with --use-vault, else DIRECT_URL, then DATABASE_URL)'
    )
    run_parser.add_argument(
        '--use-vault',
        action='store_true',
        help='Fetch credentials from HashiCorp Vault'
    )
    run_parser.add_argument(
        '--vault-path',
        help='Vault KV path of the credentials (default: secret/database/postgresql)'
    )
    run_parser.add_argument(
        '--config',
        help='YAML rule registry (default: built-in rules)'
    )
    run_parser.add_argument(
        '--tables',
        type=_comma_list,
        help='Comma-separated subset of registry tables to mask'
    )
    run_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Execute every update, then roll the transaction back'
    )
    run_parser.add_argument(
        '--seed',
        type=int,
        help='Seed for null-injection draws and Faker (default: MASKING_SEED or random)'
    )
    run_parser.add_argument(
        '--timeout',
        type=float,
        help='Transaction timeout in seconds (default: MASKING_TIMEOUT_SECONDS or 60)'
    )
    run_parser.add_argument(
        '--batch-size',
        type=int,
        help='Rows per UPDATE statement (default: MASKING_BATCH_SIZE or 500)'
    )
    run_parser.add_argument(
        '--output',
        help='Write the run summary as JSON to this file'
    )
    run_parser.add_argument(
        '--pushgateway',
        help='Prometheus Pushgateway address to push run metrics to'
    )
    run_parser.add_argument(
        '--otlp-endpoint',
        help='OTLP collector endpoint for traces (default: OTLP_ENDPOINT)'
    )

    # ========== Rules command ==========
    rules_parser = subparsers.add_parser('rules', help='Print the effective rule registry')
    rules_parser.add_argument(
        '--config',
        help='YAML rule registry (default: built-in rules)'
    )
    rules_parser.add_argument(
        '--tables',
        type=_comma_list,
        help='Comma-separated subset of registry tables'
    )

    return parser
