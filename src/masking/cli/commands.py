"""
CLI command implementations.

- run: one masking pass inside a single transaction
- rules: print the effective rule registry
"""

import argparse
import json
import logging
import os
from pathlib import Path

import psycopg2
import requests

from utils.metrics import MetricsPusher
from utils.tracing import initialize_tracing, shutdown_tracing

from ..config.defaults import build_default_registry
from ..config.loader import load_registry
from ..config.rules import RuleRegistry
from ..config.settings import MaskingSettings
from ..engine import MaskingEngine
from ..errors import MaskingError
from ..generators import FakerGenerators
from ..store import PostgresStore
from .credentials import resolve_dsn

logger = logging.getLogger(__name__)


def build_registry(args: argparse.Namespace, generators: FakerGenerators) -> RuleRegistry:
    """Load the registry from ``--config`` (or the built-in one) and apply ``--tables``."""
    if getattr(args, "config", None):
        registry = load_registry(args.config, generators)
        logger.info(f"Loaded rule registry from {args.config}")
    else:
        registry = build_default_registry(generators)

    if getattr(args, "tables", None):
        registry = registry.select(args.tables)
    return registry


def build_settings(args: argparse.Namespace) -> MaskingSettings:
    """Environment defaults, overridden by the flags that were given."""
    return MaskingSettings.from_env().override(
        timeout_seconds=args.timeout,
        batch_size=args.batch_size,
        dry_run=True if args.dry_run else None,
        seed=args.seed,
    )


def cmd_run(args: argparse.Namespace) -> int:
    """
    Run one masking pass

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code: 0 on success, 1 on any failure
    """
    otlp_endpoint = args.otlp_endpoint or os.getenv("OTLP_ENDPOINT")
    if otlp_endpoint:
        initialize_tracing(otlp_endpoint=otlp_endpoint)

    store = None
    try:
        settings = build_settings(args)
        generators = FakerGenerators(seed=settings.seed)
        registry = build_registry(args, generators)

        logger.info(
            f"Masking {registry.column_count()} columns in {len(registry)} tables "
            f"(batch size {settings.batch_size}, timeout {settings.timeout_seconds:g}s"
            + (", dry run)" if settings.dry_run else ")")
        )

        store = PostgresStore.connect(resolve_dsn(args))
        summary = MaskingEngine(store, registry, settings).run()
    except MaskingError as e:
        logger.error(f"Obfuscation failed: {e}")
        return 1
    except (psycopg2.Error, requests.RequestException, ValueError) as e:
        logger.error(f"Obfuscation failed: {e}")
        return 1
    finally:
        if store is not None:
            store.close()
        if args.pushgateway:
            _push_metrics(args.pushgateway)
        if otlp_endpoint:
            shutdown_tracing()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(summary.to_dict(), indent=2))
        logger.info(f"Run summary written to {output_path}")

    return 0


def _push_metrics(gateway: str) -> None:
    # Metrics are best effort; a failed push must not change the run's outcome
    try:
        MetricsPusher(gateway).push()
    except OSError as e:
        logger.warning(f"Failed to push metrics to {gateway}: {e}")


def cmd_rules(args: argparse.Namespace) -> int:
    """
    Print the effective rule registry

    Returns:
        0, or 1 if the registry cannot be loaded
    """
    try:
        registry = build_registry(args, FakerGenerators())
    except MaskingError as e:
        logger.error(f"Invalid rule registry: {e}")
        return 1

    print(format_registry(registry))
    return 0


def format_registry(registry: RuleRegistry) -> str:
    """Human-readable listing of tables, keys and column rules."""
    lines = [
        f"Protected identities: {registry.identity_table}.{registry.identity_column} "
        f"(matched on {registry.match_column})",
        "",
    ]
    for table, config in registry:
        protected = " [protected rows skipped]" if registry.requires_identity_match(table) else ""
        lines.append(f"{table} (primary key: {', '.join(config.pk_fields)}){protected}")
        for column, rule in config.columns.items():
            generator = getattr(rule.generator, "__name__", repr(rule.generator))
            lines.append(f"  {column:<24} {generator:<28} null_frequency={rule.null_frequency:g}")
    return "\n".join(lines)
