"""
Utility modules for the masking job

Provides:
- logging: structured/console logging setup
- tracing: OpenTelemetry spans
- metrics: Prometheus helpers and Pushgateway publishing
- sql_safety: identifier validation and quoting
- retry: backoff for connection bootstrap
- vault_client: HashiCorp Vault integration for database credentials
"""

__version__ = "1.0.0"
__all__ = ["logging", "tracing", "metrics", "sql_safety", "retry", "vault_client"]
