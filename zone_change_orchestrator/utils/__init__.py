"""
Utility functions and helpers.

This package contains validation, retry, cancellation and configuration
helpers shared by the orchestration engine.
"""

from .cancellation import CancellationToken
from .config import OrchestrationSettings, config_logger, get_default_config, load_config
from .retry import RetryPolicy, call_with_retry
from .validators import validate_fqdn, validate_ipv4, validate_zone_name

__all__ = [
    "CancellationToken",
    "OrchestrationSettings",
    "RetryPolicy",
    "call_with_retry",
    "config_logger",
    "get_default_config",
    "load_config",
    "validate_fqdn",
    "validate_ipv4",
    "validate_zone_name",
]
