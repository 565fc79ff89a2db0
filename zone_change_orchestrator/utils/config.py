"""
Configuration loading and logging setup.

Configuration is a plain dictionary read from YAML. Sections that are
absent fall back to the defaults returned by ``get_default_config``.
"""

import copy
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def load_config(config_path: str) -> Dict:
    """Load configuration from YAML file."""
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Configuration loaded from {config_path}")
        return config
    except FileNotFoundError:
        logger.warning(f"Config file {config_path} not found, using defaults")
        return get_default_config()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing config file: {e}")
        sys.exit(1)


def get_default_config() -> Dict:
    """Return default configuration."""
    return copy.deepcopy(
        {
            "dns_providers": {"mock": {}},
            "default_provider": "mock",
            "orchestration": {},
            "verification": {"enabled": True},
            "logging": {"level": "INFO", "file": "zone_change_orchestrator.log"},
        }
    )


def config_logger(config: Dict):
    """Configure logging."""
    logging_config = config.get("logging", None)
    if logging_config:
        log_level = logging_config.get("level", "INFO")
        log_file = logging_config.get("file", "zone_change_orchestrator.log")

        handlers = [logging.StreamHandler(sys.stdout)]
        if log_file:
            handlers.insert(0, logging.FileHandler(log_file))

        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=handlers,
        )
        return

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@dataclass
class OrchestrationSettings:
    """Timing and policy knobs for one orchestrator instance."""

    poll_interval: float = 10.0
    convergence_deadline: float = 300.0
    rollback_deadline: float = 120.0
    cancellation_rollback_deadline: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    conflict_retries: int = 2
    max_poll_errors: int = 3
    rollback_on_timeout: bool = True
    rollback_on_unverified: bool = False
    wait_for_rollback: bool = True
    lock_timeout: Optional[float] = None
    bypass_safety_checks: bool = False
    skip_sign_and_serve_safety_check: bool = False
    verify: bool = True
    verify_attempts: int = 5
    verify_backoff: float = 30.0
    verify_timeout: float = 5.0
    nameservers: List[str] = field(default_factory=list)
    use_authoritative: bool = False

    @classmethod
    def from_config(cls, config: Dict) -> "OrchestrationSettings":
        orchestration = config.get("orchestration") or {}
        verification = config.get("verification") or {}
        defaults = cls()
        return cls(
            poll_interval=float(orchestration.get("poll_interval", defaults.poll_interval)),
            convergence_deadline=float(
                orchestration.get("convergence_deadline", defaults.convergence_deadline)
            ),
            rollback_deadline=float(
                orchestration.get("rollback_deadline", defaults.rollback_deadline)
            ),
            cancellation_rollback_deadline=float(
                orchestration.get(
                    "cancellation_rollback_deadline",
                    defaults.cancellation_rollback_deadline,
                )
            ),
            retry=RetryPolicy.from_config(orchestration.get("retry")),
            conflict_retries=int(
                orchestration.get("conflict_retries", defaults.conflict_retries)
            ),
            max_poll_errors=int(
                orchestration.get("max_poll_errors", defaults.max_poll_errors)
            ),
            rollback_on_timeout=bool(
                orchestration.get("rollback_on_timeout", defaults.rollback_on_timeout)
            ),
            rollback_on_unverified=bool(
                orchestration.get(
                    "rollback_on_unverified", defaults.rollback_on_unverified
                )
            ),
            wait_for_rollback=bool(
                orchestration.get("wait_for_rollback", defaults.wait_for_rollback)
            ),
            lock_timeout=orchestration.get("lock_timeout", defaults.lock_timeout),
            bypass_safety_checks=bool(
                orchestration.get("bypass_safety_checks", defaults.bypass_safety_checks)
            ),
            skip_sign_and_serve_safety_check=bool(
                orchestration.get(
                    "skip_sign_and_serve_safety_check",
                    defaults.skip_sign_and_serve_safety_check,
                )
            ),
            verify=bool(verification.get("enabled", defaults.verify)),
            verify_attempts=int(verification.get("attempts", defaults.verify_attempts)),
            verify_backoff=float(verification.get("backoff", defaults.verify_backoff)),
            verify_timeout=float(verification.get("timeout", defaults.verify_timeout)),
            nameservers=list(verification.get("nameservers") or []),
            use_authoritative=bool(
                verification.get("use_authoritative", defaults.use_authoritative)
            ),
        )
