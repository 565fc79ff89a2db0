"""
Behave environment configuration for Zone Change Orchestrator scenarios.
"""

import logging
import shutil
from pathlib import Path

import yaml

from zone_change_orchestrator.core.change_manager import ZoneChangeManager
from zone_change_orchestrator.providers.mock_provider import MockControlPlane

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def before_all(context):
    """Set up test environment before all tests."""
    context.base_dir = Path(__file__).parent.parent
    context.test_data_dir = context.base_dir / "test_data"
    context.test_data_dir.mkdir(exist_ok=True)

    context.test_zone = "example.com"

    context.initial_records = [
        {
            "name": "example.com",
            "type": "SOA",
            "ttl": 86400,
            "rdata": ["ns1.example.com. hostmaster.example.com. 1 3600 600 604800 300"],
        },
        {"name": "example.com", "type": "NS", "ttl": 86400, "rdata": ["ns1.example.com."]},
        {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.10"]},
    ]

    context.test_config = {
        "dns_providers": {
            "mock": {
                "total_servers": 10,
                "zones": {context.test_zone: context.initial_records},
            }
        },
        "default_provider": "mock",
        "orchestration": {
            "poll_interval": 0,
            "convergence_deadline": 5,
            "rollback_deadline": 5,
            "retry": {"base_delay": 0, "max_delay": 0},
        },
        "verification": {"enabled": True, "attempts": 1, "backoff": 0},
        "logging": {"level": "DEBUG", "file": None},
    }

    context.test_config_file = context.test_data_dir / "test_config.yaml"
    with open(context.test_config_file, "w") as f:
        yaml.dump(context.test_config, f)

    logger.info("Test environment setup complete")


def before_scenario(context, scenario):
    """Give every scenario its own control plane and manager."""
    context.scenario_name = scenario.name
    context.control_plane = MockControlPlane(
        {"zones": {context.test_zone: context.initial_records}}
    )
    context.zone_manager = ZoneChangeManager(
        context.test_config, transport=context.control_plane
    )
    context.zone = context.test_zone
    context.error = None

    logger.info(f"Starting scenario: {scenario.name}")


def after_scenario(context, scenario):
    """Report leftovers after each test scenario."""
    if context.control_plane.changelists:
        logger.warning(
            f"Scenario '{scenario.name}' left changelists behind: "
            f"{sorted(context.control_plane.changelists)}"
        )

    logger.info(f"Completed scenario: {scenario.name}")


def after_all(context):
    """Clean up test environment after all tests."""
    if context.test_data_dir.exists():
        shutil.rmtree(context.test_data_dir, ignore_errors=True)

    logger.info("Test environment cleanup complete")
