#!/usr/bin/env python3
"""
Zone Change Orchestrator - Main Entry Point

Runs the zone-change command from a source checkout without installing the
package; installed copies use the ``zone-change`` console script instead.
"""

from zone_change_orchestrator.cli.main import main

if __name__ == "__main__":
    main()
