#!/usr/bin/env python3
"""
Migrate inventory_logs into inbound_orders, outbound_orders and
inventory_movements, then verify stock parity.

Configured through the environment (MONGO_URL, DB_NAME, MIGRATION_MODE, ...).
The legacy collection is left untouched.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.inventory_migration.runner import cli

if __name__ == "__main__":
    cli()
