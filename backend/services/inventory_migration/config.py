"""
Inventory Migration - Configuration

All settings come from environment variables (a backend .env file is loaded
first). Defaults match the collections used by the cigar inventory app.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import MigrationConfigError

ROOT_DIR = Path(__file__).resolve().parents[2]


# =============================================================================
# MODES
# =============================================================================

class MigrationMode(str, Enum):
    """Migration execution modes."""
    DRY_RUN = "dry_run"     # Aggregate and verify in memory, write nothing
    REAL = "real"           # Write orders and movements to the store


class MovementIndexMode(str, Enum):
    """How movement index entries are persisted."""
    APPEND = "append"       # Auto-keyed insert; reruns duplicate entries
    UPSERT = "upsert"       # Deterministic key; reruns overwrite entries


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_MONGO_URL = "mongodb://localhost:27017"
DEFAULT_DB_NAME = "cigar_inventory"

LEGACY_COLLECTION = "inventory_logs"
INBOUND_ORDERS_COLLECTION = "inbound_orders"
OUTBOUND_ORDERS_COLLECTION = "outbound_orders"
MOVEMENTS_COLLECTION = "inventory_movements"

DEFAULT_STOCK_ITEM_TYPE = "cigar"
DEFAULT_ORDER_ID_PREFIX = "ORD-"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no", ""):
        return False
    raise MigrationConfigError(f"{name} must be true or false, got {value!r}")


def _parse_enum(name: str, value: str, enum_cls):
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise MigrationConfigError(f"{name} must be one of: {allowed}; got {value!r}")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise MigrationConfigError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class MigrationSettings:
    """Resolved settings for one migration run."""
    mongo_url: str = DEFAULT_MONGO_URL
    db_name: str = DEFAULT_DB_NAME

    legacy_collection: str = LEGACY_COLLECTION
    inbound_orders_collection: str = INBOUND_ORDERS_COLLECTION
    outbound_orders_collection: str = OUTBOUND_ORDERS_COLLECTION
    movements_collection: str = MOVEMENTS_COLLECTION

    mode: MigrationMode = MigrationMode.REAL
    movement_index_mode: MovementIndexMode = MovementIndexMode.APPEND
    atomic_groups: bool = False

    stock_item_type: str = DEFAULT_STOCK_ITEM_TYPE
    order_id_prefix: str = DEFAULT_ORDER_ID_PREFIX

    log_level: str = "INFO"
    group_preview_limit: int = 10

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        load_env_file: bool = True
    ) -> "MigrationSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (used in tests)
            load_env_file: If True, load ROOT_DIR/.env before reading os.environ
        """
        if environ is None:
            if load_env_file:
                load_dotenv(ROOT_DIR / ".env")
            environ = os.environ

        return cls(
            mongo_url=environ.get("MONGO_URL", DEFAULT_MONGO_URL),
            db_name=environ.get("DB_NAME", DEFAULT_DB_NAME),
            legacy_collection=environ.get("LEGACY_COLLECTION", LEGACY_COLLECTION),
            inbound_orders_collection=environ.get("INBOUND_ORDERS_COLLECTION", INBOUND_ORDERS_COLLECTION),
            outbound_orders_collection=environ.get("OUTBOUND_ORDERS_COLLECTION", OUTBOUND_ORDERS_COLLECTION),
            movements_collection=environ.get("MOVEMENTS_COLLECTION", MOVEMENTS_COLLECTION),
            mode=_parse_enum("MIGRATION_MODE", environ.get("MIGRATION_MODE", "real"), MigrationMode),
            movement_index_mode=_parse_enum(
                "MOVEMENT_INDEX_MODE", environ.get("MOVEMENT_INDEX_MODE", "append"), MovementIndexMode
            ),
            atomic_groups=_parse_bool("ATOMIC_GROUPS", environ.get("ATOMIC_GROUPS", "false")),
            stock_item_type=environ.get("STOCK_ITEM_TYPE", DEFAULT_STOCK_ITEM_TYPE),
            order_id_prefix=environ.get("ORDER_ID_PREFIX", DEFAULT_ORDER_ID_PREFIX),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            group_preview_limit=_parse_int("GROUP_PREVIEW_LIMIT", environ.get("GROUP_PREVIEW_LIMIT", "10")),
        )

    def order_collection(self, kind: str) -> str:
        """Target collection for an order kind ("inbound" or "outbound")."""
        if kind == "inbound":
            return self.inbound_orders_collection
        if kind == "outbound":
            return self.outbound_orders_collection
        raise ValueError(f"Unknown order kind: {kind}")
