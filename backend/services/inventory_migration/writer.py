"""
Inventory Migration - Order Writer

Persists aggregates and their movement index entries.

Failure policy:
- aggregate upsert fails: the group is abandoned and no index entries are
  written, so the index never points at a missing order
- an index entry fails after its aggregate succeeded: only that entry is
  recorded as failed, siblings continue
- atomic_groups=True: the aggregate and all entries commit together or the
  whole group fails
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from .aggregator import MovementIndexEntry, OrderAggregate, OrderKind
from .config import MovementIndexMode
from .repository import MigrationRepository, WriteOperation

logger = logging.getLogger(__name__)


@dataclass
class WriteStats:
    """Counters and failures collected while writing."""
    orders_created: Dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in OrderKind}
    )
    movements_created: int = 0
    failed_groups: List[Dict[str, Any]] = field(default_factory=list)
    failed_movements: List[Dict[str, Any]] = field(default_factory=list)

    def record_order(self, kind: OrderKind) -> None:
        self.orders_created[kind.value] += 1

    def record_movement(self) -> None:
        self.movements_created += 1

    def record_group_failure(self, kind: str, reference_no: str, error: str) -> None:
        self.failed_groups.append({
            "kind": kind,
            "reference_no": reference_no,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
        logger.error(f"Failed to migrate {kind} order {reference_no}: {error}")

    def record_movement_failure(self, entry: MovementIndexEntry, error: str) -> None:
        self.failed_movements.append({
            "reference_no": entry.reference_no,
            "product_id": entry.product_id,
            "line_index": entry.line_index,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
        logger.error(
            f"Failed to create movement for {entry.product_name} "
            f"({entry.reference_no} line {entry.line_index}): {error}"
        )

    @property
    def total_orders(self) -> int:
        return sum(self.orders_created.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders_created": dict(self.orders_created),
            "movements_created": self.movements_created,
            "failed_groups": self.failed_groups[:100],
            "failed_group_count": len(self.failed_groups),
            "failed_movements": self.failed_movements[:100],
            "failed_movement_count": len(self.failed_movements),
        }


class OrderWriter:
    """
    Writes OrderAggregates keyed by reference number and their index entries.

    Usage:
        writer = OrderWriter(repository, order_collections, "inventory_movements")
        await writer.write(aggregate)
        print(writer.stats.to_dict())
    """

    def __init__(
        self,
        repository: MigrationRepository,
        order_collections: Mapping[str, str],
        movements_collection: str,
        movement_index_mode: MovementIndexMode = MovementIndexMode.APPEND,
        atomic_groups: bool = False,
        stats: WriteStats = None
    ):
        """
        Args:
            repository: Target document store
            order_collections: Collection name per order kind ("inbound", "outbound")
            movements_collection: Collection for movement index entries
            movement_index_mode: APPEND (auto keys) or UPSERT (deterministic keys)
            atomic_groups: Commit each group in a single atomic write
            stats: Shared stats object; a new one is created if omitted
        """
        self.repository = repository
        self.order_collections = dict(order_collections)
        self.movements_collection = movements_collection
        self.movement_index_mode = movement_index_mode
        self.atomic_groups = atomic_groups
        self.stats = stats or WriteStats()

    def _order_collection(self, aggregate: OrderAggregate) -> str:
        return self.order_collections[aggregate.kind.value]

    async def write(self, aggregate: OrderAggregate) -> bool:
        """
        Persist one aggregate and its movement entries.

        Returns:
            True if the aggregate was stored (individual entries may still fail)
        """
        if self.atomic_groups:
            return await self._write_atomic(aggregate)

        try:
            await self.repository.upsert(
                self._order_collection(aggregate),
                aggregate.reference_no,
                aggregate.to_document()
            )
        except Exception as e:
            self.stats.record_group_failure(aggregate.kind.value, aggregate.reference_no, str(e))
            return False

        self.stats.record_order(aggregate.kind)
        logger.info(f"Created {aggregate.kind.value}_order: {aggregate.reference_no}")

        for entry in aggregate.movement_entries():
            try:
                await self._write_movement(entry)
            except Exception as e:
                self.stats.record_movement_failure(entry, str(e))
                continue
            self.stats.record_movement()

        return True

    async def _write_movement(self, entry: MovementIndexEntry) -> None:
        if self.movement_index_mode == MovementIndexMode.UPSERT:
            await self.repository.upsert(self.movements_collection, entry.document_key, entry.to_document())
        else:
            await self.repository.append(self.movements_collection, entry.to_document())

    def _movement_operation(self, entry: MovementIndexEntry) -> WriteOperation:
        key = entry.document_key if self.movement_index_mode == MovementIndexMode.UPSERT else None
        return WriteOperation(self.movements_collection, entry.to_document(), key=key)

    async def _write_atomic(self, aggregate: OrderAggregate) -> bool:
        entries = aggregate.movement_entries()
        operations = [
            WriteOperation(self._order_collection(aggregate), aggregate.to_document(), key=aggregate.reference_no)
        ]
        operations.extend(self._movement_operation(entry) for entry in entries)

        try:
            await self.repository.commit(operations)
        except Exception as e:
            self.stats.record_group_failure(aggregate.kind.value, aggregate.reference_no, str(e))
            return False

        self.stats.record_order(aggregate.kind)
        self.stats.movements_created += len(entries)
        logger.info(f"Created {aggregate.kind.value}_order: {aggregate.reference_no} ({len(entries)} movements, atomic)")
        return True
