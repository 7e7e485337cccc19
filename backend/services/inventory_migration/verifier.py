"""
Inventory Migration - Verification

Recomputes per-product net stock from the legacy log and from the new
movement index and compares them product by product. Also checks record
count parity and measures how many duplicate attachment entries the order
documents removed.

Legacy documents are read through the same record schema as the migration
itself; documents the schema rejects are left out of both counts.

Findings are reported, never raised: a failed check still completes the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import DEFAULT_STOCK_ITEM_TYPE
from .exceptions import InvalidRecordError
from .records import (
    DEFAULT_ITEM_TYPE, LegacyMovementRecord, Number, TransactionType,
    coerce_quantity, is_blank, read_legacy_record
)
from .repository import MigrationRepository

logger = logging.getLogger(__name__)


def read_legacy_records(documents: Iterable[Mapping[str, Any]]) -> List[LegacyMovementRecord]:
    """Schema-valid legacy records; rejected documents are skipped."""
    records = []
    for doc in documents:
        try:
            records.append(read_legacy_record(doc))
        except InvalidRecordError:
            continue
    return records


def _add_movement(stock: Dict[str, Number], product_id: str, movement: Any, quantity: Number) -> None:
    stock.setdefault(product_id, 0)
    if movement == TransactionType.IN.value:
        stock[product_id] += quantity
    elif movement == TransactionType.OUT.value:
        stock[product_id] -= quantity


def legacy_net_stock(
    records: Iterable[LegacyMovementRecord],
    item_type: str = DEFAULT_STOCK_ITEM_TYPE
) -> Dict[str, Number]:
    """Net stock per product over parsed legacy records of one item type."""
    stock: Dict[str, Number] = {}
    for record in records:
        if record.item_type != item_type:
            continue
        _add_movement(stock, record.product_id, record.transaction_type.value, record.quantity)
    return stock


def compute_legacy_stock(
    documents: Iterable[Mapping[str, Any]],
    item_type: str = DEFAULT_STOCK_ITEM_TYPE
) -> Dict[str, Number]:
    """
    Net stock per product from raw legacy documents: sum of "in" quantities
    minus sum of "out" quantities. Adjustments register the product with no
    effect on its stock.
    """
    return legacy_net_stock(read_legacy_records(documents), item_type)


def compute_net_stock(
    documents: Iterable[Mapping[str, Any]],
    item_type: str = DEFAULT_STOCK_ITEM_TYPE
) -> Dict[str, Number]:
    """
    Net stock per product from movement index documents.

    Entries of another item type, or without a product id, are ignored; a
    missing itemType counts as the default ("cigar").
    """
    stock: Dict[str, Number] = {}
    for doc in documents:
        product_id = doc.get("productId")
        if is_blank(product_id):
            continue
        doc_item_type = doc.get("itemType")
        doc_item_type = DEFAULT_ITEM_TYPE if is_blank(doc_item_type) else str(doc_item_type).strip()
        if doc_item_type != item_type:
            continue

        movement = doc.get("transactionType")
        movement = movement.strip().lower() if isinstance(movement, str) else None
        _add_movement(stock, str(product_id).strip(), movement, coerce_quantity(doc.get("quantity")))
    return stock


@dataclass
class StockMismatch:
    """Net stock disagreement for one product."""
    product_id: str
    legacy_stock: Number
    new_stock: Number

    @property
    def difference(self) -> Number:
        return self.new_stock - self.legacy_stock

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "legacy_stock": self.legacy_stock,
            "new_stock": self.new_stock,
            "difference": self.difference,
        }


def compare_stock(legacy: Mapping[str, Number], new: Mapping[str, Number]) -> List[StockMismatch]:
    """Key-by-key comparison over every product seen on either side (missing = 0)."""
    mismatches = []
    for product_id in sorted(set(legacy) | set(new)):
        legacy_stock = legacy.get(product_id, 0)
        new_stock = new.get(product_id, 0)
        if legacy_stock != new_stock:
            mismatches.append(StockMismatch(product_id, legacy_stock, new_stock))
    return mismatches


def count_attachments(documents: Iterable[Mapping[str, Any]]) -> int:
    """Total attachment descriptors across documents."""
    total = 0
    for doc in documents:
        attachments = doc.get("attachments")
        if isinstance(attachments, (list, tuple)):
            total += len(attachments)
    return total


def count_groupable_records(documents: Iterable[Mapping[str, Any]]) -> int:
    """Legacy records that should each produce one movement index entry."""
    return sum(1 for record in read_legacy_records(documents) if record.is_groupable)


@dataclass
class VerificationReport:
    """Outcome of comparing the legacy and migrated representations."""
    legacy_total: int = 0
    expected_movements: int = 0
    movements_total: int = 0
    inbound_orders_total: int = 0
    outbound_orders_total: int = 0
    legacy_stock: Dict[str, Number] = field(default_factory=dict)
    new_stock: Dict[str, Number] = field(default_factory=dict)
    mismatches: List[StockMismatch] = field(default_factory=list)
    legacy_attachments: int = 0
    new_attachments: int = 0

    @property
    def stock_matches(self) -> bool:
        return not self.mismatches

    @property
    def record_count_matches(self) -> bool:
        """Movement index size equals the whole legacy collection."""
        return self.movements_total == self.legacy_total

    @property
    def migratable_count_matches(self) -> bool:
        """Movement index size equals the legacy records that belong to a group."""
        return self.movements_total == self.expected_movements

    @property
    def attachment_savings(self) -> int:
        return self.legacy_attachments - self.new_attachments

    def to_dict(self) -> Dict[str, Any]:
        return {
            "legacy_total": self.legacy_total,
            "expected_movements": self.expected_movements,
            "movements_total": self.movements_total,
            "inbound_orders_total": self.inbound_orders_total,
            "outbound_orders_total": self.outbound_orders_total,
            "record_count_matches": self.record_count_matches,
            "migratable_count_matches": self.migratable_count_matches,
            "stock_matches": self.stock_matches,
            "products_checked": len(set(self.legacy_stock) | set(self.new_stock)),
            "mismatches": [m.to_dict() for m in self.mismatches],
            "legacy_attachments": self.legacy_attachments,
            "new_attachments": self.new_attachments,
            "attachment_savings": self.attachment_savings,
        }


def build_report(
    legacy_documents: List[Mapping[str, Any]],
    movement_documents: List[Mapping[str, Any]],
    inbound_orders: List[Mapping[str, Any]],
    outbound_orders: List[Mapping[str, Any]],
    item_type: str = DEFAULT_STOCK_ITEM_TYPE,
    movements_total: Optional[int] = None
) -> VerificationReport:
    """
    Build a VerificationReport from already-loaded documents.

    `movement_documents` may be pre-filtered to `item_type`; pass the full
    index size as `movements_total` in that case.
    """
    legacy_records = read_legacy_records(legacy_documents)
    legacy_stock = legacy_net_stock(legacy_records, item_type)
    new_stock = compute_net_stock(movement_documents, item_type)

    return VerificationReport(
        legacy_total=len(legacy_documents),
        expected_movements=sum(1 for record in legacy_records if record.is_groupable),
        movements_total=len(movement_documents) if movements_total is None else movements_total,
        inbound_orders_total=len(inbound_orders),
        outbound_orders_total=len(outbound_orders),
        legacy_stock=legacy_stock,
        new_stock=new_stock,
        mismatches=compare_stock(legacy_stock, new_stock),
        legacy_attachments=count_attachments(legacy_documents),
        new_attachments=count_attachments(inbound_orders) + count_attachments(outbound_orders),
    )


class MigrationVerifier:
    """
    Reads both representations from the store and reports parity.

    The verifier only reads; it never writes to any collection.
    """

    def __init__(
        self,
        repository: MigrationRepository,
        legacy_collection: str,
        inbound_orders_collection: str,
        outbound_orders_collection: str,
        movements_collection: str,
        item_type: str = DEFAULT_STOCK_ITEM_TYPE
    ):
        self.repository = repository
        self.legacy_collection = legacy_collection
        self.inbound_orders_collection = inbound_orders_collection
        self.outbound_orders_collection = outbound_orders_collection
        self.movements_collection = movements_collection
        self.item_type = item_type

    async def _load(self, collection: str) -> List[Dict[str, Any]]:
        return [doc async for doc in self.repository.scan_all(collection)]

    async def verify(self) -> VerificationReport:
        logger.info("Verifying data integrity...")

        legacy_documents = await self._load(self.legacy_collection)
        inbound_orders = await self._load(self.inbound_orders_collection)
        outbound_orders = await self._load(self.outbound_orders_collection)
        movement_documents = [
            doc async for doc in self.repository.query(self.movements_collection, {"itemType": self.item_type})
        ]
        movements_total = await self.repository.count(self.movements_collection)

        report = build_report(
            legacy_documents,
            movement_documents,
            inbound_orders,
            outbound_orders,
            item_type=self.item_type,
            movements_total=movements_total,
        )
        log_report(report, self.legacy_collection)
        return report


def log_report(report: VerificationReport, legacy_collection: str = "legacy") -> None:
    """Log the findings of a verification report."""
    logger.info(f"Old structure: {legacy_collection}: {report.legacy_total} records")
    logger.info(
        f"New structure: {report.inbound_orders_total} inbound orders, "
        f"{report.outbound_orders_total} outbound orders, {report.movements_total} movements"
    )

    if report.record_count_matches:
        logger.info("Record count matches")
    else:
        logger.warning(
            f"Record count mismatch: expected {report.legacy_total}, got {report.movements_total} "
            f"({report.expected_movements} legacy records belong to a reference group)"
        )

    for mismatch in report.mismatches:
        logger.error(
            f"Stock mismatch for {mismatch.product_id}: "
            f"old={mismatch.legacy_stock}, new={mismatch.new_stock}"
        )
    if report.stock_matches:
        logger.info("All stock calculations match")

    logger.info(
        f"Attachments: old={report.legacy_attachments}, new={report.new_attachments}, "
        f"saved={report.attachment_savings} duplicate entries"
    )
