"""
Inventory Migration - Order Aggregation

Folds one reference group into an OrderAggregate (one document per inbound
or outbound transaction) and one MovementIndexEntry per member record.

Fold rules over the group's ordered members:
- totalQuantity / totalValue: running sums
- attachments, reason: first non-empty value wins
- operatorId, userId, userName: last non-empty value wins
- createdAt: earliest member timestamp
Every member becomes its own line item; duplicate products are not merged.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .analyzer import ReferenceGroup
from .classifier import OutboundSubtypeClassifier, extract_order_id
from .config import DEFAULT_ORDER_ID_PREFIX
from .records import LegacyMovementRecord, Number, TransactionType

logger = logging.getLogger(__name__)

SYSTEM_OPERATOR = "system"
ORDER_STATUS_COMPLETED = "completed"
INBOUND_SUBTYPE = "purchase"


class OrderKind(str, Enum):
    """Order collections produced by the migration."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


def _compact(document: Dict[str, Any]) -> Dict[str, Any]:
    """Drop absent optional fields."""
    return {key: value for key, value in document.items() if value is not None}


@dataclass
class OrderItem:
    """One line of an order, built from exactly one legacy record."""
    product_id: str
    product_name: str
    item_type: str
    quantity: Number
    unit_price: Optional[Number] = None

    @property
    def subtotal(self) -> Optional[Number]:
        if self.unit_price is None:
            return None
        return self.unit_price * self.quantity

    @classmethod
    def from_record(cls, record: LegacyMovementRecord) -> "OrderItem":
        return cls(
            product_id=record.product_id,
            product_name=record.product_name,
            item_type=record.item_type,
            quantity=record.quantity,
            unit_price=record.unit_price,
        )

    def to_document(self) -> Dict[str, Any]:
        return _compact({
            "productId": self.product_id,
            "productName": self.product_name,
            "itemType": self.item_type,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "subtotal": self.subtotal,
        })


@dataclass
class MovementIndexEntry:
    """
    Denormalized per-product movement row.

    createdAt is the owning order's timestamp, not the original record's.
    """
    product_id: str
    product_name: str
    item_type: str
    transaction_type: TransactionType
    quantity: Number
    reference_no: str
    order_kind: OrderKind
    created_at: datetime
    line_index: int
    reason: Optional[str] = None
    unit_price: Optional[Number] = None

    @property
    def document_key(self) -> str:
        """Deterministic key used when the index is upserted instead of appended."""
        return f"{self.order_kind.value}:{self.reference_no}:{self.line_index}:{self.product_id}"

    def to_document(self) -> Dict[str, Any]:
        return _compact({
            "productId": self.product_id,
            "productName": self.product_name,
            "itemType": self.item_type,
            "transactionType": self.transaction_type.value,
            "quantity": self.quantity,
            "referenceNo": self.reference_no,
            "orderKind": self.order_kind.value,
            "lineIndex": self.line_index,
            "reason": self.reason,
            "unitPrice": self.unit_price,
            "createdAt": self.created_at,
        })


@dataclass
class OrderAggregate:
    """Normalized single-document representation of one reference group."""
    reference_no: str
    kind: OrderKind
    subtype: str
    items: List[OrderItem]
    total_quantity: Number
    total_value: Number
    reason: str
    operator_id: str
    created_at: datetime
    updated_at: datetime
    attachments: Optional[List[Any]] = None
    source_reason: Optional[str] = None  # reason as found on members, before defaulting
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    status: str = ORDER_STATUS_COMPLETED

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.IN if self.kind == OrderKind.INBOUND else TransactionType.OUT

    @property
    def attachment_count(self) -> int:
        return len(self.attachments) if self.attachments else 0

    def movement_entries(self) -> List[MovementIndexEntry]:
        """One index entry per line item, anchored to the order's createdAt."""
        return [
            MovementIndexEntry(
                product_id=item.product_id,
                product_name=item.product_name,
                item_type=item.item_type,
                transaction_type=self.transaction_type,
                quantity=item.quantity,
                reference_no=self.reference_no,
                order_kind=self.kind,
                created_at=self.created_at,
                line_index=index,
                reason=self.source_reason,
                unit_price=item.unit_price,
            )
            for index, item in enumerate(self.items)
        ]

    def to_document(self) -> Dict[str, Any]:
        document = {
            "referenceNo": self.reference_no,
            "kind": self.kind.value,
            "subtype": self.subtype,
            "reason": self.reason,
            "items": [item.to_document() for item in self.items],
            "totalQuantity": self.total_quantity,
            "totalValue": self.total_value,
            "attachments": self.attachments,
            "status": self.status,
            "operatorId": self.operator_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.kind == OrderKind.OUTBOUND:
            document["orderId"] = self.order_id
            document["userId"] = self.user_id
            document["userName"] = self.user_name
        return _compact(document)


@dataclass
class _GroupFold:
    """Running state while folding a group's members."""
    items: List[OrderItem] = field(default_factory=list)
    total_quantity: Number = 0
    total_value: Number = 0
    attachments: Optional[List[Any]] = None
    reason: Optional[str] = None
    operator_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    created_at: Optional[datetime] = None

    def absorb(self, record: LegacyMovementRecord) -> None:
        item = OrderItem.from_record(record)
        self.items.append(item)

        self.total_quantity += item.quantity
        if item.subtotal is not None:
            self.total_value += item.subtotal

        # first non-empty wins
        if self.attachments is None and record.attachments:
            self.attachments = list(record.attachments)
        if self.reason is None and record.reason:
            self.reason = record.reason

        # last non-empty wins
        if record.operator_id:
            self.operator_id = record.operator_id
        if record.user_id:
            self.user_id = record.user_id
        if record.user_name:
            self.user_name = record.user_name

        if self.created_at is None or record.created_at < self.created_at:
            self.created_at = record.created_at


class OrderAggregator(ABC):
    """
    Base aggregator; subclasses fix the order kind and subtype rules.

    Usage:
        aggregate = InboundAggregator().aggregate(group, migrated_at)
        entries = aggregate.movement_entries()
    """

    kind: OrderKind
    transaction_type: TransactionType
    default_reason: str = ""

    def aggregate(self, group: ReferenceGroup, migrated_at: Optional[datetime] = None) -> OrderAggregate:
        """
        Fold a reference group into an OrderAggregate.

        Raises:
            ValueError: if the group is empty or of the wrong transaction type
        """
        if group.transaction_type != self.transaction_type:
            raise ValueError(
                f"{type(self).__name__} cannot aggregate {group.transaction_type.value} group {group.reference_no}"
            )
        if not group.records:
            raise ValueError(f"Reference group {group.label} has no records")

        fold = _GroupFold()
        for record in group.ordered_records():
            fold.absorb(record)

        aggregate = OrderAggregate(
            reference_no=group.reference_no,
            kind=self.kind,
            subtype=self.classify(fold),
            items=fold.items,
            total_quantity=fold.total_quantity,
            total_value=fold.total_value,
            reason=fold.reason or self.default_reason,
            source_reason=fold.reason,
            operator_id=fold.operator_id or SYSTEM_OPERATOR,
            attachments=fold.attachments,
            created_at=fold.created_at,
            updated_at=migrated_at or datetime.now(timezone.utc),
        )
        self.finalize(aggregate, fold)
        return aggregate

    @abstractmethod
    def classify(self, fold: _GroupFold) -> str:
        """Subtype of the order being built."""
        pass

    def finalize(self, aggregate: OrderAggregate, fold: _GroupFold) -> None:
        """Hook for kind-specific fields."""
        pass


class InboundAggregator(OrderAggregator):
    """Purchases: every inbound group is a "purchase" order."""

    kind = OrderKind.INBOUND
    transaction_type = TransactionType.IN
    default_reason = "入库"

    def classify(self, fold: _GroupFold) -> str:
        return INBOUND_SUBTYPE


class OutboundAggregator(OrderAggregator):
    """Outbound orders, typed from the resolved reason and linked to sales orders."""

    kind = OrderKind.OUTBOUND
    transaction_type = TransactionType.OUT
    default_reason = "出库"

    def __init__(
        self,
        classifier: Optional[OutboundSubtypeClassifier] = None,
        order_id_prefix: str = DEFAULT_ORDER_ID_PREFIX
    ):
        self.classifier = classifier or OutboundSubtypeClassifier()
        self.order_id_prefix = order_id_prefix

    def classify(self, fold: _GroupFold) -> str:
        return self.classifier.classify(fold.reason).value

    def finalize(self, aggregate: OrderAggregate, fold: _GroupFold) -> None:
        aggregate.order_id = extract_order_id(aggregate.reference_no, self.order_id_prefix)
        aggregate.user_id = fold.user_id
        aggregate.user_name = fold.user_name
