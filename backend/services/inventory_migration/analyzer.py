"""
Inventory Migration - Analyzer

Scans the legacy collection once and folds every record into reference
groups keyed by (transaction type, reference number). Adjustments and
records without a reference number are reported, not grouped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidRecordError, RepositoryUnavailableError
from .records import LegacyMovementRecord, TransactionType, GROUPABLE_TYPES, read_legacy_record
from .repository import MigrationRepository

logger = logging.getLogger(__name__)

GroupKey = Tuple[TransactionType, str]


@dataclass
class ReferenceGroup:
    """Legacy records sharing one (transaction type, reference number) key."""
    transaction_type: TransactionType
    reference_no: str
    records: List[LegacyMovementRecord] = field(default_factory=list)

    @property
    def key(self) -> GroupKey:
        return (self.transaction_type, self.reference_no)

    @property
    def count(self) -> int:
        return len(self.records)

    def add(self, record: LegacyMovementRecord) -> None:
        if (record.transaction_type, record.reference_no) != self.key:
            raise ValueError(
                f"Record {record.id} ({record.transaction_type.value}:{record.reference_no}) "
                f"does not belong to group {self.label}"
            )
        self.records.append(record)

    def ordered_records(self) -> List[LegacyMovementRecord]:
        """Members in a reproducible order (stable sort by record id)."""
        return sorted(self.records, key=lambda record: record.id)

    @property
    def label(self) -> str:
        return f"{self.transaction_type.value}:{self.reference_no}"


@dataclass
class AnalysisResult:
    """Summary and groups produced by one scan of the legacy collection."""
    total_records: int = 0
    counts_by_type: Dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in TransactionType}
    )
    groups: Dict[GroupKey, ReferenceGroup] = field(default_factory=dict)
    records_missing_reference: List[str] = field(default_factory=list)
    adjustment_records: List[str] = field(default_factory=list)
    invalid_records: List[Dict[str, str]] = field(default_factory=list)

    def groups_of(self, transaction_type: TransactionType) -> List[ReferenceGroup]:
        """Groups of one transaction type, ordered by reference number."""
        return sorted(
            (g for g in self.groups.values() if g.transaction_type == transaction_type),
            key=lambda g: g.reference_no
        )

    @property
    def grouped_record_count(self) -> int:
        return sum(group.count for group in self.groups.values())

    def preview(self, limit: int = 10) -> List[Tuple[str, int]]:
        """First `limit` groups as (label, member count), in discovery order."""
        return [(group.label, group.count) for group in list(self.groups.values())[:limit]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "counts_by_type": dict(self.counts_by_type),
            "unique_references": len(self.groups),
            "grouped_records": self.grouped_record_count,
            "records_missing_reference": len(self.records_missing_reference),
            "adjustment_records": len(self.adjustment_records),
            "invalid_records": self.invalid_records[:100],
            "invalid_record_count": len(self.invalid_records),
        }


class InventoryAnalyzer:
    """
    Builds the reference group index from the legacy collection.

    Usage:
        analyzer = InventoryAnalyzer(repository, "inventory_logs")
        analysis = await analyzer.analyze()
        for group in analysis.groups_of(TransactionType.IN):
            ...
    """

    def __init__(
        self,
        repository: MigrationRepository,
        legacy_collection: str,
        now: Optional[datetime] = None
    ):
        self.repository = repository
        self.legacy_collection = legacy_collection
        self.now = now or datetime.now(timezone.utc)

    async def analyze(self) -> AnalysisResult:
        """
        Scan the legacy collection and group its records.

        Raises:
            RepositoryUnavailableError: if the collection cannot be read
        """
        logger.info(f"Analyzing legacy collection {self.legacy_collection}")
        result = AnalysisResult()

        try:
            documents = [document async for document in self.repository.scan_all(self.legacy_collection)]
        except RepositoryUnavailableError:
            raise
        except Exception as e:
            raise RepositoryUnavailableError(
                f"Cannot read legacy collection {self.legacy_collection}: {e}",
                details={"collection": self.legacy_collection}
            )

        for document in documents:
            self.add_document(result, document)

        logger.info(f"Total records: {result.total_records}")
        logger.info(
            "By type: IN=%d, OUT=%d, ADJUSTMENT=%d",
            result.counts_by_type["in"],
            result.counts_by_type["out"],
            result.counts_by_type["adjustment"]
        )
        logger.info(f"Unique reference numbers: {len(result.groups)}")
        if result.records_missing_reference:
            logger.warning(f"Records without referenceNo: {len(result.records_missing_reference)}")
        if result.invalid_records:
            logger.warning(f"Records rejected by schema: {len(result.invalid_records)}")

        return result

    def add_document(self, result: AnalysisResult, document: Mapping[str, Any]) -> None:
        """Fold one raw legacy document into `result`."""
        result.total_records += 1

        try:
            record = read_legacy_record(document, now=self.now)
        except InvalidRecordError as e:
            result.invalid_records.append({"legacy_id": e.legacy_id, "error": e.message})
            logger.debug(f"Rejected legacy record {e.legacy_id}: {e.message}")
            return

        result.counts_by_type[record.transaction_type.value] += 1

        if not record.has_reference:
            result.records_missing_reference.append(record.id)
            return

        if record.transaction_type not in GROUPABLE_TYPES:
            result.adjustment_records.append(record.id)
            return

        key = (record.transaction_type, record.reference_no)
        group = result.groups.get(key)
        if group is None:
            group = ReferenceGroup(record.transaction_type, record.reference_no)
            result.groups[key] = group
        group.add(record)
