"""
Inventory Migration - Migration Job

Moves the flat inventory_logs collection to the order-based structure:
- inbound_orders (one document per inbound reference number)
- outbound_orders (one document per outbound reference number)
- inventory_movements (per-product index for fast stock queries)

The job runs four phases in order:
1. Analyze: group legacy records by (type, referenceNo)
2. Migrate inbound groups
3. Migrate outbound groups
4. Verify stock parity, record counts and attachment savings

A failing group is logged and skipped; only an unreachable store aborts the
run. The legacy collection is never modified.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .aggregator import (
    InboundAggregator, OrderAggregate, OrderAggregator, OrderKind, OutboundAggregator
)
from .analyzer import AnalysisResult, InventoryAnalyzer, ReferenceGroup
from .classifier import OutboundSubtypeClassifier
from .config import MigrationMode, MigrationSettings, MovementIndexMode
from .exceptions import GroupMigrationError
from .records import TransactionType
from .repository import MigrationRepository
from .verifier import MigrationVerifier, VerificationReport, build_report, log_report
from .writer import OrderWriter, WriteStats

logger = logging.getLogger(__name__)


@dataclass
class MigrationSummary:
    """Result of a migration run."""
    mode: str
    started_at: str
    completed_at: str
    duration_seconds: float
    analysis: AnalysisResult
    write_stats: WriteStats
    verification: Optional[VerificationReport] = None

    # Sample of aggregates (for dry-run review)
    sample_orders: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def inbound_orders_created(self) -> int:
        return self.write_stats.orders_created[OrderKind.INBOUND.value]

    @property
    def outbound_orders_created(self) -> int:
        return self.write_stats.orders_created[OrderKind.OUTBOUND.value]

    @property
    def movements_created(self) -> int:
        return self.write_stats.movements_created

    @property
    def stock_matches(self) -> bool:
        return self.verification is not None and self.verification.stock_matches

    @property
    def has_failures(self) -> bool:
        return bool(self.write_stats.failed_groups or self.write_stats.failed_movements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "analysis": self.analysis.to_dict(),
            "writes": self.write_stats.to_dict(),
            "verification": self.verification.to_dict() if self.verification else None,
            "sample_orders": self.sample_orders[:20],
        }

    def render(self) -> str:
        """Human-readable final report."""
        verification = self.verification
        lines = [
            "=" * 60,
            f"MIGRATION COMPLETED ({self.mode})",
            "=" * 60,
            "",
            "Summary:",
            f"   Inbound Orders: {self.inbound_orders_created}",
            f"   Outbound Orders: {self.outbound_orders_created}",
            f"   Inventory Movements: {self.movements_created}",
        ]
        if verification is not None:
            lines.append(f"   Storage Saved: {verification.attachment_savings} duplicate attachments")
            lines.append(
                f"   Record Count: {verification.movements_total} movements / "
                f"{verification.legacy_total} legacy records "
                f"({'MATCH' if verification.record_count_matches else 'MISMATCH'})"
            )
        if self.analysis.records_missing_reference:
            lines.append(f"   Records without referenceNo: {len(self.analysis.records_missing_reference)}")
        if self.analysis.invalid_records:
            lines.append(f"   Invalid legacy records: {len(self.analysis.invalid_records)}")
        if self.write_stats.failed_groups:
            lines.append(f"   Failed groups: {len(self.write_stats.failed_groups)}")
            for failure in self.write_stats.failed_groups[:20]:
                lines.append(f"      - {failure['kind']} {failure['reference_no']}: {failure['error']}")
        if self.write_stats.failed_movements:
            lines.append(f"   Failed movements: {len(self.write_stats.failed_movements)}")

        lines.append("")
        lines.append(f"Data integrity verified: {'PASS' if self.stock_matches else 'FAIL'}")
        if verification is not None:
            for mismatch in verification.mismatches[:20]:
                lines.append(
                    f"   - {mismatch.product_id}: old={mismatch.legacy_stock}, new={mismatch.new_stock}"
                )
        lines.append(f"Duration: {self.duration_seconds:.2f}s")
        return "\n".join(lines)


class InventoryMigrationJob:
    """
    Orchestrates analysis, aggregation, writing and verification.

    Usage:
        job = InventoryMigrationJob(repository, MigrationSettings.from_env())
        summary = await job.run(mode=MigrationMode.DRY_RUN)
        print(summary.render())

        if summary.stock_matches:
            summary = await job.run(mode=MigrationMode.REAL)
    """

    def __init__(
        self,
        repository: MigrationRepository,
        settings: Optional[MigrationSettings] = None,
        classifier: Optional[OutboundSubtypeClassifier] = None
    ):
        self.repository = repository
        self.settings = settings or MigrationSettings()
        self.inbound_aggregator = InboundAggregator()
        self.outbound_aggregator = OutboundAggregator(
            classifier=classifier,
            order_id_prefix=self.settings.order_id_prefix
        )

    async def run(self, mode: Optional[MigrationMode] = None) -> MigrationSummary:
        """
        Execute all four phases.

        Args:
            mode: DRY_RUN to aggregate and verify in memory, REAL to write.
                  Defaults to the configured mode.

        Raises:
            RepositoryUnavailableError: if the legacy collection cannot be read
        """
        mode = mode or self.settings.mode
        started_at = datetime.now(timezone.utc)

        logger.info(f"Starting inventory_logs migration in {mode.value} mode")

        # Step 1: analyze
        analysis = await self.analyze(now=started_at)

        # Steps 2-3: migrate
        stats = WriteStats()
        aggregates: List[OrderAggregate] = []
        writer = self._build_writer(stats) if mode == MigrationMode.REAL else None

        await self.migrate(analysis, TransactionType.IN, stats, writer, aggregates, started_at)
        await self.migrate(analysis, TransactionType.OUT, stats, writer, aggregates, started_at)

        # Step 4: verify
        if mode == MigrationMode.REAL:
            verification = await self._build_verifier().verify()
        else:
            verification = await self.verify_in_memory(aggregates)

        completed_at = datetime.now(timezone.utc)
        duration = (completed_at - started_at).total_seconds()

        summary = MigrationSummary(
            mode=mode.value,
            started_at=started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            duration_seconds=duration,
            analysis=analysis,
            write_stats=stats,
            verification=verification,
            sample_orders=[_sample(aggregate) for aggregate in aggregates[:20]],
        )

        logger.info(
            f"Migration completed: {stats.total_orders} orders, {stats.movements_created} movements, "
            f"{len(stats.failed_groups)} failed groups in {duration:.2f}s"
        )
        return summary

    async def analyze(self, now: Optional[datetime] = None) -> AnalysisResult:
        logger.info("Step 1: Analyzing existing data...")
        analyzer = InventoryAnalyzer(self.repository, self.settings.legacy_collection, now=now)
        analysis = await analyzer.analyze()
        for label, count in analysis.preview(self.settings.group_preview_limit):
            logger.info(f"   - {label}: {count} records")
        return analysis

    def _aggregator_for(self, transaction_type: TransactionType) -> OrderAggregator:
        if transaction_type == TransactionType.IN:
            return self.inbound_aggregator
        if transaction_type == TransactionType.OUT:
            return self.outbound_aggregator
        raise ValueError(f"No aggregator for transaction type {transaction_type.value}")

    async def migrate(
        self,
        analysis: AnalysisResult,
        transaction_type: TransactionType,
        stats: WriteStats,
        writer: Optional[OrderWriter],
        aggregates: List[OrderAggregate],
        migrated_at: datetime
    ) -> None:
        """
        Aggregate and persist every group of one transaction type.

        With no writer (dry run) aggregates are only collected, and counted
        as if they had been written.
        """
        aggregator = self._aggregator_for(transaction_type)
        groups = analysis.groups_of(transaction_type)
        logger.info(f"Migrating {aggregator.kind.value} records: {len(groups)} reference groups")

        for group in groups:
            logger.info(f"Processing {aggregator.kind.value} order: {group.reference_no} ({group.count} items)")
            try:
                aggregate = self._aggregate_group(aggregator, group, migrated_at)
            except GroupMigrationError as e:
                stats.record_group_failure(e.kind, e.reference_no, e.message)
                continue

            aggregates.append(aggregate)

            if writer is None:
                stats.record_order(aggregate.kind)
                stats.movements_created += len(aggregate.items)
            else:
                await writer.write(aggregate)

        logger.info(
            f"{aggregator.kind.value.capitalize()} records complete: "
            f"{stats.orders_created[aggregator.kind.value]} orders"
        )

    def _aggregate_group(
        self,
        aggregator: OrderAggregator,
        group: ReferenceGroup,
        migrated_at: datetime
    ) -> OrderAggregate:
        try:
            return aggregator.aggregate(group, migrated_at)
        except Exception as e:
            raise GroupMigrationError(group.reference_no, aggregator.kind.value, str(e))

    async def verify_in_memory(self, aggregates: List[OrderAggregate]) -> VerificationReport:
        """Verify planned aggregates against the legacy collection without writing."""
        logger.info("Verifying planned migration (dry run)...")
        legacy_documents = [doc async for doc in self.repository.scan_all(self.settings.legacy_collection)]
        movement_documents = [
            entry.to_document() for aggregate in aggregates for entry in aggregate.movement_entries()
        ]
        inbound = [a.to_document() for a in aggregates if a.kind == OrderKind.INBOUND]
        outbound = [a.to_document() for a in aggregates if a.kind == OrderKind.OUTBOUND]

        report = build_report(
            legacy_documents, movement_documents, inbound, outbound,
            item_type=self.settings.stock_item_type
        )
        log_report(report, self.settings.legacy_collection)
        return report

    def _build_writer(self, stats: WriteStats) -> OrderWriter:
        return OrderWriter(
            self.repository,
            order_collections={
                OrderKind.INBOUND.value: self.settings.inbound_orders_collection,
                OrderKind.OUTBOUND.value: self.settings.outbound_orders_collection,
            },
            movements_collection=self.settings.movements_collection,
            movement_index_mode=self.settings.movement_index_mode,
            atomic_groups=self.settings.atomic_groups,
            stats=stats,
        )

    def _build_verifier(self) -> MigrationVerifier:
        return MigrationVerifier(
            self.repository,
            legacy_collection=self.settings.legacy_collection,
            inbound_orders_collection=self.settings.inbound_orders_collection,
            outbound_orders_collection=self.settings.outbound_orders_collection,
            movements_collection=self.settings.movements_collection,
            item_type=self.settings.stock_item_type,
        )


def _sample(aggregate: OrderAggregate) -> Dict[str, Any]:
    document = aggregate.to_document()
    for key in ("createdAt", "updatedAt"):
        if isinstance(document.get(key), datetime):
            document[key] = document[key].isoformat()
    return document


class MigrationJobBuilder:
    """
    Builder pattern for creating migration jobs with various configurations.

    Example:
        job = (MigrationJobBuilder()
            .with_repository(MotorRepository(client, "cigar_inventory"))
            .with_settings(MigrationSettings.from_env())
            .movement_index_mode(MovementIndexMode.UPSERT)
            .build())
    """

    def __init__(self):
        self._repository = None
        self._settings = MigrationSettings()
        self._overrides: Dict[str, Any] = {}
        self._classifier = None

    def with_repository(self, repository: MigrationRepository) -> 'MigrationJobBuilder':
        """Set the document store."""
        self._repository = repository
        return self

    def with_settings(self, settings: MigrationSettings) -> 'MigrationJobBuilder':
        """Start from a settings object; later overrides still apply."""
        self._settings = settings
        return self

    def with_classifier(self, classifier: OutboundSubtypeClassifier) -> 'MigrationJobBuilder':
        """Use custom outbound subtype rules."""
        self._classifier = classifier
        return self

    def mode(self, mode: MigrationMode) -> 'MigrationJobBuilder':
        self._overrides["mode"] = mode
        return self

    def movement_index_mode(self, mode: MovementIndexMode) -> 'MigrationJobBuilder':
        self._overrides["movement_index_mode"] = mode
        return self

    def atomic_groups(self, enabled: bool) -> 'MigrationJobBuilder':
        self._overrides["atomic_groups"] = enabled
        return self

    def build(self) -> InventoryMigrationJob:
        """Build the migration job."""
        if self._repository is None:
            raise ValueError("Repository is required")

        settings = self._settings
        if self._overrides:
            settings = dataclasses.replace(settings, **self._overrides)

        return InventoryMigrationJob(self._repository, settings, classifier=self._classifier)
