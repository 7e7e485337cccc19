"""
Tests for the inventory migration job, settings and process entry point.

End-to-end runs use the in-memory repository; the example scenario is the
three-record ledger (two PO-1 receipts, one SO-9 sale).
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from services.inventory_migration.config import (
    MigrationMode, MigrationSettings, MovementIndexMode
)
from services.inventory_migration.exceptions import MigrationConfigError, RepositoryUnavailableError
from services.inventory_migration.job import InventoryMigrationJob, MigrationJobBuilder
from services.inventory_migration.repository import InMemoryRepository
from services.inventory_migration import runner

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

EXAMPLE_LOGS = [
    {"id": "r1", "type": "in", "referenceNo": "PO-1", "cigarId": "C1", "quantity": 10, "unitPrice": 5,
     "createdAt": T0, "attachments": ["po-1.pdf"]},
    {"id": "r2", "type": "in", "referenceNo": "PO-1", "cigarId": "C2", "quantity": 4,
     "createdAt": T0 + timedelta(hours=1), "attachments": ["po-1.pdf"]},
    {"id": "r3", "type": "out", "referenceNo": "SO-9", "cigarId": "C1", "quantity": 3,
     "reason": "sale to member", "createdAt": T0 + timedelta(hours=2)},
]


def seeded_repository(documents=EXAMPLE_LOGS):
    repo = InMemoryRepository("test")
    repo.seed("inventory_logs", documents)
    return repo


class FailingUpsertRepository(InMemoryRepository):
    """Rejects order upserts for selected reference numbers."""

    def __init__(self, bad_refs):
        super().__init__("failing")
        self.bad_refs = set(bad_refs)

    async def upsert(self, collection, key, document):
        if key in self.bad_refs:
            raise RuntimeError("document too large")
        await super().upsert(collection, key, document)


class TestMigrationSettings:
    """Tests for MigrationSettings.from_env."""

    def test_defaults(self):
        settings = MigrationSettings.from_env({})

        assert settings.legacy_collection == "inventory_logs"
        assert settings.inbound_orders_collection == "inbound_orders"
        assert settings.outbound_orders_collection == "outbound_orders"
        assert settings.movements_collection == "inventory_movements"
        assert settings.mode == MigrationMode.REAL
        assert settings.movement_index_mode == MovementIndexMode.APPEND
        assert settings.atomic_groups is False
        assert settings.stock_item_type == "cigar"
        assert settings.order_id_prefix == "ORD-"

    def test_overrides(self):
        settings = MigrationSettings.from_env({
            "MONGO_URL": "mongodb://db:27017",
            "DB_NAME": "shop",
            "MIGRATION_MODE": "DRY_RUN",
            "MOVEMENT_INDEX_MODE": "upsert",
            "ATOMIC_GROUPS": "true",
            "LOG_LEVEL": "debug",
            "GROUP_PREVIEW_LIMIT": "3",
        })

        assert settings.mongo_url == "mongodb://db:27017"
        assert settings.db_name == "shop"
        assert settings.mode == MigrationMode.DRY_RUN
        assert settings.movement_index_mode == MovementIndexMode.UPSERT
        assert settings.atomic_groups is True
        assert settings.log_level == "DEBUG"
        assert settings.group_preview_limit == 3

    @pytest.mark.parametrize("env", [
        {"MIGRATION_MODE": "sometimes"},
        {"MOVEMENT_INDEX_MODE": "merge"},
        {"ATOMIC_GROUPS": "maybe"},
        {"GROUP_PREVIEW_LIMIT": "ten"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(MigrationConfigError):
            MigrationSettings.from_env(env)

    def test_order_collection(self):
        settings = MigrationSettings()
        assert settings.order_collection("inbound") == "inbound_orders"
        assert settings.order_collection("outbound") == "outbound_orders"
        with pytest.raises(ValueError):
            settings.order_collection("transfer")


@pytest.mark.asyncio
class TestInventoryMigrationJobReal:
    """End-to-end runs that write to the store."""

    async def test_example_scenario(self):
        repo = seeded_repository()
        summary = await InventoryMigrationJob(repo).run(MigrationMode.REAL)

        inbound = repo.get("inbound_orders", "PO-1")
        assert inbound["totalQuantity"] == 14
        assert inbound["totalValue"] == 50
        assert inbound["createdAt"] == T0
        assert len(inbound["items"]) == 2
        assert inbound["subtype"] == "purchase"

        outbound = repo.get("outbound_orders", "SO-9")
        assert outbound["subtype"] == "sale"
        assert outbound["totalQuantity"] == 3

        assert await repo.count("inventory_movements") == 3
        assert summary.inbound_orders_created == 1
        assert summary.outbound_orders_created == 1
        assert summary.movements_created == 3

        verification = summary.verification
        assert verification.stock_matches
        assert verification.legacy_stock == {"C1": 7, "C2": 4}
        assert verification.new_stock == {"C1": 7, "C2": 4}
        assert verification.record_count_matches
        assert verification.attachment_savings == 1

    async def test_legacy_collection_untouched(self):
        repo = seeded_repository()
        before = repo.documents("inventory_logs")

        await InventoryMigrationJob(repo).run(MigrationMode.REAL)

        assert repo.documents("inventory_logs") == before

    async def test_group_failure_does_not_abort_run(self):
        repo = FailingUpsertRepository({"PO-1"})
        repo.seed("inventory_logs", EXAMPLE_LOGS)

        summary = await InventoryMigrationJob(repo).run(MigrationMode.REAL)

        assert summary.inbound_orders_created == 0
        assert summary.outbound_orders_created == 1
        assert summary.write_stats.failed_groups[0]["reference_no"] == "PO-1"
        assert summary.has_failures
        # Stock parity fails but is reported, not raised
        assert not summary.stock_matches
        assert "FAIL" in summary.render()
        assert "PO-1" in summary.render()

    async def test_unreferenced_records_break_count_parity(self):
        logs = EXAMPLE_LOGS + [{"id": "r4", "type": "in", "cigarId": "C3", "quantity": 2}]
        summary = await InventoryMigrationJob(seeded_repository(logs)).run(MigrationMode.REAL)

        verification = summary.verification
        assert not verification.record_count_matches
        assert verification.migratable_count_matches
        assert verification.mismatches[0].product_id == "C3"
        assert summary.analysis.records_missing_reference == ["r4"]

    async def test_oversized_quantity_does_not_abort_run(self):
        logs = [
            {"id": "r1", "type": "in", "referenceNo": "PO-1", "cigarId": "C1", "quantity": 5},
            {"id": "r2", "type": "in", "referenceNo": "PO-2", "cigarId": "C2", "quantity": 10 ** 400},
        ]
        repo = seeded_repository(logs)

        summary = await InventoryMigrationJob(repo).run(MigrationMode.REAL)

        assert summary.inbound_orders_created == 2
        assert repo.get("inbound_orders", "PO-1")["totalQuantity"] == 5
        assert repo.get("inbound_orders", "PO-2")["totalQuantity"] == 0
        assert summary.stock_matches

    async def test_legacy_field_variants_pass_verification(self):
        logs = [
            {"id": "r1", "transaction_type": "in", "reference_no": "PO-1", "product_id": "C1", "quantity": 5},
            {"id": "r2", "type": "in", "referenceNo": "PO-2", "cigarId": "C2", "itemType": "cigar ", "quantity": 5},
            {"id": "r3", "transactionType": None, "type": "in", "referenceNo": "PO-3", "cigarId": "C3", "quantity": 5},
        ]

        summary = await InventoryMigrationJob(seeded_repository(logs)).run(MigrationMode.REAL)

        assert summary.inbound_orders_created == 2
        assert [r["legacy_id"] for r in summary.analysis.invalid_records] == ["r3"]
        assert summary.verification.legacy_stock == {"C1": 5, "C2": 5}
        assert summary.stock_matches
        assert summary.verification.migratable_count_matches

    async def test_rerun_append_mode(self):
        repo = seeded_repository()
        job = InventoryMigrationJob(repo)

        await job.run(MigrationMode.REAL)
        await job.run(MigrationMode.REAL)

        assert await repo.count("inbound_orders") == 1
        assert await repo.count("outbound_orders") == 1
        assert await repo.count("inventory_movements") == 6

    async def test_rerun_upsert_mode_is_idempotent(self):
        repo = seeded_repository()
        job = MigrationJobBuilder().with_repository(repo).movement_index_mode(MovementIndexMode.UPSERT).build()

        await job.run(MigrationMode.REAL)
        summary = await job.run(MigrationMode.REAL)

        assert await repo.count("inventory_movements") == 3
        assert summary.verification.stock_matches

    async def test_atomic_groups(self):
        repo = seeded_repository()
        job = MigrationJobBuilder().with_repository(repo).atomic_groups(True).build()

        summary = await job.run(MigrationMode.REAL)

        assert summary.movements_created == 3
        assert summary.verification.stock_matches

    async def test_unreadable_store_is_fatal(self):
        repo = seeded_repository()
        repo.scan_all = lambda collection: _failing_scan()

        with pytest.raises(RepositoryUnavailableError):
            await InventoryMigrationJob(repo).run(MigrationMode.REAL)


async def _failing_scan():
    raise ConnectionError("no route to host")
    yield  # pragma: no cover


@pytest.mark.asyncio
class TestInventoryMigrationJobDryRun:
    """Dry runs aggregate and verify without writing."""

    async def test_dry_run_writes_nothing(self):
        repo = seeded_repository()
        summary = await InventoryMigrationJob(repo).run(MigrationMode.DRY_RUN)

        assert summary.mode == "dry_run"
        assert await repo.count("inbound_orders") == 0
        assert await repo.count("outbound_orders") == 0
        assert await repo.count("inventory_movements") == 0

    async def test_dry_run_reports_planned_counts_and_parity(self):
        summary = await InventoryMigrationJob(seeded_repository()).run(MigrationMode.DRY_RUN)

        assert summary.inbound_orders_created == 1
        assert summary.outbound_orders_created == 1
        assert summary.movements_created == 3
        assert summary.stock_matches
        assert summary.verification.attachment_savings == 1
        assert [order["referenceNo"] for order in summary.sample_orders] == ["PO-1", "SO-9"]
        assert summary.sample_orders[0]["createdAt"] == T0.isoformat()

    async def test_mode_defaults_to_settings(self):
        settings = MigrationSettings(mode=MigrationMode.DRY_RUN)
        summary = await InventoryMigrationJob(seeded_repository(), settings).run()

        assert summary.mode == "dry_run"

    async def test_summary_to_dict(self):
        summary = await InventoryMigrationJob(seeded_repository()).run(MigrationMode.DRY_RUN)
        d = summary.to_dict()

        assert d["analysis"]["total_records"] == 3
        assert d["writes"]["orders_created"] == {"inbound": 1, "outbound": 1}
        assert d["verification"]["stock_matches"] is True


class TestMigrationJobBuilder:
    """Tests for MigrationJobBuilder."""

    def test_requires_repository(self):
        with pytest.raises(ValueError):
            MigrationJobBuilder().build()

    def test_overrides_apply_to_settings(self):
        job = (MigrationJobBuilder()
               .with_repository(InMemoryRepository())
               .with_settings(MigrationSettings(order_id_prefix="WEB-"))
               .mode(MigrationMode.DRY_RUN)
               .build())

        assert job.settings.mode == MigrationMode.DRY_RUN
        assert job.settings.order_id_prefix == "WEB-"
        assert job.outbound_aggregator.order_id_prefix == "WEB-"


@pytest.mark.asyncio
class TestRunner:
    """Tests for the process entry point exit codes."""

    async def test_successful_run_exits_zero(self, capsys):
        code = await runner.main(MigrationSettings(), seeded_repository())

        assert code == 0
        output = capsys.readouterr().out
        assert "Inbound Orders: 1" in output
        assert "Data integrity verified: PASS" in output

    async def test_verification_failure_still_exits_zero(self, capsys):
        logs = EXAMPLE_LOGS + [{"id": "r4", "type": "out", "cigarId": "C1", "quantity": 1}]
        code = await runner.main(MigrationSettings(), seeded_repository(logs))

        assert code == 0
        assert "Data integrity verified: FAIL" in capsys.readouterr().out

    async def test_unreachable_store_exits_one(self):
        repo = seeded_repository()
        repo.ping = AsyncMock(side_effect=RepositoryUnavailableError("Cannot connect to MongoDB"))

        assert await runner.main(MigrationSettings(), repo) == 1

    async def test_invalid_configuration_exits_one(self):
        with patch.object(MigrationSettings, "from_env", side_effect=MigrationConfigError("bad mode")):
            assert await runner.main() == 1
