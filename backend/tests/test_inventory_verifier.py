"""
Tests for migration verification: stock parity, count parity and
attachment savings.
"""
import pytest

from services.inventory_migration.repository import InMemoryRepository
from services.inventory_migration.verifier import (
    MigrationVerifier, StockMismatch, VerificationReport, build_report, compare_stock,
    compute_legacy_stock, compute_net_stock, count_attachments, count_groupable_records
)


LEGACY = [
    {"id": "r1", "cigarId": "C1", "type": "in", "quantity": 10, "referenceNo": "PO-1",
     "attachments": ["a.jpg", "b.jpg"]},
    {"id": "r2", "cigarId": "C2", "type": "in", "quantity": "4", "referenceNo": "PO-1",
     "attachments": ["a.jpg", "b.jpg"]},
    {"id": "r3", "cigarId": "C1", "type": "out", "quantity": 3, "referenceNo": "SO-9"},
    {"id": "r4", "cigarId": "ACC-1", "itemType": "accessory", "type": "in", "quantity": 7, "referenceNo": "PO-2"},
]

MOVEMENTS = [
    {"productId": "C1", "itemType": "cigar", "transactionType": "in", "quantity": 10, "referenceNo": "PO-1"},
    {"productId": "C2", "itemType": "cigar", "transactionType": "in", "quantity": 4, "referenceNo": "PO-1"},
    {"productId": "C1", "itemType": "cigar", "transactionType": "out", "quantity": 3, "referenceNo": "SO-9"},
    {"productId": "ACC-1", "itemType": "accessory", "transactionType": "in", "quantity": 7, "referenceNo": "PO-2"},
]

INBOUND_ORDERS = [
    {"id": "PO-1", "referenceNo": "PO-1", "attachments": ["a.jpg", "b.jpg"]},
    {"id": "PO-2", "referenceNo": "PO-2"},
]
OUTBOUND_ORDERS = [{"id": "SO-9", "referenceNo": "SO-9"}]


class TestComputeLegacyStock:
    """Tests for compute_legacy_stock."""

    def test_legacy_documents(self):
        assert compute_legacy_stock(LEGACY) == {"C1": 7, "C2": 4}

    def test_other_item_type(self):
        assert compute_legacy_stock(LEGACY, item_type="accessory") == {"ACC-1": 7}

    def test_adjustments_observed_but_not_counted(self):
        docs = [{"id": "r1", "cigarId": "C9", "type": "adjustment", "quantity": 5}]
        assert compute_legacy_stock(docs) == {"C9": 0}

    def test_documents_without_product_ignored(self):
        assert compute_legacy_stock([{"id": "r1", "type": "in", "quantity": 5}]) == {}

    def test_snake_case_fields(self):
        docs = [{"id": "r1", "transaction_type": "in", "reference_no": "PO-1", "product_id": "C1",
                 "item_type": "cigar", "quantity": 5}]
        assert compute_legacy_stock(docs) == {"C1": 5}

    def test_padded_item_type(self):
        docs = [{"id": "r1", "type": "in", "referenceNo": "PO-1", "cigarId": "C1",
                 "itemType": "cigar ", "quantity": 5}]
        assert compute_legacy_stock(docs) == {"C1": 5}

    def test_null_transaction_type_rejected_like_the_migration(self):
        docs = [{"id": "r1", "transactionType": None, "type": "in", "referenceNo": "PO-1",
                 "cigarId": "C1", "quantity": 5}]
        assert compute_legacy_stock(docs) == {}
        assert count_groupable_records(docs) == 0

    def test_oversized_quantity_counts_as_zero(self):
        docs = [{"id": "r1", "type": "in", "referenceNo": "PO-1", "cigarId": "C1", "quantity": 10 ** 400}]
        assert compute_legacy_stock(docs) == {"C1": 0}


class TestComputeNetStock:
    """Tests for compute_net_stock over movement index documents."""

    def test_movement_documents(self):
        assert compute_net_stock(MOVEMENTS) == {"C1": 7, "C2": 4}

    def test_other_item_type(self):
        assert compute_net_stock(MOVEMENTS, item_type="accessory") == {"ACC-1": 7}

    def test_missing_item_type_is_cigar(self):
        docs = [{"productId": "C1", "transactionType": "in", "quantity": 2}]
        assert compute_net_stock(docs) == {"C1": 2}


class TestCompareStock:
    """Tests for compare_stock."""

    def test_equal_maps(self):
        assert compare_stock({"C1": 7}, {"C1": 7}) == []

    def test_reports_each_product_with_both_values(self):
        mismatches = compare_stock({"C1": 7, "C2": 4}, {"C1": 5, "C3": 1})

        assert mismatches == [
            StockMismatch("C1", 7, 5),
            StockMismatch("C2", 4, 0),
            StockMismatch("C3", 0, 1),
        ]
        assert mismatches[0].difference == -2


class TestCounts:
    """Tests for attachment and groupable record counting."""

    def test_count_attachments(self):
        assert count_attachments(LEGACY) == 4
        assert count_attachments([{"attachments": None}, {}]) == 0

    def test_count_groupable_records(self):
        docs = LEGACY + [
            {"id": "r5", "cigarId": "C1", "type": "in", "referenceNo": "  "},
            {"id": "r6", "cigarId": "C1", "type": "adjustment", "referenceNo": "ADJ-1"},
        ]
        assert count_groupable_records(docs) == 4


class TestBuildReport:
    """Tests for build_report and VerificationReport."""

    def test_matching_migration(self):
        report = build_report(LEGACY, MOVEMENTS, INBOUND_ORDERS, OUTBOUND_ORDERS)

        assert report.stock_matches
        assert report.record_count_matches
        assert report.migratable_count_matches
        assert report.attachment_savings == 2
        assert report.inbound_orders_total == 2
        assert report.outbound_orders_total == 1

    def test_missing_movement_detected(self):
        report = build_report(LEGACY, MOVEMENTS[:2], INBOUND_ORDERS, OUTBOUND_ORDERS)

        assert not report.stock_matches
        assert report.mismatches == [StockMismatch("C1", 7, 10)]
        assert not report.record_count_matches

    def test_to_dict(self):
        d = build_report(LEGACY, MOVEMENTS, INBOUND_ORDERS, OUTBOUND_ORDERS).to_dict()

        assert d["stock_matches"] is True
        assert d["products_checked"] == 2
        assert d["attachment_savings"] == 2
        assert d["mismatches"] == []

    def test_legacy_field_variants_match_their_movements(self):
        legacy = [
            {"id": "r1", "transaction_type": "in", "reference_no": "PO-1", "product_id": "C1", "quantity": 5},
            {"id": "r2", "type": "in", "referenceNo": "PO-2", "cigarId": "C2", "itemType": "cigar ", "quantity": 5},
            {"id": "r3", "transactionType": None, "type": "in", "referenceNo": "PO-3", "cigarId": "C3", "quantity": 5},
        ]
        movements = [
            {"productId": "C1", "itemType": "cigar", "transactionType": "in", "quantity": 5, "referenceNo": "PO-1"},
            {"productId": "C2", "itemType": "cigar", "transactionType": "in", "quantity": 5, "referenceNo": "PO-2"},
        ]

        report = build_report(legacy, movements, [], [])

        assert report.stock_matches
        assert report.expected_movements == 2
        assert report.migratable_count_matches

    def test_count_flags_differ_when_legacy_has_unreferenced_records(self):
        report = VerificationReport(legacy_total=5, expected_movements=4, movements_total=4)

        assert not report.record_count_matches
        assert report.migratable_count_matches


@pytest.mark.asyncio
class TestMigrationVerifier:
    """Tests for MigrationVerifier.verify() against a store."""

    def _repository(self, movements):
        repo = InMemoryRepository()
        repo.seed("inventory_logs", LEGACY)
        repo.seed("inventory_movements", movements)
        repo.seed("inbound_orders", INBOUND_ORDERS)
        repo.seed("outbound_orders", OUTBOUND_ORDERS)
        return repo

    def _verifier(self, repo):
        return MigrationVerifier(
            repo, "inventory_logs", "inbound_orders", "outbound_orders", "inventory_movements"
        )

    async def test_verify_passes(self):
        report = await self._verifier(self._repository(MOVEMENTS)).verify()

        assert report.stock_matches
        assert report.movements_total == 4
        assert report.legacy_total == 4
        assert report.attachment_savings == 2

    async def test_verify_reports_mismatch_without_raising(self):
        wrong = [dict(m) for m in MOVEMENTS]
        wrong[0]["quantity"] = 9

        report = await self._verifier(self._repository(wrong)).verify()

        assert not report.stock_matches
        assert report.mismatches[0].product_id == "C1"
        assert report.mismatches[0].legacy_stock == 7
        assert report.mismatches[0].new_stock == 6

    async def test_verify_writes_nothing(self):
        repo = self._repository(MOVEMENTS)
        before = {name: repo.documents(name) for name in
                  ("inventory_logs", "inventory_movements", "inbound_orders", "outbound_orders")}

        await self._verifier(repo).verify()

        for name, documents in before.items():
            assert repo.documents(name) == documents
