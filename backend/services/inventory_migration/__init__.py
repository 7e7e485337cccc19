"""
Cigar Inventory - Ledger Migration Module

Migrates the flat inventory_logs collection into inbound/outbound order
documents plus a per-product movement index, then proves that stock levels
are unchanged.

Components:
- MigrationRepository: document store abstraction (Motor / in-memory)
- InventoryAnalyzer: groups legacy records by (type, referenceNo)
- InboundAggregator / OutboundAggregator: fold groups into order aggregates
- OrderWriter: persists aggregates and movement index entries
- MigrationVerifier: stock parity, count parity, attachment savings
- InventoryMigrationJob: runs the four phases
"""

from .aggregator import InboundAggregator, OutboundAggregator, OrderAggregate, MovementIndexEntry
from .analyzer import InventoryAnalyzer, AnalysisResult, ReferenceGroup
from .classifier import OutboundSubtypeClassifier, OutboundSubtype, KeywordRule
from .config import MigrationSettings, MigrationMode, MovementIndexMode
from .job import InventoryMigrationJob, MigrationSummary, MigrationJobBuilder
from .records import LegacyMovementRecord, TransactionType
from .repository import MigrationRepository, MotorRepository, InMemoryRepository
from .verifier import MigrationVerifier, VerificationReport
from .writer import OrderWriter, WriteStats

__all__ = [
    'InboundAggregator',
    'OutboundAggregator',
    'OrderAggregate',
    'MovementIndexEntry',
    'InventoryAnalyzer',
    'AnalysisResult',
    'ReferenceGroup',
    'OutboundSubtypeClassifier',
    'OutboundSubtype',
    'KeywordRule',
    'MigrationSettings',
    'MigrationMode',
    'MovementIndexMode',
    'InventoryMigrationJob',
    'MigrationSummary',
    'MigrationJobBuilder',
    'LegacyMovementRecord',
    'TransactionType',
    'MigrationRepository',
    'MotorRepository',
    'InMemoryRepository',
    'MigrationVerifier',
    'VerificationReport',
    'OrderWriter',
    'WriteStats',
]
