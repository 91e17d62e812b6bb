"""Service abstractions for the PermaServe application."""

from .assembly import AssemblyError, AssemblyPipeline
from .chunks import ChunkStore
from .coordinator import RetrievalCoordinator, RetrievalStatus, StatusKind, create_coordinator
from .dispatch import BackgroundDispatcher
from .journal import ErrorJournal
from .ledger import AntelopeLedger, LedgerError, LedgerTable
from .metadata import BrokenReason, MetadataCache, MetadataLookup, MetadataState

__all__ = [
    "AntelopeLedger",
    "LedgerError",
    "LedgerTable",
    "BackgroundDispatcher",
    "MetadataCache",
    "MetadataLookup",
    "MetadataState",
    "BrokenReason",
    "ChunkStore",
    "AssemblyPipeline",
    "AssemblyError",
    "ErrorJournal",
    "RetrievalCoordinator",
    "RetrievalStatus",
    "StatusKind",
    "create_coordinator",
]
