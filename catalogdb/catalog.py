"""
Catalog assembly.

Catalog wires the store, the identifier allocator and the entity adaptors
from Settings, the way an embedding service would:

    settings = get_settings()
    setup_logging(settings)
    catalog = Catalog(settings, directory, variable_sets)
    await catalog.start()
    cohort = await catalog.cohorts.create(study_id, Cohort(name="ALL"))

Invariants:
    - All entity kinds share one store and one identifier counter
    - start() is idempotent; it creates the schema and indexes if missing
"""

from __future__ import annotations

import logging

from .adaptors import CohortAdaptor, SampleAdaptor
from .adaptors.base import EntityAdaptor
from .config import Settings
from .directory import StudyDirectory, VariableSetProvider
from .store import DocumentStore, IdAllocator, SqliteDocumentStore

logger = logging.getLogger(__name__)


class Catalog:
    """Entry point to the catalog entity kinds.

    Attributes:
        store: Document store shared by all kinds
        allocator: Identifier allocator shared by all kinds
        samples: Sample adaptor
        cohorts: Cohort adaptor
    """

    def __init__(
        self,
        settings: Settings,
        directory: StudyDirectory,
        variable_sets: VariableSetProvider,
        store: DocumentStore | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or SqliteDocumentStore(
            settings.db_path,
            wal_mode=settings.wal_mode,
            busy_timeout_ms=settings.busy_timeout_ms,
            cache_size_pages=settings.cache_size_pages,
        )
        self.allocator = IdAllocator(self.store, settings.id_counter)
        self.samples = SampleAdaptor(
            self.store,
            self.allocator,
            directory,
            variable_sets,
            slow_query_ms=settings.slow_query_ms,
        )
        self.cohorts = CohortAdaptor(
            self.store,
            self.allocator,
            directory,
            variable_sets,
            related={"Sample": self.samples},
            slow_query_ms=settings.slow_query_ms,
        )

    @property
    def adaptors(self) -> list[EntityAdaptor]:
        return [self.samples, self.cohorts]

    async def start(self) -> None:
        """Create the store schema and the indexes of every entity kind."""
        problems = self.settings.check()
        if problems:
            raise ValueError("Invalid catalog settings: " + "; ".join(problems))

        initialize = getattr(self.store, "initialize", None)
        if initialize is not None:
            await initialize()
        for adaptor in self.adaptors:
            await adaptor.initialize()

        logger.info(
            "Catalog started",
            extra={"db_path": str(self.settings.db_path), "kinds": [a.entity_name for a in self.adaptors]},
        )
