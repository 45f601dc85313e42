"""Application wiring: oracles, stores and pipelines.

Heavy objects are created once and handed to FastAPI through ``get_container``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from .config import settings
from .interfaces import CatalogStore, Embedder, ExecutionLogStore, TextGenerator, VectorStore
from .pipelines.execution_log import ExecutionLogger
from .pipelines.extraction import ChallengeExtractor
from .pipelines.orchestrator import MatchingOrchestrator
from .pipelines.retrieval import VectorRetriever
from .pipelines.strategies import (
    CatalogStructuredStrategy,
    ExternalGenerativeStrategy,
    MatchingMethod,
    RetrievalAugmentedStrategy,
)
from .rules import RuleEngine
from .taxonomy import TaxonomyMatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Owns the oracles, stores and pipelines used by the API."""
    embedder: Embedder
    generator: TextGenerator
    vector_store: VectorStore
    catalog_store: CatalogStore
    log_store: ExecutionLogStore
    retriever: VectorRetriever
    execution_logger: ExecutionLogger
    orchestrator: MatchingOrchestrator

    @classmethod
    def create(
        cls,
        *,
        embedder: Embedder,
        generator: TextGenerator,
        vector_store: VectorStore,
        catalog_store: CatalogStore,
        log_store: ExecutionLogStore,
    ) -> "ServiceContainer":
        """Wire pipelines around the given oracles and stores."""
        retriever = VectorRetriever(embedder, vector_store)
        execution_logger = ExecutionLogger(log_store)
        strategies = {
            MatchingMethod.EXTERNAL_GENERATIVE: ExternalGenerativeStrategy(generator, catalog_store),
            MatchingMethod.CATALOG_STRUCTURED: CatalogStructuredStrategy(
                catalog_store,
                taxonomy=TaxonomyMatcher(),
                rule_engine=RuleEngine(),
            ),
            MatchingMethod.RETRIEVAL_AUGMENTED: RetrievalAugmentedStrategy(retriever, generator),
        }
        orchestrator = MatchingOrchestrator(
            ChallengeExtractor(generator),
            strategies,
            catalog_store,
            execution_logger,
        )
        return cls(
            embedder=embedder,
            generator=generator,
            vector_store=vector_store,
            catalog_store=catalog_store,
            log_store=log_store,
            retriever=retriever,
            execution_logger=execution_logger,
            orchestrator=orchestrator,
        )


def build_container() -> ServiceContainer:
    """Production wiring: sentence-transformers, OpenAI, PostgreSQL."""
    from oracles.embeddings import SentenceTransformerEmbedder
    from oracles.llm import OpenAIGenerator

    from .db import AsyncSessionMaker
    from .stores.pgvector_store import PgVectorStore
    from .stores.sql_catalog import SqlCatalogStore
    from .stores.sql_execution_log import SqlExecutionLogStore

    logger.info(f"Building service container ({settings.environment.value})")
    return ServiceContainer.create(
        embedder=SentenceTransformerEmbedder(),
        generator=OpenAIGenerator(),
        vector_store=PgVectorStore(AsyncSessionMaker),
        catalog_store=SqlCatalogStore(AsyncSessionMaker),
        log_store=SqlExecutionLogStore(AsyncSessionMaker),
    )


@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    """Cached container singleton (FastAPI dependency)."""
    return build_container()
