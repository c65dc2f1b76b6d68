"""Enrichment stage: page content, embeddings and the posting-side filter."""

from .content import ContentExtractor, PageContent
from .stage import EnrichmentOutcome, EnrichmentStage

__all__ = ["EnrichmentStage", "EnrichmentOutcome", "ContentExtractor", "PageContent"]
