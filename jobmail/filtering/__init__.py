"""Semantic blacklist filter and the posting event bus."""

from .events import EventBus, EventStream
from .semantic import FilterOutcome, SemanticFilter

__all__ = ["SemanticFilter", "FilterOutcome", "EventBus", "EventStream"]
