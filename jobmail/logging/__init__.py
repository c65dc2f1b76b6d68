"""Structured logging helpers shared by every jobmail component."""

import logging
from typing import Optional


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that tags records with a component and keeps call-site extras."""

    def process(self, msg, kwargs):
        # Call-site extra wins over the adapter defaults
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Return a logger, optionally bound to a component name.

    Args:
        name: Logger name (typically __name__)
        component: Component identifier added to every record (e.g. "queue")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="enrichment")
        >>> logger.info("Posting enriched", extra={"event": "enrichment.posting.completed"})
    """
    logger = logging.getLogger(name)
    if component:
        return ComponentLoggerAdapter(logger, {"component": component})
    return logger
