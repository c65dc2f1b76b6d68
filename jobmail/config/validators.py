"""Soft checks on raw configuration that warn instead of failing."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Inspect raw configuration for settings that are valid but likely mistakes.

    Args:
        config_dict: Raw configuration dictionary (before validation)

    Returns:
        List of warning messages
    """
    messages = []

    threshold = (config_dict.get("filter") or {}).get("threshold")
    if isinstance(threshold, (int, float)) and threshold < 0.3:
        messages.append(
            f"Low filter.threshold ({threshold}) will blacklist most postings once keywords are set"
        )

    queues = config_dict.get("queues") or {}
    if isinstance(queues, dict):
        for kind, settings in queues.items():
            if not isinstance(settings, dict):
                continue
            concurrency = settings.get("concurrency")
            if isinstance(concurrency, int) and concurrency > 20:
                messages.append(
                    f"High concurrency for queue '{kind}' ({concurrency}) may overload the model server"
                )
            attempts = settings.get("attempts")
            if attempts == 1:
                messages.append(f"Queue '{kind}' has attempts=1; transient failures will not be retried")

    scan_interval = (config_dict.get("scan") or {}).get("interval")
    if scan_interval is not None:
        try:
            if parse_duration(scan_interval) < 300:
                messages.append(
                    f"Short scan.interval ({scan_interval}) may hit mail provider rate limits"
                )
        except DurationParseError:
            # Reported as an error by model validation
            pass

    embedding = config_dict.get("embedding") or {}
    if isinstance(embedding, dict) and "model" in embedding and "dimension" not in embedding:
        messages.append(
            "embedding.model is set without embedding.dimension; the default dimension (384) is assumed"
        )

    return messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
