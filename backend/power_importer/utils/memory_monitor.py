"""Memory monitoring utilities for background import runs."""

import gc
import logging
import resource
import sys

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 512 * 1024 * 1024  # 512MB


def parse_memory_limit(value: str | int | None, default: int = DEFAULT_MEMORY_LIMIT) -> int:
    """Convert "512M", "1G", "800MB" or a byte count into bytes."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = value.upper().strip()
    try:
        if text.endswith("GB") or text.endswith("G"):
            return int(text.rstrip("GB")) * 1024 * 1024 * 1024
        if text.endswith("MB") or text.endswith("M"):
            return int(text.rstrip("MB")) * 1024 * 1024
        if text.endswith("KB") or text.endswith("K"):
            return int(text.rstrip("KB")) * 1024
        return int(text)
    except ValueError:
        logger.warning(f"Invalid memory limit format: {value}, using default")
        return default


def get_memory_usage() -> int:
    """Get peak memory usage in bytes (RSS high-water mark)."""
    try:
        memory_value = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # On macOS, ru_maxrss is in bytes, on Linux it's in KB
        if sys.platform == "darwin":
            return memory_value
        return memory_value * 1024
    except (OSError, ValueError) as e:
        logger.warning(f"Could not get memory usage: {e}")
        return 0


def check_memory_exceeded(limit: int) -> tuple[bool, int, int]:
    """Check if memory usage has reached ``limit``.

    Returns:
        (is_exceeded, current_usage_bytes, limit_bytes)
    """
    current = get_memory_usage()
    is_exceeded = limit > 0 and current >= limit

    if is_exceeded:
        logger.error(
            f"Memory limit exceeded: {format_bytes(current)} >= {format_bytes(limit)}"
        )

    return is_exceeded, current, limit


def force_gc() -> None:
    """Force garbage collection to free memory."""
    collected = gc.collect()
    logger.debug(f"Garbage collection freed {collected} objects")


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}TB"


def log_memory_status(limit: int, context: str = "") -> None:
    """Log current memory status for debugging."""
    current = get_memory_usage()
    usage_percent = (current / limit * 100) if limit > 0 else 0

    context_str = f" [{context}]" if context else ""
    logger.info(
        f"Memory status{context_str}: {format_bytes(current)} / "
        f"{format_bytes(limit)} ({usage_percent:.1f}%)"
    )
