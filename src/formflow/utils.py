"""Utility functions for the formflow engine"""

import logging
import re
import time
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Tuple, Type
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")

BackoffStrategy = Literal["exponential", "fixed"]


def canonicalify(p: Path | str) -> Path:
    return Path(p).expanduser().resolve()


def ensure_path(p: Path | str) -> Path:
    path = canonicalify(p)
    path.mkdir(parents=True, exist_ok=True)
    return path


def retry(
    times: int,
    initial_delay: float = 1,
    backoff: BackoffStrategy = "exponential",
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[tuple, dict, Exception, int], None]] = None,
):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(times):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    is_last_attempt = attempt == times - 1
                    error_msg = str(e)[:100]

                    if is_last_attempt:
                        logger.error(f"Request failed, max retries ({times}) reached")
                        raise

                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{times}), "
                        f"retrying in {delay}s. Error: {error_msg}"
                    )

                    if on_retry:
                        on_retry(args, kwargs, e, attempt + 1)

                    time.sleep(delay)

                    if backoff == "exponential":
                        delay *= 2

        return wrapper

    return decorator


def sanitize(sensitive: str | None, keep_chars: int = 2) -> str:
    """Mask sensitive information for logging.

    Examples:
        >>> sanitize("abc123def456xyz789")
        'ab***89'
        >>> sanitize(None)
        '***'
    """
    if not sensitive:
        return "***"

    if len(sensitive) <= keep_chars * 2:
        return "***"

    return f"{sensitive[:keep_chars]}***{sensitive[-keep_chars:]}"


def slugify(label: str | None) -> str:
    """Derive the persistence key for a field label.

    Lowercases, collapses every run of non-alphanumerics into ``_`` and
    trims leading/trailing underscores.

    Examples:
        >>> slugify("Full Name")
        'full_name'
        >>> slugify("  Email!! ")
        'email'
    """
    key = re.sub(r"[^a-z0-9]+", "_", (label or "").lower())
    return key.strip("_")


def folder_slug(title: str | None) -> str:
    """Sanitize a title for use as an upload folder name.

    Examples:
        >>> folder_slug("AI Hackathon 2025!")
        'ai-hackathon-2025'
    """
    name = (title or "").lower().strip()
    name = re.sub(r"[^a-z0-9_-]", "-", name)
    name = re.sub(r"-+", "-", name)
    return name.strip("-")


def is_blank(value: Any) -> bool:
    """Return True for values that count as "no answer"."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def get_now(timezone: ZoneInfo = UTC) -> datetime:
    return datetime.now(timezone)


def to_iso(dt: datetime) -> str:
    """Format a timezone-aware datetime as ISO-8601 in UTC"""
    if dt.tzinfo is None:
        raise ValueError("Input datetime must contain timezone info")
    return dt.astimezone(UTC).isoformat()
