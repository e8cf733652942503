import asyncio
import random
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional, Union

Sleep = Callable[[float], Awaitable[None]]


async def random_delay(base_delay: Union[int, float], randomness_percent: float = 10.0,
                       sleep: Sleep = asyncio.sleep) -> None:
    """
    Wait for a random duration around the base delay with specified randomness.

    Args:
        base_delay: The base delay in seconds
        randomness_percent: Percentage of randomness (default: 10%)

    Example:
        await random_delay(1.0)  # Wait between 0.9 and 1.1 seconds
        await random_delay(2.0, 20.0)  # Wait between 1.6 and 2.4 seconds
    """
    if base_delay <= 0:
        return

    random_factor = 1 + random.uniform(-randomness_percent / 100, randomness_percent / 100)
    actual_delay = max(base_delay * random_factor, 0.001)

    await sleep(actual_delay)


async def human_delay(min_seconds: float, max_seconds: float, sleep: Sleep = asyncio.sleep) -> float:
    """Sleep for a uniformly random time in [min_seconds, max_seconds], return it"""
    delay = random.uniform(min_seconds, max_seconds)
    await sleep(delay)
    return delay


def now_ms() -> int:
    return int(time.time() * 1000)


def truncate_content(content: str, max_length: int = 500) -> str:
    """Truncate long content for better error readability"""
    if len(content) <= max_length:
        return content
    return content[:max_length] + f"... [truncated, total {len(content)} characters]"




def strip_html(text: str) -> str:
    """Remove HTML tags"""
    if not text:
        return ""
    text = re.sub(r'<[^>]+>', ' ', text)
    text = re.sub(r'&[a-z]+;', ' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def parse_time_ms(value: Any) -> Optional[int]:
    """
    Convert a provider timestamp to epoch milliseconds.

    Accepts epoch seconds or milliseconds (int, float or numeric string),
    ISO 8601 strings and RFC 2822 dates (RSS pubDate). Naive datetimes are
    taken as UTC. Returns None when the value is missing or unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value) if value > 1_000_000_000_000 else int(value * 1000)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return parse_time_ms(float(text))

    try:
        dt = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None

    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)
