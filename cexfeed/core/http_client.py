import asyncio
import json
import math
import random
import re
from typing import Optional, Any, Dict, Mapping

import aiohttp
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential
from loguru import logger
from curl_cffi.requests import AsyncSession

from cexfeed.core.fingerprint import generate_realistic_headers, choose_profile
from cexfeed.core.models.exceptions import (
    InvalidResponseException,
    AntiBotChallengeException,
    AccessBlockedException,
    RateLimitedException,
    AntiBotDetectedException,
)
from cexfeed.core.proxy_manager import ExchangeProxyManager
from cexfeed.utils.tools import Sleep, human_delay, truncate_content

RETRYABLE_STATUSES = (202, 429)
SUSPICIOUS_STATUSES = (202, 403, 429, 503)

ANTI_BOT_PHRASES = (
    'cloudflare',
    'attention required',
    'just a moment',
    'checking your browser',
    'please enable javascript',
    'please enable cookies',
    'you have been blocked',
    'request blocked',
    'access denied',
    'are you a robot',
    'robot check',
    'verify you are human',
    'captcha',
    'security check',
    'ray id',
    'ddos protection',
)
ANTI_BOT_PATTERN = re.compile(
    "|".join(rf"\b{re.escape(phrase)}\b" for phrase in ANTI_BOT_PHRASES),
    re.IGNORECASE,
)

MIN_PAGE_SIZE = 1000


def should_retry(status: Optional[int], attempt: int, max_retries: int) -> bool:
    """
    Retry decision for one failed attempt.

    No response at all, 5xx and the anti-bot statuses 202/429 are retried
    while attempts remain; any other 4xx (403 included) is final.
    """
    if attempt >= max_retries:
        return False
    if status is None or status >= 500:
        return True
    return status in RETRYABLE_STATUSES


def visible_text(html: str) -> str:
    """Title and rendered text of a page; markup, scripts and styles are left out"""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def is_anti_bot_response(content: Any, status: Optional[int] = None) -> bool:
    """
    Heuristic check whether a body looks like a blocking page instead of data.

    HTML is judged by what a visitor would read, so attribute values such
    as `<meta name="robots">` and embedded state never trigger a match.
    """
    if not content:
        return False

    text = content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)

    if status in SUSPICIOUS_STATUSES:
        return True

    readable = visible_text(text) if '<' in text else text
    if ANTI_BOT_PATTERN.search(readable):
        return True
    return len(text) < MIN_PAGE_SIZE and '{' not in text and '[' not in text


def _retry_after_seconds(headers: Mapping[str, str], default: float) -> float:
    value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return default
    return seconds if math.isfinite(seconds) and seconds >= 0 else default


class AntiDetectionClient:
    """curl_cffi client with randomized browser fingerprints and status-aware retries"""

    def __init__(
            self,
            proxy_manager: Optional[ExchangeProxyManager] = None,
            origins: Optional[Mapping[str, str]] = None,
            timeout: float = 30,
            max_retries: int = 3,
            challenge_delay: tuple = (5, 10),
            rate_limit_default: float = 60,
            backoff_max: float = 30,
            session: Optional[Any] = None,
            sleep: Sleep = asyncio.sleep,
            rng: Optional[random.Random] = None,
    ):
        self._proxy_manager = proxy_manager
        self._origins = dict(origins or {})
        self.timeout = timeout
        self.max_retries = max_retries
        self.challenge_delay = challenge_delay
        self.rate_limit_default = rate_limit_default
        self.backoff_max = backoff_max
        self.session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._log = logger.bind(component="http")

    def _get_session(self):
        if self.session is None:
            self.session = AsyncSession(timeout=self.timeout, max_redirects=5)
        return self.session

    async def smart_request(self, url: str, params: Optional[Dict[str, Any]] = None,
                            headers: Optional[Dict[str, str]] = None, exchange: Optional[str] = None,
                            max_retries: Optional[int] = None):
        """
        GET `url` with a fresh fingerprint per attempt.

        Returns the 200 response; after the retries are used up the last
        error is raised to the caller.
        """
        max_retries = max_retries or self.max_retries
        log = self._log.bind(exchange=exchange or "")

        def retry_predicate(retry_state: RetryCallState) -> bool:
            if not retry_state.outcome.failed:
                return False
            exc = retry_state.outcome.exception()
            if not isinstance(exc, Exception):
                return False
            status = getattr(exc, "status", None)
            return should_retry(status, retry_state.attempt_number, max_retries)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=self.backoff_max),
            retry=retry_predicate,
            reraise=True,
            sleep=self._sleep,
            before_sleep=lambda retry_state: log.warning(
                f"№{retry_state.attempt_number}/{max_retries} {url} | "
                f"{truncate_content(str(retry_state.outcome.exception()), 200)}"
            ),
        )

        async for attempt in retrying:
            with attempt:
                return await self._attempt(url, params, headers, exchange, log)

    async def _attempt(self, url: str, params: Optional[Dict[str, Any]],
                       headers: Optional[Dict[str, str]], exchange: Optional[str], log):
        headers = dict(headers or {})
        profile = choose_profile(self._rng)
        request_headers = generate_realistic_headers(
            referer=headers.get("Referer"),
            origin=self._origins.get(exchange) if exchange else None,
            profile=profile,
            rng=self._rng,
        )
        request_headers.update(headers)

        kwargs: Dict[str, Any] = {
            "params": params,
            "headers": request_headers,
            "timeout": self.timeout,
            "impersonate": profile.impersonate,
            "allow_redirects": True,
        }
        if self._proxy_manager and exchange:
            if proxy := await self._proxy_manager.get_proxy(exchange):
                kwargs["proxies"] = {"http": proxy, "https": proxy}

        response = await self._get_session().request("GET", url, **kwargs)
        status = response.status_code

        if status >= 500:
            raise InvalidResponseException(f"HTTP {status}: {url}", status=status)
        if status == 200:
            log.debug(f"200 {url}")
            return response
        if status == 202:
            waited = await human_delay(*self.challenge_delay, sleep=self._sleep)
            log.warning(f"202 anti-bot challenge, waited {waited:.1f}s: {url}")
            raise AntiBotChallengeException(url)
        if status == 403:
            log.warning(f"403 forbidden: {url}")
            raise AccessBlockedException(url)
        if status == 429:
            wait_time = _retry_after_seconds(response.headers or {}, self.rate_limit_default)
            log.warning(f"429 rate limited, waiting {wait_time:.0f}s: {url}")
            await self._sleep(wait_time)
            raise RateLimitedException(url, wait_time)

        raise InvalidResponseException(f"HTTP {status}: {url}", status=status)

    async def close(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None


class PlainHttpClient:
    """aiohttp GET with static browser-like headers; the cheap tier for page fetches"""

    DEFAULT_HEADERS = {
        'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) '
                      'Chrome/120.0.0.0 Safari/537.36',
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8',
        'Accept-Language': 'zh-CN,zh;q=0.9,en;q=0.8',
        'Cache-Control': 'no-cache',
        'Pragma': 'no-cache',
        'Sec-Fetch-Dest': 'document',
        'Sec-Fetch-Mode': 'navigate',
        'Sec-Fetch-Site': 'none',
        'Sec-Fetch-User': '?1',
        'Upgrade-Insecure-Requests': '1',
    }
    ACCEPTED_STATUSES = (200, 202)

    def __init__(self, timeout: float = 20, session: Optional[aiohttp.ClientSession] = None):
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._log = logger.bind(component="http")

    def init(self):
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
            self._owns_session = True

    async def get_text(self, url: str, referer: Optional[str] = None) -> str:
        """Fetch a page and validate it against the anti-bot heuristic"""
        self.init()
        headers = dict(self.DEFAULT_HEADERS)
        headers['Referer'] = referer or url

        async with self._session.get(url, headers=headers, max_redirects=5) as resp:
            text = await resp.text()
            if resp.status not in self.ACCEPTED_STATUSES:
                raise InvalidResponseException(f"HTTP {resp.status}: {url}", status=resp.status)

        if is_anti_bot_response(text):
            raise AntiBotDetectedException(url, status=resp.status)

        self._log.debug(f"Plain fetch {url} ({len(text) // 1024}KB)")
        return text

    async def close(self):
        if self._session and not self._session.closed and self._owns_session:
            await self._session.close()
