"""
Randomized, internally consistent browser request fingerprints.

Every header set is built around one user agent: the Accept-Language,
the viewport and the browser-family headers (Sec-Fetch-*, Sec-CH-*) are
chosen to match it, and curl_cffi impersonates the same family so that the
TLS fingerprint agrees with the headers.
"""
import random
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class BrowserProfile:
    user_agent: str
    family: str  # chrome | edge | firefox | safari
    platform: str  # Windows | macOS
    major_version: int

    @property
    def is_chromium(self) -> bool:
        return self.family in ("chrome", "edge")

    @property
    def impersonate(self) -> str:
        """curl_cffi impersonation target for this browser family"""
        return {
            "chrome": "chrome",
            "edge": "edge",
            "firefox": "firefox",
            "safari": "safari",
        }[self.family]


USER_AGENTS: Tuple[BrowserProfile, ...] = (
    # Chrome on Windows
    BrowserProfile('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/120.0.0.0 Safari/537.36', "chrome", "Windows", 120),
    BrowserProfile('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/119.0.0.0 Safari/537.36', "chrome", "Windows", 119),
    BrowserProfile('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/118.0.0.0 Safari/537.36', "chrome", "Windows", 118),
    # Chrome on Mac
    BrowserProfile('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/120.0.0.0 Safari/537.36', "chrome", "macOS", 120),
    BrowserProfile('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/119.0.0.0 Safari/537.36', "chrome", "macOS", 119),
    # Firefox
    BrowserProfile('Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0',
                   "firefox", "Windows", 120),
    BrowserProfile('Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:120.0) Gecko/20100101 Firefox/120.0',
                   "firefox", "macOS", 120),
    # Safari
    BrowserProfile('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) '
                   'Version/17.1 Safari/605.1.15', "safari", "macOS", 17),
    # Edge
    BrowserProfile('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
                   'Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0', "edge", "Windows", 120),
)

ACCEPT_LANGUAGES: Tuple[str, ...] = (
    'zh-CN,zh;q=0.9,en;q=0.8',
    'en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7',
    'zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7',
    'zh-TW,zh;q=0.9,en;q=0.8',
    'en-GB,en;q=0.9,zh-CN;q=0.8',
)

VIEWPORTS: Tuple[Tuple[int, int], ...] = (
    (1920, 1080),
    (1366, 768),
    (1536, 864),
    (1440, 900),
    (1280, 720),
)

DEFAULT_ACCEPT = ('text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,'
                  'image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7')

DNT_PROBABILITY = 0.3
XHR_PROBABILITY = 0.5


def choose_profile(rng: Optional[random.Random] = None) -> BrowserProfile:
    return (rng or random).choice(USER_AGENTS)


def _sec_ch_ua(profile: BrowserProfile) -> str:
    brand = "Microsoft Edge" if profile.family == "edge" else "Google Chrome"
    v = profile.major_version
    return f'"Not_A Brand";v="8", "Chromium";v="{v}", "{brand}";v="{v}"'


def generate_realistic_headers(referer: Optional[str] = None,
                               origin: Optional[str] = None,
                               profile: Optional[BrowserProfile] = None,
                               rng: Optional[random.Random] = None) -> Dict[str, str]:
    """
    Build one browser-plausible header set.

    `origin` is the exchange site (e.g. https://www.binance.com); when it is
    given together with a referer the request looks like same-site XHR
    traffic and gets Origin/Host headers.
    """
    rng = rng or random
    profile = profile or choose_profile(rng)
    width, height = rng.choice(VIEWPORTS)

    headers: Dict[str, Optional[str]] = {
        'User-Agent': profile.user_agent,
        'Accept': DEFAULT_ACCEPT,
        'Accept-Language': rng.choice(ACCEPT_LANGUAGES),
        'Accept-Encoding': 'gzip, deflate, br',
        'Connection': 'keep-alive',
        'Upgrade-Insecure-Requests': '1',
        'Cache-Control': 'max-age=0' if rng.random() > 0.5 else 'no-cache',
        'DNT': '1' if rng.random() < DNT_PROBABILITY else None,
    }

    if profile.is_chromium:
        headers.update({
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': 'same-origin' if referer else 'none',
            'Sec-Fetch-User': '?1',
            'Sec-CH-UA': _sec_ch_ua(profile),
            'Sec-CH-UA-Mobile': '?0',
            'Sec-CH-UA-Platform': f'"{profile.platform}"',
            'Sec-CH-Viewport-Width': str(width),
            'Sec-CH-Viewport-Height': str(height),
        })

    if referer:
        headers['Referer'] = referer
        if origin:
            headers['Origin'] = origin
            headers['Host'] = origin.split("://", 1)[-1]
            headers['X-Requested-With'] = 'XMLHttpRequest' if rng.random() < XHR_PROBABILITY else None

    return {k: v for k, v in headers.items() if v is not None}


def profile_for_user_agent(user_agent: str) -> Optional[BrowserProfile]:
    for profile in USER_AGENTS:
        if profile.user_agent == user_agent:
            return profile
    return None
