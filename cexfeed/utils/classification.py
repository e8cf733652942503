import re
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from cexfeed.core.models.announcement import Category, Importance, GENERIC_TAG


def _keyword_pattern(keywords: Iterable[str]) -> Pattern:
    """
    Build one regex for a bilingual keyword set.

    Latin keywords must start on a word boundary so that "list" does not
    fire inside "delist"; CJK keywords are plain substrings since Chinese
    text has no word boundaries.
    """
    parts = []
    for kw in keywords:
        escaped = re.escape(kw)
        parts.append(rf"\b{escaped}" if kw.isascii() else escaped)
    return re.compile("|".join(parts), re.IGNORECASE)


# Ordered: first match wins
CATEGORY_KEYWORDS: List[Tuple[Category, Tuple[str, ...]]] = [
    (Category.DELISTING, ('delist', 'removal of', '下架', '停止交易', '下线')),
    (Category.DERIVATIVES, ('futures', 'perpetual', 'options', 'derivative', '合约', '永续', '期货', '期权')),
    (Category.MARGIN_TRADING, ('margin', 'borrow', '杠杆', '借贷')),
    (Category.NEW_LISTINGS, ('will list', 'listing', 'list ', 'new cryptocurrency', 'launch',
                             '上线', '新币', '上新', '新增')),
    (Category.API_UPDATES, ('api', '接口')),
    (Category.MAINTENANCE, ('maintenance', 'upgrade', 'system update', '维护', '升级')),
    (Category.EARN, ('staking', 'earn', 'savings', 'launchpool', 'launchpad', 'megadrop',
                     '质押', '理财', '挖矿')),
    (Category.WALLET, ('deposit', 'withdraw', 'wallet', 'network', '充值', '提现', '提币', '钱包')),
    (Category.PROMOTION, ('airdrop', 'promotion', 'campaign', 'bonus', 'giveaway', 'competition',
                          '空投', '活动', '奖励', '促销')),
]

HIGH_IMPORTANCE_KEYWORDS = (
    'delist', '下架', '停止交易',
    'suspend', 'suspension', 'halt', '暂停',
    'emergency', 'urgent', '紧急', '重要',
    'security', 'hack', 'vulnerability', '安全', '漏洞',
    'will list', 'listing', 'launch', '上线', '新币',
)

MEDIUM_IMPORTANCE_KEYWORDS = (
    'maintenance', 'upgrade', 'update', '维护', '升级', '更新', '调整',
    'futures', 'perpetual', '合约', '永续',
    'api', 'margin', '杠杆',
    'trading', 'trade', '交易',
    'deposit', 'withdraw', '充值', '提现',
    'staking', 'earn', '质押', '理财',
    'promotion', 'airdrop', '空投', '活动',
)

FUNCTIONAL_TAGS: List[Tuple[str, Tuple[str, ...]]] = [
    ('新币上线', ('will list', 'listing', '上线', '新币')),
    ('合约', ('futures', 'perpetual', '合约', '永续')),
    ('现货', ('spot', '现货')),
    ('下架', ('delist', '下架')),
    ('杠杆', ('margin', '杠杆')),
    ('空投', ('airdrop', '空投')),
    ('理财', ('staking', 'earn', 'launchpool', '质押', '理财')),
    ('钱包', ('deposit', 'withdrawal', 'wallet', '充值', '提现', '钱包')),
    ('安全', ('security', 'phishing', '安全', '风险')),
    ('API', ('api', '接口')),
    ('活动', ('promotion', 'bonus', 'campaign', '活动', '奖励')),
]

# Chain names; bare tickers (ETH, SOL) come through as symbol tags
NETWORK_TAGS: List[Tuple[str, Tuple[str, ...]]] = [
    ('ethereum', ('ethereum', 'erc20', 'erc-20', '以太坊')),
    ('bsc', ('bnb smart chain', 'binance smart chain', 'bsc', 'bep20', 'bep-20')),
    ('polygon', ('polygon',)),
    ('solana', ('solana', 'spl token')),
    ('avalanche', ('avalanche',)),
    ('arbitrum', ('arbitrum',)),
    ('optimism', ('optimism',)),
    ('tron', ('tron', 'trc20', 'trc-20')),
]

QUOTE_TOKENS = ('USDT', 'USDC', 'FDUSD', 'BUSD')

TOKEN_STOPLIST = {
    # Fiat and quote currencies
    'USD', 'CNY', 'EUR', 'GBP', 'KRW', 'USDT', 'USDC', 'FDUSD', 'BUSD',
    # Generic words and acronyms
    'API', 'NEW', 'THE', 'AND', 'FOR', 'GET', 'SET', 'APP', 'WEB', 'VIP', 'FAQ', 'UTC', 'APR', 'APY',
    'KYC', 'OTC', 'NFT', 'ETF', 'CEO', 'ALL', 'WILL', 'LIST',
    # Exchanges
    'BINANCE', 'OKX', 'BYBIT', 'HTX', 'HUOBI', 'KUCOIN', 'GATE', 'MEXC', 'BITGET', 'COINBASE',
}

TOKEN_PATTERN = re.compile(r'\b[A-Z]{3,8}\b', re.ASCII)
QUOTE_SUFFIX_PATTERN = re.compile(f'({"|".join(QUOTE_TOKENS)})$')

_CATEGORY_PATTERNS: List[Tuple[Category, Pattern]] = [
    (category, _keyword_pattern(keywords)) for category, keywords in CATEGORY_KEYWORDS
]
_HIGH_PATTERN = _keyword_pattern(HIGH_IMPORTANCE_KEYWORDS)
_MEDIUM_PATTERN = _keyword_pattern(MEDIUM_IMPORTANCE_KEYWORDS)
_TAG_PATTERNS: List[Tuple[str, Pattern]] = [
    (tag, _keyword_pattern(keywords)) for tag, keywords in FUNCTIONAL_TAGS + NETWORK_TAGS
]


def map_category(text: Optional[str]) -> Category:
    """Ordered bilingual keyword match, default `general`"""
    if not text:
        return Category.GENERAL

    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return Category.GENERAL


def classify_category(hint: Optional[str], title: str,
                      mapping: Optional[Dict[str, str]] = None) -> Category:
    """
    Category for a provider item: explicit id mapping first, then the
    provider's category-like field, then the title itself.
    """
    if mapping and hint is not None:
        mapped = mapping.get(str(hint))
        if mapped:
            return Category(mapped)

    category = map_category(str(hint)) if hint is not None else Category.GENERAL
    if category is Category.GENERAL:
        category = map_category(title)
    return category


def determine_importance(title: str, content: str = "") -> Importance:
    text = f"{title or ''} {content or ''}"

    if _HIGH_PATTERN.search(text):
        return Importance.HIGH
    if _MEDIUM_PATTERN.search(text):
        return Importance.MEDIUM
    return Importance.LOW


def extract_token_symbols(text: str) -> List[str]:
    """Uppercase token-like words, pair suffixes stripped, false positives dropped"""
    symbols = []
    for match in TOKEN_PATTERN.findall(text or ""):
        symbol = match
        if symbol not in TOKEN_STOPLIST:
            symbol = QUOTE_SUFFIX_PATTERN.sub('', symbol)
        if len(symbol) < 2 or symbol in TOKEN_STOPLIST:
            continue
        if symbol not in symbols:
            symbols.append(symbol)
    return symbols


def extract_tags(title: str, content: str = "") -> List[str]:
    """Token symbols from the title plus functional and network tags; never empty"""
    tags = extract_token_symbols(title)

    text = f"{title or ''} {content or ''}"
    for tag, pattern in _TAG_PATTERNS:
        if pattern.search(text) and tag not in tags:
            tags.append(tag)

    return tags or [GENERIC_TAG]
