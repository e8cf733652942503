import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional


class ExchangeProxyManager:
    """Manages proxy rotation per exchange; exchanges without a pool connect directly"""

    def __init__(self):
        self._rotators: Dict[str, ProxyRotator] = {}

    def register_exchange(self, exchange: str, proxies: Iterable[str]):
        """Register proxy list for an exchange"""
        proxies = list(proxies or [])
        if proxies:
            self._rotators[exchange] = ProxyRotator(proxies)

    def register_from_config(self, exchanges: Mapping[str, Any]):
        for name, exchange_config in exchanges.items():
            if exchange_config.enabled:
                self.register_exchange(name, exchange_config.proxies)

    def pool_sizes(self) -> Dict[str, int]:
        return {name: len(rotator) for name, rotator in self._rotators.items()}

    async def get_proxy(self, exchange: str) -> Optional[str]:
        """Get next proxy for exchange"""
        rotator = self._rotators.get(exchange)
        return await rotator.next_proxy() if rotator else None


class ProxyRotator:
    """Round-robin proxy rotation for a single exchange"""

    def __init__(self, proxies: List[str]):
        self._proxies = proxies or []
        self._index = 0
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._proxies)

    async def next_proxy(self) -> Optional[str]:
        if not self._proxies:
            return None

        async with self._lock:
            proxy = self._proxies[self._index]
            self._index = (self._index + 1) % len(self._proxies)
            return proxy
