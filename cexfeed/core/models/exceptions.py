from typing import Optional


class InvalidResponseException(Exception):
    """Non-successful HTTP response; `status` is None for transport failures"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AntiBotChallengeException(InvalidResponseException):
    """HTTP 202 soft challenge"""

    def __init__(self, url: str):
        super().__init__(f"HTTP 202: Anti-bot challenge {url}", status=202)


class AccessBlockedException(InvalidResponseException):
    def __init__(self, url: str):
        super().__init__(f"HTTP 403: Forbidden {url}", status=403)


class RateLimitedException(InvalidResponseException):
    def __init__(self, url: str, retry_after: float):
        super().__init__(f"HTTP 429: Too Many Requests {url} (waited {retry_after:.0f}s)", status=429)
        self.retry_after = retry_after


class AntiBotDetectedException(InvalidResponseException):
    """Response body looks like a blocking page"""

    def __init__(self, url: str, status: Optional[int] = None):
        super().__init__(f"Anti-bot page detected: {url}", status=status)
