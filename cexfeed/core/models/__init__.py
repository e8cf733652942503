from .announcement import (
    ScrapedAnnouncement,
    Category,
    Importance,
    AnnouncementFilter,
    apply_filter,
    DEFAULT_TITLE,
    DEFAULT_CONTENT,
    GENERIC_TAG,
)
from .exceptions import (
    InvalidResponseException,
    AntiBotChallengeException,
    AccessBlockedException,
    RateLimitedException,
    AntiBotDetectedException,
)
