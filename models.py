"""
Canonical data model shared by collectors, the analyzer, the store and the
aggregator. Every platform's raw payload is normalized into these shapes.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class Platform(str, Enum):
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    TIKTOK = "tiktok"


# Fixed order in which a competitor's platforms are scraped and reported.
PLATFORM_ORDER = (
    Platform.INSTAGRAM,
    Platform.FACEBOOK,
    Platform.TWITTER,
    Platform.TIKTOK,
)

POSITIVE = "positive"
NEUTRAL = "neutral"
NEGATIVE = "negative"
SENTIMENT_LABELS = (POSITIVE, NEUTRAL, NEGATIVE)


@dataclass
class SentimentResult:
    """Structured classification for one piece of text."""
    score: float = 0.0                  # -1 (very negative) to 1 (very positive)
    label: str = NEUTRAL
    explanation: str = ""
    keywords: List[str] = field(default_factory=list)

    @classmethod
    def neutral(cls) -> "SentimentResult":
        """Default used whenever classification fails or is skipped."""
        return cls()


@dataclass
class Comment:
    author_username: str
    text: str
    likes: int = 0
    posted_at: Optional[str] = None     # ISO-8601
    is_response_from_brand: bool = False
    sentiment: SentimentResult = field(default_factory=SentimentResult.neutral)


@dataclass
class Post:
    platform: str
    post_url: str                       # natural key, unique across the datastore
    caption: str = ""
    likes: int = 0
    comments_count: int = 0
    posted_at: Optional[str] = None     # ISO-8601
    comments: List[Comment] = field(default_factory=list)
    raw_data: Dict[str, Any] = field(default_factory=dict)
    engagement_rate: float = 0.0
    sentiment: SentimentResult = field(default_factory=SentimentResult.neutral)


@dataclass
class StoredPost:
    """A post as persisted for one run (after upsert)."""
    id: int
    platform: str
    post_url: str
    likes: int
    comments_count: int
    engagement_rate: float


@dataclass
class StoredComment:
    """A comment row actually written to the datastore."""
    id: int
    post_id: int
    author_username: str
    text: str
    sentiment_score: float
    sentiment_label: str
    keywords: List[str] = field(default_factory=list)
    is_response_from_brand: bool = False


@dataclass
class Competitor:
    id: int
    name: str
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    twitter_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    follower_count: Optional[int] = None

    def profile_urls(self) -> Dict[Platform, str]:
        """Configured profile URLs, in PLATFORM_ORDER, skipping blanks."""
        urls = {}
        for platform in PLATFORM_ORDER:
            url = getattr(self, f"{platform.value}_url")
            if url and url.strip():
                urls[platform] = url.strip()
        return urls


@dataclass
class AnalysisRun:
    id: int
    competitor_id: int
    created_at: str
    status: str = "pending"
    error_message: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class Statistics:
    total_posts: int = 0
    total_comments: int = 0
    avg_sentiment_score: float = 0.0
    positive_percentage: float = 0.0
    neutral_percentage: float = 0.0
    negative_percentage: float = 0.0
    top_keywords: Dict[str, int] = field(default_factory=dict)
    response_rate: float = 0.0
    avg_engagement_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def headline(self) -> Dict[str, Any]:
        """Summary returned to the caller of a successful run."""
        return {
            "total_posts": self.total_posts,
            "total_comments": self.total_comments,
            "avg_sentiment_score": self.avg_sentiment_score,
            "positive_percentage": self.positive_percentage,
            "neutral_percentage": self.neutral_percentage,
            "negative_percentage": self.negative_percentage,
        }


@dataclass
class PlatformResult:
    """Per-platform outcome recorded by the pipeline, success or not."""
    platform: str
    attempted: bool = False
    posts: List[Post] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def post_count(self) -> int:
        return len(self.posts)

    def summary(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "post_count": self.post_count,
            "error": self.error,
        }
