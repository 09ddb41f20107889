"""
Collectors — platform-specific scraping adapters.

Each platform collector implements BaseCollector: it turns a competitor's
profile URL into an Apify job and the job's raw items into canonical
Post/Comment objects. Use collectors.registry to get the right collector
for a platform.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from apify_runner import ApifyRunner, JobSpec
from config import AnalysisSettings, DEFAULT_SETTINGS
from models import Comment, PlatformResult, Post

logger = logging.getLogger(__name__)


class BaseCollector(ABC):
    """Abstract base for all platform collectors."""

    platform: str = ""
    ACTOR_ID: str = ""

    def __init__(self, runner: ApifyRunner,
                 settings: AnalysisSettings = DEFAULT_SETTINGS):
        self.runner = runner
        self.settings = settings

    @property
    def label(self) -> str:
        return self.platform.capitalize()

    # ── Platform hooks ──

    @abstractmethod
    def resolve_identifier(self, profile_url: str) -> Optional[str]:
        """Extract what the actor needs (username or URL). None if unusable."""
        ...

    @abstractmethod
    def build_run_input(self, identifier: str) -> Dict[str, Any]:
        """Actor input for one profile."""
        ...

    @abstractmethod
    def parse_items(self, items: List[dict], identifier: str) -> List[Post]:
        """Normalize raw dataset items into canonical posts."""
        ...

    # ── Shared flow ──

    def scrape(self, profile_url: str) -> List[Post]:
        """Fetch posts with comments for one profile. Never raises."""
        return self.collect(profile_url).posts

    def collect(self, profile_url: str) -> PlatformResult:
        """
        Scrape one profile and report the outcome.

        Job and network errors are caught here and returned as
        PlatformResult.error so sibling platforms keep going.
        """
        result = PlatformResult(platform=self.platform, attempted=True)

        identifier = self.resolve_identifier(profile_url or "")
        if not identifier:
            logger.warning(f"[{self.label}] Could not extract a profile from {profile_url!r}")
            result.error = f"Could not read a profile from URL '{profile_url}'"
            return result

        logger.info(f"[{self.label}] Scraping posts for {identifier}...")
        try:
            items = self.runner.run(
                JobSpec(self.ACTOR_ID, self.build_run_input(identifier))
            )
            result.posts = self.parse_items(items, identifier)
        except Exception as e:
            logger.error(f"[{self.label}] Scraping failed for {identifier}: {type(e).__name__}: {e}")
            result.error = str(e) or type(e).__name__
            result.posts = []
            return result

        total_comments = sum(len(p.comments) for p in result.posts)
        logger.info(
            f"[{self.label}] Extracted {len(result.posts)} posts "
            f"with {total_comments} comments"
        )
        return result

    # ── Normalization helpers ──

    def keep_comment_text(self, text: Any) -> Optional[str]:
        """Trimmed text if long enough to be worth classifying, else None."""
        if not isinstance(text, str):
            return None
        text = text.strip()
        if len(text) < self.settings.min_comment_length:
            logger.debug(f"[{self.label}] Skipping short comment ({len(text)} chars): {text[:30]!r}")
            return None
        return text

    def build_comments(self, raw_comments: Iterable[dict],
                       to_comment: Callable[[dict, str], Comment]) -> List[Comment]:
        """Filter by length, convert, and cap comments for one post."""
        comments = []
        for raw in raw_comments or []:
            if len(comments) >= self.settings.comments_per_post:
                break
            if not isinstance(raw, dict):
                continue
            text = self.keep_comment_text(raw.get("text"))
            if text is None:
                continue
            comments.append(to_comment(raw, text))
        return comments

    def group_comment_stream(self, items: Iterable[dict],
                             post_key: Callable[[dict], str],
                             new_post: Callable[[dict, str], Post],
                             to_comment: Callable[[dict, str], Optional[Comment]]) -> List[Post]:
        """
        Group a flat comment stream into posts.

        One Post per distinct post_key, in first-seen order. The per-post
        comment cap applies after grouping.
        """
        posts: Dict[str, Post] = {}
        skipped = 0

        for item in items:
            key = post_key(item)
            if key not in posts:
                posts[key] = new_post(item, key)
            post = posts[key]

            if len(post.comments) >= self.settings.comments_per_post:
                continue
            text = self.keep_comment_text(item.get("text"))
            if text is None:
                skipped += 1
                continue
            comment = to_comment(item, text)
            if comment is not None:
                post.comments.append(comment)

        if skipped:
            logger.info(f"[{self.label}] Skipped {skipped} short comments")

        for post in posts.values():
            post.comments_count = len(post.comments)
        return list(posts.values())


# ── Shared parsing utilities ──

def username_from_url(profile_url: str) -> Optional[str]:
    """
    Last path segment of a profile URL, without a leading '@'.

    Accepts bare handles too ('nike', '@nike').
    """
    if not profile_url:
        return None
    value = profile_url.strip()
    if "://" in value or value.startswith("www."):
        if "://" not in value:
            value = "https://" + value
        path = urlparse(value).path
    else:
        path = value.split("?", 1)[0]
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    username = segments[-1].lstrip("@")
    return username or None


def http_url(profile_url: str) -> Optional[str]:
    """Profile URL normalized to http(s), or None if it has no host."""
    if not profile_url or not profile_url.strip():
        return None
    value = profile_url.strip()
    if "://" not in value:
        value = "https://" + value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or "." not in parsed.netloc:
        return None
    return value


def to_iso(value: Any, fallback: Optional[str] = None) -> str:
    """Normalize an ISO string or unix timestamp to ISO-8601 (UTC)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
        except (ValueError, OverflowError, OSError):
            pass
    elif isinstance(value, str) and value.strip():
        return value.strip()
    return fallback or datetime.now(timezone.utc).isoformat()


def to_int(value: Any) -> int:
    """Counts arrive as ints, numeric strings, or null."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def same_handle(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lstrip("@").lower() == b.strip().lstrip("@").lower()
