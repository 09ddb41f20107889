"""
Twitter Collector — fetches recent tweets with their replies via the Apify
Twitter Scraper. Replies arrive nested under each tweet (`replyTweets`).
"""

import logging
from typing import Any, Dict, List, Optional

from collectors import BaseCollector, same_handle, to_int, to_iso, username_from_url
from models import Comment, Platform, Post

logger = logging.getLogger(__name__)


class ApifyTwitterCollector(BaseCollector):
    """Collects tweets + replies for one handle."""

    platform = Platform.TWITTER.value
    ACTOR_ID = "apify~twitter-scraper"

    def resolve_identifier(self, profile_url: str) -> Optional[str]:
        return username_from_url(profile_url)

    def build_run_input(self, identifier: str) -> Dict[str, Any]:
        return {
            "handles": [identifier],
            "tweetsDesired": self.settings.posts_limit,
            "includeReplies": True,
        }

    def parse_items(self, items: List[dict], identifier: str) -> List[Post]:
        posts = []

        for item in items[:self.settings.posts_limit]:
            post_url = item.get("url") or ""
            if not post_url:
                logger.warning("  Tweet without url, skipping")
                continue
            posted_at = to_iso(item.get("createdAt"))

            def to_comment(raw: dict, text: str) -> Comment:
                author = (raw.get("author") or {}).get("userName") or "unknown"
                return Comment(
                    author_username=author,
                    text=text,
                    likes=to_int(raw.get("likes")),
                    posted_at=to_iso(raw.get("createdAt"), fallback=posted_at),
                    is_response_from_brand=same_handle(author, identifier),
                )

            posts.append(Post(
                platform=self.platform,
                post_url=post_url,
                caption=item.get("text") or "",
                likes=to_int(item.get("likes")),
                comments_count=to_int(item.get("replies")),
                posted_at=posted_at,
                comments=self.build_comments(item.get("replyTweets") or [], to_comment),
                raw_data=item,
            ))

        return posts
