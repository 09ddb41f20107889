"""
Instagram Collector — fetches public posts with their latest comments via
the Apify Instagram Scraper.

Comments come back already nested under each post (`latestComments`).
"""

import logging
from typing import Any, Dict, List, Optional

from collectors import BaseCollector, same_handle, to_int, to_iso, username_from_url
from models import Comment, Platform, Post

logger = logging.getLogger(__name__)


class ApifyInstagramCollector(BaseCollector):
    """Collects Instagram posts + latest comments via apify/instagram-scraper."""

    platform = Platform.INSTAGRAM.value
    ACTOR_ID = "apify~instagram-scraper"

    def resolve_identifier(self, profile_url: str) -> Optional[str]:
        return username_from_url(profile_url)

    def build_run_input(self, identifier: str) -> Dict[str, Any]:
        return {
            "directUrls": [f"https://www.instagram.com/{identifier}/"],
            "resultsType": "posts",
            "resultsLimit": self.settings.posts_limit,
            "searchLimit": 1,
        }

    def parse_items(self, items: List[dict], identifier: str) -> List[Post]:
        """Parse Apify Instagram items into Posts with nested comments."""
        posts = []

        for item in items[:self.settings.posts_limit]:
            short_code = item.get("shortCode", "")
            post_url = item.get("url") or (
                f"https://www.instagram.com/p/{short_code}/" if short_code else ""
            )
            if not post_url:
                logger.warning("  Instagram item without url or shortCode, skipping")
                continue

            posted_at = to_iso(item.get("timestamp"))

            def to_comment(raw: dict, text: str) -> Comment:
                author = raw.get("ownerUsername") or "unknown"
                return Comment(
                    author_username=author,
                    text=text,
                    likes=to_int(raw.get("likesCount")),
                    posted_at=to_iso(raw.get("timestamp"), fallback=posted_at),
                    is_response_from_brand=same_handle(author, identifier),
                )

            posts.append(Post(
                platform=self.platform,
                post_url=post_url,
                caption=item.get("caption") or "",
                likes=to_int(item.get("likesCount")),
                comments_count=to_int(item.get("commentsCount")),
                posted_at=posted_at,
                comments=self.build_comments(item.get("latestComments") or [], to_comment),
                raw_data=item,
            ))

        return posts
