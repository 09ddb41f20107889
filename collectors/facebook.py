"""
Facebook Collector — fetches public Page comments via the Apify Facebook
Comments Scraper.

The actor returns a flat stream of comments tagged with the post they belong
to, so they are grouped back into posts here. Post-level likes are not part
of that payload and stay at 0.
"""

import logging
from typing import Any, Dict, List, Optional

from collectors import BaseCollector, http_url, same_handle, to_int, to_iso, username_from_url
from models import Comment, Platform, Post

logger = logging.getLogger(__name__)


class ApifyFacebookCollector(BaseCollector):
    """Collects Facebook Page posts + top-level comments."""

    platform = Platform.FACEBOOK.value
    ACTOR_ID = "apify~facebook-comments-scraper"

    def resolve_identifier(self, profile_url: str) -> Optional[str]:
        # The actor takes the full page URL, not a slug
        return http_url(profile_url)

    def build_run_input(self, identifier: str) -> Dict[str, Any]:
        return {
            "startUrls": [{"url": identifier}],
            "maxPosts": self.settings.posts_limit,
            "maxComments": self.settings.comments_per_post,
            "commentsMode": "RANKED_THREADED",
        }

    def parse_items(self, items: List[dict], identifier: str) -> List[Post]:
        """Group the comment stream by facebookId into posts."""
        page_name = username_from_url(identifier)

        def post_key(item: dict) -> str:
            return str(item.get("facebookId") or item.get("postId") or "unknown")

        def new_post(item: dict, key: str) -> Post:
            return Post(
                platform=self.platform,
                post_url=item.get("facebookUrl") or item.get("commentUrl") or item.get("inputUrl") or "",
                caption=item.get("postTitle") or "",
                posted_at=to_iso(item.get("date")),
                raw_data={"facebookId": key, "first_item": item},
            )

        def to_comment(item: dict, text: str) -> Optional[Comment]:
            # Replies are skipped, only top-level comments count
            if to_int(item.get("threadingDepth")) != 0:
                return None
            author = item.get("profileName") or "Unknown"
            return Comment(
                author_username=author,
                text=text,
                likes=to_int(item.get("likesCount")),
                posted_at=to_iso(item.get("date")),
                is_response_from_brand=same_handle(author, page_name),
            )

        posts = self.group_comment_stream(items, post_key, new_post, to_comment)
        posts = [p for p in posts if p.post_url]
        return posts[:self.settings.posts_limit]
