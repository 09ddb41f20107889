"""
TikTok Collector — fetches video comments via Apify
(apidojo/tiktok-comments-scraper).

Like Facebook, the actor yields a flat comment stream; comments are grouped
by video id. Videos with too few usable comments are dropped since they say
little about audience sentiment.
"""

import logging
from typing import Any, Dict, List, Optional

from collectors import BaseCollector, http_url, same_handle, to_int, to_iso, username_from_url
from models import Comment, Platform, Post

logger = logging.getLogger(__name__)


class ApifyTikTokCollector(BaseCollector):
    """Collects TikTok videos + comments for a profile or video URL."""

    platform = Platform.TIKTOK.value
    ACTOR_ID = "apidojo~tiktok-comments-scraper"

    def resolve_identifier(self, profile_url: str) -> Optional[str]:
        return http_url(profile_url)

    def build_run_input(self, identifier: str) -> Dict[str, Any]:
        return {
            "startUrls": [{"url": identifier}],
            "includeReplies": False,
            "maxItems": self.settings.posts_limit * self.settings.comments_per_post,
        }

    def parse_items(self, items: List[dict], identifier: str) -> List[Post]:
        handle = username_from_url(identifier)

        def post_key(item: dict) -> str:
            return str(item.get("awemeId") or item.get("parentId") or "unknown")

        def new_post(item: dict, key: str) -> Post:
            video = item.get("post") or {}
            return Post(
                platform=self.platform,
                post_url=video.get("url") or f"https://www.tiktok.com/video/{key}",
                posted_at=to_iso(item.get("createdAt")),
                raw_data={"awemeId": key, "first_item": item},
            )

        def to_comment(item: dict, text: str) -> Comment:
            author = (item.get("user") or {}).get("username") or "unknown"
            return Comment(
                author_username=author,
                text=text,
                likes=to_int(item.get("likeCount")),
                posted_at=to_iso(item.get("createdAt")),
                is_response_from_brand=same_handle(author, handle),
            )

        posts = self.group_comment_stream(items, post_key, new_post, to_comment)

        min_comments = self.settings.tiktok_min_comments_per_post
        kept = [p for p in posts if len(p.comments) >= min_comments]
        if len(kept) < len(posts):
            logger.info(
                f"  TikTok: dropped {len(posts) - len(kept)} videos with "
                f"fewer than {min_comments} usable comments"
            )
        return kept[:self.settings.posts_limit]
