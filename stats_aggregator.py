"""
Stats Aggregator — run-level sentiment statistics and engagement rates.

calculate_statistics is pure: it only looks at the posts and comments it is
given, which for a run are the ones actually persisted.
"""

from collections import Counter
from typing import Iterable, List, Optional

from models import (
    Competitor, NEGATIVE, POSITIVE, Statistics, StoredComment, StoredPost,
)


class FixedFollowerCount:
    """Same follower count for every competitor and platform."""

    def __init__(self, follower_count: int = 1000):
        self.follower_count = follower_count

    def __call__(self, competitor: Optional[Competitor], platform: str) -> int:
        return self.follower_count


class CompetitorFollowerCount:
    """Competitor's recorded follower count, else a fixed fallback."""

    def __init__(self, fallback: int = 1000):
        self.fallback = fallback

    def __call__(self, competitor: Optional[Competitor], platform: str) -> int:
        if competitor is not None and competitor.follower_count:
            return competitor.follower_count
        return self.fallback


def engagement_rate(likes: int, comments: int, followers: int) -> float:
    """(likes + comments) / followers, as a percentage."""
    if not followers or followers <= 0:
        return 0.0
    interactions = (likes or 0) + (comments or 0)
    if interactions <= 0:
        return 0.0
    return interactions / followers * 100


def top_keywords(keyword_lists: Iterable[List[str]], limit: int = 10) -> dict:
    """Most frequent keywords; ties keep first-seen order."""
    counts = Counter()
    for keywords in keyword_lists:
        for keyword in keywords or []:
            counts[keyword] += 1
    # most_common uses a stable sort, so insertion order breaks ties
    return dict(counts.most_common(limit))


def calculate_statistics(posts: List[StoredPost], comments: List[StoredComment],
                         top_n: int = 10) -> Statistics:
    """Aggregate one run's posts and comments into a Statistics record."""
    total_posts = len(posts)
    total_comments = len(comments)

    if total_comments == 0:
        return Statistics(total_posts=total_posts)

    avg_sentiment = sum(c.sentiment_score or 0 for c in comments) / total_comments

    labels = Counter(c.sentiment_label for c in comments)
    positive = labels.get(POSITIVE, 0)
    negative = labels.get(NEGATIVE, 0)
    # Anything outside the enum counts as neutral so the three always sum to 100
    neutral = total_comments - positive - negative

    brand_responses = sum(1 for c in comments if c.is_response_from_brand)

    avg_engagement = 0.0
    if total_posts:
        avg_engagement = sum(p.engagement_rate for p in posts) / total_posts

    return Statistics(
        total_posts=total_posts,
        total_comments=total_comments,
        avg_sentiment_score=avg_sentiment,
        positive_percentage=positive / total_comments * 100,
        neutral_percentage=neutral / total_comments * 100,
        negative_percentage=negative / total_comments * 100,
        top_keywords=top_keywords((c.keywords for c in comments), top_n),
        response_rate=brand_responses / total_comments * 100,
        avg_engagement_rate=avg_engagement,
    )
