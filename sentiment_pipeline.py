"""
Sentiment Pipeline — competitor sentiment analysis orchestrator.

One invocation = one analysis run for one competitor:
  1. Load the competitor; stop early if no social profile is configured
  2. Scrape every configured platform (failures isolated per platform)
  3. Stop with a per-platform diagnostic if nothing at all was found
  4. Classify captions and comments, persist posts and comments
  5. Aggregate and persist the run statistics
  6. Return a summary

Only a missing competitor, missing profiles and zero collected posts fail a
run. Scrape errors, classification errors and single-row write errors are
logged and the run carries on.
"""

import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import config
from collectors import BaseCollector
from models import (
    Competitor, Platform, PlatformResult, Post, StoredComment, StoredPost,
)
from sentiment_analyzer import SentimentAnalyzer
from sentiment_store import SentimentStore
from stats_aggregator import CompetitorFollowerCount, calculate_statistics, engagement_rate

logger = logging.getLogger(__name__)

FollowerCountProvider = Callable[[Optional[Competitor], str], int]


class SentimentAnalysisError(Exception):
    """A run-level failure reported back to the caller."""
    error_code = "analysis_failed"


class CompetitorNotFoundError(SentimentAnalysisError):
    error_code = "competitor_not_found"


class NoSocialProfilesError(SentimentAnalysisError):
    error_code = "no_social_profiles"


class NoPostsCollectedError(SentimentAnalysisError):
    error_code = "no_posts_collected"

    def __init__(self, message: str, platform_results: List[PlatformResult]):
        super().__init__(message)
        self.platform_results = platform_results


NO_PROFILES_MESSAGE = (
    "This competitor has no social media account configured. Add at least "
    "one URL (Instagram, Facebook, Twitter or TikTok) to analyze sentiment."
)

_NO_POSTS_REASONS = {
    Platform.FACEBOOK.value: (
        "No posts found - check that the URL is complete and the page is public"
    ),
}
_DEFAULT_NO_POSTS_REASON = "No posts found or private account"

REMEDIATION_HINTS = (
    "Check that the URLs are correct and complete",
    "Make sure the accounts are public",
    "For Facebook: use the full page URL (e.g. facebook.com/pagename)",
    "Try adding other social networks (Instagram recommended)",
)


def unique_posts(posts: List[Post]) -> List[Post]:
    """Drop repeated post_urls, keeping the first occurrence."""
    seen = set()
    unique = []
    for post in posts:
        if post.post_url in seen:
            logger.warning(f"[Scraping] Skipping duplicate post in this run: {post.post_url}")
            continue
        seen.add(post.post_url)
        unique.append(post)
    return unique


def build_no_posts_message(platform_results: List[PlatformResult]) -> str:
    """Explain, platform by platform, why nothing was collected."""
    lines = []
    for result in platform_results:
        if not result.attempted or result.post_count > 0:
            continue
        reason = result.error or _NO_POSTS_REASONS.get(result.platform, _DEFAULT_NO_POSTS_REASON)
        lines.append(f"- {result.platform.capitalize()}: {reason}")

    message = "No posts could be retrieved for this competitor."
    if lines:
        message += "\n\nDetails:\n" + "\n".join(lines)
    message += "\n\nSuggestions:\n" + "\n".join(f"- {hint}" for hint in REMEDIATION_HINTS)
    return message


class SentimentPipeline:
    """Runs the scrape → classify → persist → aggregate flow for one competitor."""

    def __init__(self, store: SentimentStore,
                 collectors: Dict[Platform, BaseCollector],
                 analyzer: SentimentAnalyzer,
                 settings: config.AnalysisSettings = config.DEFAULT_SETTINGS,
                 follower_counts: Optional[FollowerCountProvider] = None):
        self.store = store
        self.collectors = collectors
        self.analyzer = analyzer
        self.settings = settings
        self.follower_counts = follower_counts or CompetitorFollowerCount(
            fallback=settings.default_follower_count
        )

    def run(self, competitor_id: int, run_id: int) -> Dict:
        """
        Analyze one competitor for one run.

        Returns:
            Summary dict with success, message, statistics and per-platform
            results.

        Raises:
            CompetitorNotFoundError, NoSocialProfilesError, NoPostsCollectedError
        """
        logger.info(f"[Sentiment Analysis] Starting for competitor {competitor_id} (run {run_id})...")

        competitor = self.store.get_competitor(competitor_id)
        if competitor is None:
            raise CompetitorNotFoundError(f"Competitor {competitor_id} not found")

        profile_urls = competitor.profile_urls()
        if not profile_urls:
            raise NoSocialProfilesError(NO_PROFILES_MESSAGE)

        # ── Scraping ──
        platform_results = self.collect_all(profile_urls)
        all_posts = [post for result in platform_results for post in result.posts]

        logger.info(f"[Scraping] Collected {len(all_posts)} posts total")
        logger.info(
            "[Scraping] Platform results: "
            + json.dumps({r.platform: r.summary() for r in platform_results})
        )

        if not all_posts:
            message = build_no_posts_message(platform_results)
            logger.error(f"[Error] No posts scraped: {message}")
            raise NoPostsCollectedError(message, platform_results)

        all_posts = unique_posts(all_posts)

        # ── Classification + persistence ──
        stored_posts: List[StoredPost] = []
        stored_comments: List[StoredComment] = []

        for post in all_posts:
            stored = self._process_post(post, competitor, run_id)
            if stored is None:
                continue
            stored_post, comments = stored
            stored_posts.append(stored_post)
            stored_comments.extend(comments)

        logger.info(
            f"[DB] Inserted {len(stored_posts)} posts and {len(stored_comments)} comments"
        )

        # ── Aggregation ──
        statistics = calculate_statistics(
            stored_posts, stored_comments, top_n=self.settings.top_keywords_limit
        )
        try:
            self.store.insert_statistics(run_id, competitor.id, statistics)
        except sqlite3.Error as e:
            logger.error(f"[DB] Error inserting statistics for run {run_id}: {e}")

        logger.info("[Sentiment Analysis] Completed successfully")
        return {
            "success": True,
            "message": (
                f"Sentiment analysis completed: {statistics.total_posts} posts, "
                f"{statistics.total_comments} comments "
                f"({statistics.positive_percentage:.1f}% positive, "
                f"{statistics.neutral_percentage:.1f}% neutral, "
                f"{statistics.negative_percentage:.1f}% negative)"
            ),
            "statistics": statistics.headline(),
            "platforms": {r.platform: r.summary() for r in platform_results},
        }

    def collect_all(self, profile_urls: Dict[Platform, str]) -> List[PlatformResult]:
        """Scrape each configured platform. Results come back in profile_urls order."""
        items = list(profile_urls.items())
        workers = min(self.settings.max_platform_workers, len(items))

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                return list(executor.map(lambda item: self._collect_one(*item), items))
        return [self._collect_one(platform, url) for platform, url in items]

    def _collect_one(self, platform: Platform, profile_url: str) -> PlatformResult:
        collector = self.collectors.get(platform)
        if collector is None:
            logger.warning(f"[{platform.value}] No collector available, skipping")
            return PlatformResult(platform=platform.value, attempted=True,
                                  error="No collector available for this platform")
        try:
            return collector.collect(profile_url)
        except Exception as e:
            # Collectors catch their own errors; this guards custom ones
            logger.error(f"[{platform.value}] Failed to scrape posts: {type(e).__name__}: {e}")
            return PlatformResult(platform=platform.value, attempted=True,
                                  error=str(e) or type(e).__name__)

    def _process_post(self, post: Post, competitor: Competitor, run_id: int):
        """Classify, persist and return (StoredPost, stored comments) or None."""
        followers = self.follower_counts(competitor, post.platform)
        post.engagement_rate = engagement_rate(post.likes, post.comments_count, followers)

        caption = (post.caption or "").strip()
        if len(caption) >= self.settings.min_comment_length:
            post.sentiment = self.analyzer.classify_one(caption)

        post_id = self.store.upsert_post(post, competitor.id, run_id)
        if post_id is None:
            logger.error(f"[DB] Skipping post that could not be stored: {post.post_url}")
            return None

        logger.info(f"[DB] Processing {len(post.comments)} comments for post {post_id}...")
        if post.comments:
            sentiments = self.analyzer.classify([c.text for c in post.comments])
            for comment, sentiment in zip(post.comments, sentiments):
                comment.sentiment = sentiment
        comments = self.store.insert_comments(post_id, post.comments)

        stored_post = StoredPost(
            id=post_id,
            platform=post.platform,
            post_url=post.post_url,
            likes=post.likes,
            comments_count=post.comments_count,
            engagement_rate=post.engagement_rate,
        )
        return stored_post, comments


def create_pipeline(store: SentimentStore,
                    settings: config.AnalysisSettings = config.DEFAULT_SETTINGS) -> SentimentPipeline:
    """Wire a pipeline with real Apify collectors and the OpenAI analyzer."""
    from apify_runner import create_apify_runner
    from collectors.registry import create_collectors
    from sentiment_analyzer import create_sentiment_analyzer

    runner = create_apify_runner(settings)
    return SentimentPipeline(
        store=store,
        collectors=create_collectors(runner, settings),
        analyzer=create_sentiment_analyzer(settings),
        settings=settings,
    )


def run_sentiment_analysis(competitor_id, analysis_run_id,
                           store: Optional[SentimentStore] = None,
                           settings: Optional[config.AnalysisSettings] = None,
                           pipeline: Optional[SentimentPipeline] = None) -> Dict:
    """
    Invocation entrypoint.

    Returns {"success": True, "message", "statistics", ...} or
    {"success": False, "error", "error_code"}. Never raises for run-level
    failures; the run row records the outcome.
    """
    if competitor_id is None or analysis_run_id is None:
        return {
            "success": False,
            "error": "Missing competitor_id or analysis_id",
            "error_code": "missing_parameters",
        }

    store = store or SentimentStore()

    try:
        settings = settings or config.load_settings()
        pipeline = pipeline or create_pipeline(store, settings)
        result = pipeline.run(competitor_id, analysis_run_id)
    except SentimentAnalysisError as e:
        store.finish_run(analysis_run_id, success=False, error_message=str(e))
        return {"success": False, "error": str(e), "error_code": e.error_code}
    except (ValueError, config.SettingsValidationError) as e:
        # Missing API credentials or a bad settings file
        logger.error(f"[Error] Configuration problem: {e}")
        store.finish_run(analysis_run_id, success=False, error_message=str(e))
        return {"success": False, "error": str(e), "error_code": "configuration"}
    except Exception as e:
        logger.exception(f"[Error] Sentiment analysis failed for competitor {competitor_id}")
        message = f"Sentiment analysis failed: {type(e).__name__}: {e}"
        store.finish_run(analysis_run_id, success=False, error_message=message)
        return {"success": False, "error": message, "error_code": "internal"}

    store.finish_run(analysis_run_id, success=True)
    return result
