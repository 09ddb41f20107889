"""
Sentiment Store — SQLite persistence for competitors, analysis runs, posts,
comments and run statistics.

Idempotency relies on the UNIQUE constraint on competitor_posts.post_url:
re-scraping a known post reuses its row and replaces its comments.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import config
from models import (
    AnalysisRun, Comment, Competitor, Post, Statistics, StoredComment,
)

logger = logging.getLogger(__name__)


# ── Database Setup ──

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS api_credentials (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service TEXT UNIQUE NOT NULL,
    api_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS competitors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    instagram_url TEXT,
    facebook_url TEXT,
    twitter_url TEXT,
    tiktok_url TEXT,
    follower_count INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sentiment_analyses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competitor_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    completed_at TEXT,
    FOREIGN KEY (competitor_id) REFERENCES competitors(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS competitor_posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competitor_id INTEGER NOT NULL,
    analysis_id INTEGER NOT NULL,
    platform TEXT NOT NULL,
    post_url TEXT NOT NULL UNIQUE,
    caption TEXT,
    likes INTEGER DEFAULT 0,
    comments_count INTEGER DEFAULT 0,
    engagement_rate REAL DEFAULT 0,
    posted_at TEXT,
    sentiment_score REAL DEFAULT 0,
    sentiment_label TEXT NOT NULL DEFAULT 'neutral'
        CHECK (sentiment_label IN ('positive', 'neutral', 'negative')),
    raw_data TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS post_comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    post_id INTEGER NOT NULL,
    comment_text TEXT NOT NULL,
    author_username TEXT,
    comment_likes INTEGER DEFAULT 0,
    posted_at TEXT,
    sentiment_score REAL DEFAULT 0,
    sentiment_label TEXT NOT NULL DEFAULT 'neutral'
        CHECK (sentiment_label IN ('positive', 'neutral', 'negative')),
    sentiment_explanation TEXT,
    keywords TEXT,
    is_response_from_brand INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (post_id) REFERENCES competitor_posts(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sentiment_statistics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competitor_id INTEGER NOT NULL,
    analysis_id INTEGER NOT NULL,
    total_posts INTEGER DEFAULT 0,
    total_comments INTEGER DEFAULT 0,
    avg_sentiment_score REAL DEFAULT 0,
    positive_percentage REAL DEFAULT 0,
    neutral_percentage REAL DEFAULT 0,
    negative_percentage REAL DEFAULT 0,
    top_keywords TEXT,
    response_rate REAL DEFAULT 0,
    avg_engagement_rate REAL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_comments_post
    ON post_comments(post_id);
CREATE INDEX IF NOT EXISTS idx_posts_analysis
    ON competitor_posts(analysis_id);
CREATE INDEX IF NOT EXISTS idx_statistics_analysis
    ON sentiment_statistics(analysis_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SentimentStore:
    """All reads and writes the sentiment pipeline makes."""

    def __init__(self, db_path=None):
        self.db_path = Path(db_path or config.DB_PATH)

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection with row factory and FK enforcement."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def init_db(self) -> None:
        """Create the database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_conn()
        try:
            conn.executescript(DB_SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # ── Competitors (read-only to the pipeline) ──

    def add_competitor(self, name: str, instagram_url: str = None,
                       facebook_url: str = None, twitter_url: str = None,
                       tiktok_url: str = None,
                       follower_count: Optional[int] = None) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute("""
                INSERT INTO competitors
                (name, instagram_url, facebook_url, twitter_url, tiktok_url,
                 follower_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (name, instagram_url, facebook_url, twitter_url, tiktok_url,
                  follower_count, _now()))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_competitor(self, competitor_id: int) -> Optional[Competitor]:
        conn = self._get_conn()
        try:
            row = conn.execute("""
                SELECT id, name, instagram_url, facebook_url, twitter_url,
                       tiktok_url, follower_count
                FROM competitors WHERE id = ?
            """, (competitor_id,)).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return Competitor(**dict(row))

    # ── Analysis runs ──

    def create_run(self, competitor_id: int) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute("""
                INSERT INTO sentiment_analyses (competitor_id, created_at, status)
                VALUES (?, ?, 'pending')
            """, (competitor_id, _now()))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def finish_run(self, run_id: int, success: bool,
                   error_message: Optional[str] = None) -> None:
        """Record the outcome of a run. Missing run ids are only logged."""
        conn = self._get_conn()
        try:
            cursor = conn.execute("""
                UPDATE sentiment_analyses
                SET status = ?, error_message = ?, completed_at = ?
                WHERE id = ?
            """, ("completed" if success else "failed", error_message,
                  _now(), run_id))
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            logger.warning(f"[DB] No analysis run {run_id} to update")

    def get_run(self, run_id: int) -> Optional[AnalysisRun]:
        conn = self._get_conn()
        try:
            row = conn.execute("""
                SELECT id, competitor_id, created_at, status, error_message, completed_at
                FROM sentiment_analyses WHERE id = ?
            """, (run_id,)).fetchone()
        finally:
            conn.close()
        return AnalysisRun(**dict(row)) if row else None

    # ── Posts ──

    def upsert_post(self, post: Post, competitor_id: int,
                    run_id: int) -> Optional[int]:
        """
        Insert a post, or reuse the existing row for the same post_url.

        On reuse the post's existing comments are deleted so a re-run
        replaces them instead of accumulating duplicates.

        Returns:
            The post id, or None if the post could not be stored.
        """
        conn = self._get_conn()
        try:
            try:
                cursor = conn.execute("""
                    INSERT INTO competitor_posts
                    (competitor_id, analysis_id, platform, post_url, caption,
                     likes, comments_count, engagement_rate, posted_at,
                     sentiment_score, sentiment_label, raw_data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    competitor_id, run_id, post.platform, post.post_url,
                    post.caption, post.likes, post.comments_count,
                    post.engagement_rate, post.posted_at,
                    post.sentiment.score, post.sentiment.label,
                    json.dumps(post.raw_data, default=str), _now(),
                ))
                conn.commit()
                logger.info(f"[DB] Inserted new post {cursor.lastrowid}: {post.post_url}")
                return cursor.lastrowid
            except sqlite3.IntegrityError as e:
                conn.rollback()
                row = conn.execute(
                    "SELECT id FROM competitor_posts WHERE post_url = ?",
                    (post.post_url,)
                ).fetchone()
                if not row:
                    logger.error(f"[DB] Error inserting post {post.post_url[:60]}: {e}")
                    return None

                post_id = row["id"]
                deleted = conn.execute(
                    "DELETE FROM post_comments WHERE post_id = ?", (post_id,)
                ).rowcount
                conn.commit()
                logger.info(
                    f"[DB] Post already exists, reusing {post_id} "
                    f"(cleared {deleted} old comments): {post.post_url}"
                )
                return post_id
        except sqlite3.Error as e:
            logger.error(f"[DB] Error storing post {post.post_url[:60]}: {e}")
            return None
        finally:
            conn.close()

    # ── Comments ──

    def insert_comments(self, post_id: int,
                        comments: List[Comment]) -> List[StoredComment]:
        """
        Insert comments row by row, each with its own sentiment fields.

        A failing row is logged and skipped; the rest of the batch goes on.
        Returns the comments actually written, in input order.
        """
        stored = []
        conn = self._get_conn()
        try:
            for comment in comments:
                sentiment = comment.sentiment
                try:
                    cursor = conn.execute("""
                        INSERT INTO post_comments
                        (post_id, comment_text, author_username, comment_likes,
                         posted_at, sentiment_score, sentiment_label,
                         sentiment_explanation, keywords,
                         is_response_from_brand, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        post_id, comment.text, comment.author_username,
                        comment.likes, comment.posted_at, sentiment.score,
                        sentiment.label, sentiment.explanation,
                        json.dumps(sentiment.keywords),
                        int(bool(comment.is_response_from_brand)), _now(),
                    ))
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    logger.error(f"[DB] Error inserting comment for post {post_id}: {e}")
                    continue

                stored.append(StoredComment(
                    id=cursor.lastrowid,
                    post_id=post_id,
                    author_username=comment.author_username,
                    text=comment.text,
                    sentiment_score=sentiment.score,
                    sentiment_label=sentiment.label,
                    keywords=list(sentiment.keywords),
                    is_response_from_brand=bool(comment.is_response_from_brand),
                ))
        finally:
            conn.close()

        return stored

    def get_comments(self, post_id: int) -> List[StoredComment]:
        conn = self._get_conn()
        try:
            rows = conn.execute("""
                SELECT id, post_id, author_username, comment_text, sentiment_score,
                       sentiment_label, keywords, is_response_from_brand
                FROM post_comments WHERE post_id = ?
                ORDER BY id
            """, (post_id,)).fetchall()
        finally:
            conn.close()

        return [
            StoredComment(
                id=row["id"],
                post_id=row["post_id"],
                author_username=row["author_username"],
                text=row["comment_text"],
                sentiment_score=row["sentiment_score"],
                sentiment_label=row["sentiment_label"],
                keywords=json.loads(row["keywords"] or "[]"),
                is_response_from_brand=bool(row["is_response_from_brand"]),
            )
            for row in rows
        ]

    # ── Statistics ──

    def insert_statistics(self, run_id: int, competitor_id: int,
                          stats: Statistics) -> int:
        """One row per run. Plain insert, never an upsert."""
        conn = self._get_conn()
        try:
            cursor = conn.execute("""
                INSERT INTO sentiment_statistics
                (competitor_id, analysis_id, total_posts, total_comments,
                 avg_sentiment_score, positive_percentage, neutral_percentage,
                 negative_percentage, top_keywords, response_rate,
                 avg_engagement_rate, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                competitor_id, run_id, stats.total_posts, stats.total_comments,
                stats.avg_sentiment_score, stats.positive_percentage,
                stats.neutral_percentage, stats.negative_percentage,
                json.dumps(stats.top_keywords), stats.response_rate,
                stats.avg_engagement_rate, _now(),
            ))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_statistics(self, run_id: int) -> Optional[Statistics]:
        conn = self._get_conn()
        try:
            row = conn.execute("""
                SELECT total_posts, total_comments, avg_sentiment_score,
                       positive_percentage, neutral_percentage, negative_percentage,
                       top_keywords, response_rate, avg_engagement_rate
                FROM sentiment_statistics
                WHERE analysis_id = ?
                ORDER BY id DESC LIMIT 1
            """, (run_id,)).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        data = dict(row)
        data["top_keywords"] = json.loads(data["top_keywords"] or "{}")
        return Statistics(**data)

    # ── Counts ──

    def count_posts(self) -> int:
        conn = self._get_conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM competitor_posts").fetchone()[0]
        finally:
            conn.close()

    def count_comments(self, post_id: Optional[int] = None) -> int:
        conn = self._get_conn()
        try:
            if post_id is None:
                return conn.execute("SELECT COUNT(*) FROM post_comments").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM post_comments WHERE post_id = ?", (post_id,)
            ).fetchone()[0]
        finally:
            conn.close()
