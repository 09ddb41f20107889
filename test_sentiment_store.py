"""
Tests for the SQLite sentiment store: post upsert idempotency, comment
replacement, per-row write failures and run bookkeeping.
"""

import os
import shutil
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import config
from models import Comment, Post, SentimentResult, Statistics
from sentiment_store import SentimentStore


def _post(url="https://www.instagram.com/p/abc/", comments=None, **kwargs):
    return Post(
        platform="instagram",
        post_url=url,
        caption="A caption long enough",
        likes=10,
        comments_count=len(comments or []),
        posted_at="2024-05-01T10:00:00Z",
        comments=comments or [],
        raw_data={"shortCode": "abc"},
        **kwargs
    )


def _comment(text, label="positive", score=0.5, brand=False):
    return Comment(
        author_username="fan",
        text=text,
        is_response_from_brand=brand,
        sentiment=SentimentResult(score=score, label=label,
                                  explanation="because", keywords=["shoes"]),
    )


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.store = SentimentStore(Path(self.tmpdir) / "test.db")
        self.store.init_db()
        self.competitor_id = self.store.add_competitor(
            "Nike", instagram_url="https://www.instagram.com/nike/",
            follower_count=5000,
        )
        self.run_id = self.store.create_run(self.competitor_id)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestCompetitorsAndRuns(StoreTestCase):

    def test_get_competitor(self):
        competitor = self.store.get_competitor(self.competitor_id)
        self.assertEqual(competitor.name, "Nike")
        self.assertEqual(competitor.follower_count, 5000)
        self.assertIsNone(competitor.tiktok_url)
        self.assertIsNone(self.store.get_competitor(999))

    def test_run_lifecycle(self):
        run = self.store.get_run(self.run_id)
        self.assertEqual(run.status, "pending")
        self.assertIsNone(run.completed_at)

        self.store.finish_run(self.run_id, success=False, error_message="No posts")
        run = self.store.get_run(self.run_id)
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.error_message, "No posts")
        self.assertIsNotNone(run.completed_at)

    def test_finish_unknown_run_is_harmless(self):
        self.store.finish_run(12345, success=True)
        self.assertIsNone(self.store.get_run(12345))

    def test_run_requires_existing_competitor(self):
        with self.assertRaises(sqlite3.IntegrityError):
            self.store.create_run(999)


class TestPostUpsert(StoreTestCase):

    def test_upsert_reuses_row_and_replaces_comments(self):
        post = _post(comments=[_comment("first comment text"), _comment("second comment text")])
        post_id = self.store.upsert_post(post, self.competitor_id, self.run_id)
        self.store.insert_comments(post_id, post.comments)
        self.assertEqual(self.store.count_comments(post_id), 2)

        second_run = self.store.create_run(self.competitor_id)
        again = _post(comments=[_comment("only comment now")])
        again_id = self.store.upsert_post(again, self.competitor_id, second_run)

        self.assertEqual(again_id, post_id)
        self.assertEqual(self.store.count_posts(), 1)
        # Old comments are cleared on reuse
        self.assertEqual(self.store.count_comments(post_id), 0)

        self.store.insert_comments(again_id, again.comments)
        self.assertEqual([c.text for c in self.store.get_comments(post_id)],
                         ["only comment now"])

    def test_distinct_urls_get_distinct_rows(self):
        a = self.store.upsert_post(_post("https://x/1"), self.competitor_id, self.run_id)
        b = self.store.upsert_post(_post("https://x/2"), self.competitor_id, self.run_id)
        self.assertNotEqual(a, b)
        self.assertEqual(self.store.count_posts(), 2)

    def test_invalid_post_returns_none(self):
        post = _post(sentiment=SentimentResult(label="furious"))
        self.assertIsNone(self.store.upsert_post(post, self.competitor_id, self.run_id))
        self.assertEqual(self.store.count_posts(), 0)

    def test_deleting_post_cascades_to_comments(self):
        post_id = self.store.upsert_post(_post(), self.competitor_id, self.run_id)
        self.store.insert_comments(post_id, [_comment("a comment to delete")])

        conn = sqlite3.connect(str(self.store.db_path))
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("DELETE FROM competitor_posts WHERE id = ?", (post_id,))
        conn.commit()
        conn.close()

        self.assertEqual(self.store.count_comments(), 0)


class TestCommentInsert(StoreTestCase):

    def test_failing_row_is_skipped(self):
        post_id = self.store.upsert_post(_post(), self.competitor_id, self.run_id)
        comments = [
            _comment("good comment one"),
            _comment("bad label comment", label="ecstatic"),
            _comment("good comment two", label="negative", score=-0.4, brand=True),
        ]
        stored = self.store.insert_comments(post_id, comments)

        self.assertEqual([c.text for c in stored], ["good comment one", "good comment two"])
        self.assertEqual(self.store.count_comments(post_id), 2)
        self.assertTrue(stored[1].is_response_from_brand)
        self.assertEqual(stored[1].sentiment_label, "negative")

    def test_round_trip_fields(self):
        post_id = self.store.upsert_post(_post(), self.competitor_id, self.run_id)
        self.store.insert_comments(post_id, [_comment("the keywords survive", brand=True)])

        comment = self.store.get_comments(post_id)[0]
        self.assertEqual(comment.keywords, ["shoes"])
        self.assertEqual(comment.sentiment_score, 0.5)
        self.assertTrue(comment.is_response_from_brand)


class TestStatistics(StoreTestCase):

    def test_insert_and_get(self):
        stats = Statistics(total_posts=2, total_comments=4, avg_sentiment_score=0.25,
                           positive_percentage=50.0, neutral_percentage=25.0,
                           negative_percentage=25.0, top_keywords={"shoes": 3},
                           response_rate=25.0, avg_engagement_rate=1.5)
        self.store.insert_statistics(self.run_id, self.competitor_id, stats)

        self.assertEqual(self.store.get_statistics(self.run_id), stats)
        self.assertIsNone(self.store.get_statistics(self.run_id + 1))


class TestApiKeyLookup(StoreTestCase):

    def test_database_key_preferred(self):
        conn = sqlite3.connect(str(self.store.db_path))
        conn.execute(
            "INSERT INTO api_credentials (service, api_key, created_at, updated_at) "
            "VALUES ('apify', 'db_token', 'now', 'now')"
        )
        conn.commit()
        conn.close()

        with patch.dict(os.environ, {"APIFY_API_TOKEN": "env_token", "OPENAI_API_KEY": ""}):
            self.assertEqual(config.get_api_key('apify', self.store.db_path), "db_token")
            self.assertEqual(config.get_api_key('openai', self.store.db_path), "")

    def test_env_fallback(self):
        missing_db = Path(self.tmpdir) / "absent.db"
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env"}):
            self.assertEqual(config.get_api_key('openai', self.store.db_path), "sk-env")
            self.assertEqual(config.get_api_key('openai', missing_db), "sk-env")
        self.assertEqual(config.get_api_key('unknown', missing_db), "")


if __name__ == '__main__':
    unittest.main(verbosity=2)
