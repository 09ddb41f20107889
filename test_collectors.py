"""
Tests for the platform collectors: identifier resolution, comment length
filtering, grouping of flat comment streams, caps and error isolation.
No network: the Apify runner is a MagicMock returning canned items.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from apify_runner import ApifyPollTimeout, ApifyRunFailed, JobSpec, JobStatus
from collectors import http_url, same_handle, to_int, to_iso, username_from_url
from collectors.facebook import ApifyFacebookCollector
from collectors.instagram import ApifyInstagramCollector
from collectors.registry import create_collector, create_collectors
from collectors.tiktok import ApifyTikTokCollector
from collectors.twitter import ApifyTwitterCollector
from config import AnalysisSettings
from models import Platform


def _runner(items=None, error=None):
    runner = MagicMock()
    if error is not None:
        runner.run.side_effect = error
    else:
        runner.run.return_value = items or []
    return runner


def _ig_item(n, comments=None, **extra):
    item = {
        "shortCode": f"code{n}",
        "url": f"https://www.instagram.com/p/code{n}/",
        "caption": f"Caption number {n}",
        "likesCount": 100 + n,
        "commentsCount": 10 + n,
        "timestamp": "2024-05-01T10:00:00.000Z",
        "latestComments": comments or [],
    }
    item.update(extra)
    return item


class TestUrlHelpers(unittest.TestCase):

    def test_username_from_url(self):
        self.assertEqual(username_from_url("https://www.instagram.com/nike/"), "nike")
        self.assertEqual(username_from_url("https://www.tiktok.com/@nike?lang=en"), "nike")
        self.assertEqual(username_from_url("www.twitter.com/nike"), "nike")
        self.assertEqual(username_from_url("@nike"), "nike")
        self.assertIsNone(username_from_url("https://www.instagram.com/"))
        self.assertIsNone(username_from_url(""))

    def test_http_url(self):
        self.assertEqual(http_url("facebook.com/nike"), "https://facebook.com/nike")
        self.assertEqual(http_url(" https://facebook.com/nike "), "https://facebook.com/nike")
        self.assertIsNone(http_url("not a url"))
        self.assertIsNone(http_url("ftp://facebook.com/nike"))
        self.assertIsNone(http_url("   "))

    def test_to_iso_and_to_int(self):
        self.assertEqual(to_iso(0), "1970-01-01T00:00:00+00:00")
        self.assertEqual(to_iso("2024-05-01T10:00:00Z"), "2024-05-01T10:00:00Z")
        self.assertEqual(to_iso(None, fallback="x"), "x")
        self.assertEqual(to_int("42"), 42)
        self.assertEqual(to_int(None), 0)
        self.assertEqual(to_int("n/a"), 0)

    def test_same_handle(self):
        self.assertTrue(same_handle("@Nike", "nike"))
        self.assertFalse(same_handle("adidas", "nike"))
        self.assertFalse(same_handle(None, "nike"))


class TestInstagramCollector(unittest.TestCase):

    def test_builds_job_for_username(self):
        runner = _runner([])
        collector = ApifyInstagramCollector(runner, AnalysisSettings(posts_limit=5))
        collector.scrape("https://www.instagram.com/nike/")

        spec = runner.run.call_args[0][0]
        self.assertIsInstance(spec, JobSpec)
        self.assertEqual(spec.actor_id, "apify~instagram-scraper")
        self.assertEqual(spec.run_input["directUrls"], ["https://www.instagram.com/nike/"])
        self.assertEqual(spec.run_input["resultsLimit"], 5)

    def test_comment_length_boundary(self):
        """A 9-character comment is dropped, a 10-character one is kept."""
        comments = [
            {"text": "123456789", "ownerUsername": "a"},
            {"text": "1234567890", "ownerUsername": "b"},
            {"text": "   123456789   ", "ownerUsername": "c"},
            {"text": None, "ownerUsername": "d"},
        ]
        collector = ApifyInstagramCollector(_runner([_ig_item(1, comments)]))
        posts = collector.scrape("https://www.instagram.com/nike/")

        self.assertEqual(len(posts), 1)
        self.assertEqual([c.text for c in posts[0].comments], ["1234567890"])

    def test_post_fields_and_brand_response(self):
        comments = [
            {"text": "Love these shoes so much", "ownerUsername": "fan1", "likesCount": 3},
            {"text": "Thanks for the support!", "ownerUsername": "Nike"},
        ]
        collector = ApifyInstagramCollector(_runner([_ig_item(1, comments)]))
        post = collector.scrape("https://www.instagram.com/nike/")[0]

        self.assertEqual(post.platform, "instagram")
        self.assertEqual(post.post_url, "https://www.instagram.com/p/code1/")
        self.assertEqual(post.likes, 101)
        self.assertEqual(post.comments_count, 11)
        self.assertEqual(post.comments[0].likes, 3)
        self.assertFalse(post.comments[0].is_response_from_brand)
        self.assertTrue(post.comments[1].is_response_from_brand)

    def test_caps_posts_and_comments(self):
        comments = [{"text": f"comment number {i}", "ownerUsername": "u"} for i in range(5)]
        items = [_ig_item(i, comments) for i in range(4)]
        settings = AnalysisSettings(posts_limit=2, comments_per_post=3)
        posts = ApifyInstagramCollector(_runner(items), settings).scrape("nike")

        self.assertEqual(len(posts), 2)
        self.assertTrue(all(len(p.comments) == 3 for p in posts))
        self.assertEqual(posts[0].comments[0].text, "comment number 0")

    def test_url_built_from_short_code(self):
        item = _ig_item(7)
        del item["url"]
        post = ApifyInstagramCollector(_runner([item])).scrape("nike")[0]
        self.assertEqual(post.post_url, "https://www.instagram.com/p/code7/")

    def test_unresolvable_profile_url(self):
        runner = _runner([])
        result = ApifyInstagramCollector(runner).collect("https://www.instagram.com/")

        self.assertTrue(result.attempted)
        self.assertEqual(result.posts, [])
        self.assertIn("Could not read a profile", result.error)
        runner.run.assert_not_called()

    def test_job_failure_is_contained(self):
        error = ApifyRunFailed("run_1", JobStatus.FAILED, "Actor crashed")
        result = ApifyInstagramCollector(_runner(error=error)).collect("nike")

        self.assertEqual(result.posts, [])
        self.assertIn("FAILED", result.error.upper())

    def test_poll_timeout_is_contained(self):
        collector = ApifyInstagramCollector(_runner(error=ApifyPollTimeout("run_1", 60, 300)))
        self.assertEqual(collector.scrape("nike"), [])


class TestFacebookCollector(unittest.TestCase):

    def _item(self, post_id, text, depth=0, author="Someone"):
        return {
            "facebookId": post_id,
            "facebookUrl": f"https://www.facebook.com/nike/posts/{post_id}",
            "inputUrl": "https://facebook.com/nike",
            "postTitle": f"Post {post_id}",
            "text": text,
            "profileName": author,
            "likesCount": "4",
            "threadingDepth": depth,
            "date": "2024-05-01T10:00:00.000Z",
        }

    def test_groups_stream_in_first_seen_order(self):
        items = [
            self._item("p2", "first comment on p2"),
            self._item("p1", "first comment on p1"),
            self._item("p2", "second comment on p2"),
            self._item("p2", "a reply that is skipped", depth=1),
            self._item("p1", "short"),
            self._item("p1", "brand answering here", author="nike"),
        ]
        runner = _runner(items)
        posts = ApifyFacebookCollector(runner).scrape("facebook.com/nike")

        spec = runner.run.call_args[0][0]
        self.assertEqual(spec.run_input["startUrls"], [{"url": "https://facebook.com/nike"}])
        self.assertEqual([p.post_url for p in posts], [
            "https://www.facebook.com/nike/posts/p2",
            "https://www.facebook.com/nike/posts/p1",
        ])
        self.assertEqual([c.text for c in posts[0].comments],
                         ["first comment on p2", "second comment on p2"])
        self.assertEqual(posts[0].comments_count, 2)
        self.assertEqual(posts[0].caption, "Post p2")
        self.assertEqual(posts[0].comments[0].likes, 4)
        self.assertTrue(posts[1].comments[-1].is_response_from_brand)

    def test_per_post_cap_applies_after_grouping(self):
        items = [self._item("p1", f"comment text {i}") for i in range(5)]
        items.append(self._item("p2", "comment on the other post"))
        settings = AnalysisSettings(comments_per_post=2)
        posts = ApifyFacebookCollector(_runner(items), settings).scrape("facebook.com/nike")

        self.assertEqual(len(posts), 2)
        self.assertEqual(len(posts[0].comments), 2)
        self.assertEqual(len(posts[1].comments), 1)

    def test_rejects_non_url(self):
        result = ApifyFacebookCollector(_runner([])).collect("nike")
        self.assertEqual(result.posts, [])
        self.assertIsNotNone(result.error)


class TestTwitterCollector(unittest.TestCase):

    def test_parses_tweets_and_replies(self):
        items = [{
            "url": "https://twitter.com/nike/status/1",
            "text": "Just do it, new drop today",
            "likes": 50,
            "replies": 2,
            "createdAt": "2024-05-01T10:00:00.000Z",
            "replyTweets": [
                {"text": "This drop is amazing", "author": {"userName": "fan"}, "likes": 1},
                {"text": "meh", "author": {"userName": "other"}},
            ],
        }, {"text": "no url so skipped"}]
        runner = _runner(items)
        posts = ApifyTwitterCollector(runner).scrape("https://twitter.com/nike")

        self.assertEqual(runner.run.call_args[0][0].run_input["handles"], ["nike"])
        self.assertEqual(len(posts), 1)
        self.assertEqual(posts[0].platform, "twitter")
        self.assertEqual(posts[0].comments_count, 2)
        self.assertEqual([c.author_username for c in posts[0].comments], ["fan"])


class TestTikTokCollector(unittest.TestCase):

    def _item(self, video, text, author="viewer"):
        return {
            "awemeId": video,
            "text": text,
            "user": {"username": author},
            "likeCount": 2,
            "createdAt": 1714557600,
        }

    def test_drops_videos_below_min_comments(self):
        items = [
            self._item("v1", "great video really"),
            self._item("v1", "another long comment"),
            self._item("v2", "only one comment here"),
        ]
        settings = AnalysisSettings(tiktok_min_comments_per_post=2)
        runner = _runner(items)
        posts = ApifyTikTokCollector(runner, settings).scrape("https://www.tiktok.com/@nike")

        self.assertEqual(len(posts), 1)
        self.assertEqual(posts[0].post_url, "https://www.tiktok.com/video/v1")
        self.assertEqual(posts[0].comments_count, 2)
        self.assertEqual(posts[0].comments[0].posted_at, "2024-05-01T10:00:00+00:00")
        self.assertEqual(
            runner.run.call_args[0][0].run_input["maxItems"],
            settings.posts_limit * settings.comments_per_post,
        )


class TestRegistry(unittest.TestCase):

    def test_one_collector_per_platform(self):
        collectors = create_collectors(MagicMock())
        self.assertEqual(set(collectors), set(Platform))
        self.assertIsInstance(collectors[Platform.TIKTOK], ApifyTikTokCollector)

    def test_lookup_by_name(self):
        self.assertIsInstance(create_collector("facebook", MagicMock()), ApifyFacebookCollector)

    def test_unknown_platform(self):
        with self.assertRaises(ValueError):
            create_collector("myspace", MagicMock())


if __name__ == '__main__':
    unittest.main(verbosity=2)
