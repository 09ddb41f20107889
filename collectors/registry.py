"""
Collector registry — one collector class per platform.
"""

from typing import Dict, Type

from apify_runner import ApifyRunner
from collectors import BaseCollector
from collectors.facebook import ApifyFacebookCollector
from collectors.instagram import ApifyInstagramCollector
from collectors.tiktok import ApifyTikTokCollector
from collectors.twitter import ApifyTwitterCollector
from config import AnalysisSettings, DEFAULT_SETTINGS
from models import Platform

COLLECTORS: Dict[Platform, Type[BaseCollector]] = {
    Platform.INSTAGRAM: ApifyInstagramCollector,
    Platform.FACEBOOK: ApifyFacebookCollector,
    Platform.TWITTER: ApifyTwitterCollector,
    Platform.TIKTOK: ApifyTikTokCollector,
}


def create_collector(platform, runner: ApifyRunner,
                     settings: AnalysisSettings = DEFAULT_SETTINGS) -> BaseCollector:
    """Create the collector registered for a platform."""
    try:
        collector_cls = COLLECTORS[Platform(platform)]
    except (KeyError, ValueError):
        raise ValueError(f"No collector registered for platform '{platform}'")
    return collector_cls(runner, settings)


def create_collectors(runner: ApifyRunner,
                      settings: AnalysisSettings = DEFAULT_SETTINGS) -> Dict[Platform, BaseCollector]:
    """One collector per supported platform, sharing a runner."""
    return {platform: create_collector(platform, runner, settings)
            for platform in COLLECTORS}
