"""
Sentiment Analyzer — LLM-powered sentiment classification of comments.

Comments are sent in fixed-size chunks, each text tagged with a positional
index `[i]` inside its chunk. The JSON response is matched back by index, so
a result list always lines up with its input even if the model reorders or
drops items. Anything that goes wrong for a chunk falls back to a neutral
result for every text in it; classification never loses comments.

Uses GPT-4o-mini with JSON mode for structured responses.
"""

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from openai import OpenAI

import config
from models import NEUTRAL, SENTIMENT_LABELS, SentimentResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a sentiment analysis expert for social media comments. "
    "You always answer with valid JSON."
)


class SentimentResponseError(ValueError):
    """The completion did not match the expected results schema."""
    pass


class SentimentAnalyzer:
    """Classifies texts in chunks via the OpenAI chat completions API."""

    def __init__(self, settings: config.AnalysisSettings = config.DEFAULT_SETTINGS,
                 client: Optional[OpenAI] = None, model: Optional[str] = None):
        self.settings = settings
        self.client = client  # lazy init — only create when needed
        self.model = model or config.OPENAI_MODEL

    def _get_client(self) -> OpenAI:
        """Lazy-initialize the OpenAI client."""
        if self.client is None:
            api_key = config.get_api_key('openai')
            if not api_key:
                raise ValueError(
                    "OPENAI_API_KEY is not set. Add it to your .env file or database."
                )
            self.client = OpenAI(api_key=api_key, timeout=config.OPENAI_TIMEOUT_SECONDS)
        return self.client

    def classify(self, texts: List[str]) -> List[SentimentResult]:
        """
        Classify texts. Result i always corresponds to texts[i].

        Args:
            texts: Comment (or caption) texts, any length.

        Returns:
            One SentimentResult per input text, same order.
        """
        if not texts:
            return []

        size = self.settings.sentiment_batch_size
        chunks = [texts[i:i + size] for i in range(0, len(texts), size)]
        workers = min(self.settings.max_classification_workers, len(chunks))

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                chunk_results = list(executor.map(self._classify_chunk, chunks))
        else:
            chunk_results = [self._classify_chunk(chunk) for chunk in chunks]

        results = []
        for chunk_result in chunk_results:
            results.extend(chunk_result)
        return results

    def classify_one(self, text: str) -> SentimentResult:
        """Single-item classification, used for post captions."""
        return self.classify([text])[0]

    def _classify_chunk(self, chunk: List[str]) -> List[SentimentResult]:
        """One completion request. Never raises."""
        logger.info(f"Analyzing sentiment for {len(chunk)} texts with {self.model}...")
        try:
            client = self._get_client()
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(chunk)},
                ],
                temperature=config.OPENAI_TEMPERATURE,
                response_format={"type": "json_object"},
            )
            self._log_usage(getattr(response, "usage", None))
            content = response.choices[0].message.content
            results = parse_sentiment_response(content, len(chunk))
        except Exception as e:
            logger.error(
                f"Sentiment analysis failed for chunk of {len(chunk)}, "
                f"defaulting to neutral: {type(e).__name__}: {e}"
            )
            return [SentimentResult.neutral() for _ in chunk]

        logger.info(f"Successfully analyzed {len(chunk)} texts")
        return results

    def _log_usage(self, usage) -> None:
        if usage is None:
            return
        logger.info(
            f"  Tokens used: {usage.prompt_tokens} input + {usage.completion_tokens} output "
            f"= {usage.total_tokens} total"
        )


def build_user_prompt(texts: List[str]) -> str:
    """Numbered list of texts plus the exact JSON shape we expect back."""
    numbered = "\n\n".join(f"[{i}] {text}" for i, text in enumerate(texts))
    return f"""Analyze the following comments and return a JSON object with one entry per comment.

For each comment, determine:
1. sentiment_score: from -1 (very negative) to 1 (very positive)
2. sentiment_label: "positive", "neutral" or "negative"
3. explanation: a short explanation (one sentence)
4. keywords: the 2-3 main keywords of the comment

Comments to analyze:
{numbered}

Return JSON in exactly this format, with "index" set to the number in brackets:
{{
  "results": [
    {{
      "index": 0,
      "sentiment_score": 0.8,
      "sentiment_label": "positive",
      "explanation": "Expresses enthusiasm and satisfaction",
      "keywords": ["great", "happy", "quality"]
    }}
  ]
}}"""


def parse_sentiment_response(content: Any, expected: int) -> List[SentimentResult]:
    """
    Map a completion body back onto `expected` positions.

    Raises SentimentResponseError when the body is not the expected schema.
    Entries with an out-of-range, duplicate or missing index are ignored;
    positions nobody claimed get the neutral default.
    """
    if isinstance(content, (str, bytes)):
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SentimentResponseError(f"Response is not valid JSON: {e}") from e
    else:
        data = content

    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        raise SentimentResponseError("Response has no 'results' array")

    entries = data["results"]
    if not all(isinstance(entry, dict) for entry in entries):
        raise SentimentResponseError("'results' must contain objects only")

    by_index: Dict[int, SentimentResult] = {}
    for entry in entries:
        index = _as_index(entry.get("index"))
        if index is None or not 0 <= index < expected:
            logger.warning(f"Ignoring sentiment entry with invalid index {entry.get('index')!r}")
            continue
        if index in by_index:
            logger.warning(f"Ignoring duplicate sentiment entry for index {index}")
            continue
        by_index[index] = _to_result(entry)

    missing = expected - len(by_index)
    if missing:
        logger.warning(f"{missing}/{expected} texts missing from response, defaulting to neutral")

    return [by_index.get(i) or SentimentResult.neutral() for i in range(expected)]


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("[").rstrip("]").isdigit():
        return int(value.strip().lstrip("[").rstrip("]"))
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _to_result(entry: dict) -> SentimentResult:
    """Coerce one response entry into a valid SentimentResult."""
    try:
        score = float(entry.get("sentiment_score") or 0)
    except (TypeError, ValueError):
        score = 0.0
    if math.isnan(score):
        score = 0.0
    score = max(-1.0, min(1.0, score))

    label = str(entry.get("sentiment_label") or "").strip().lower()
    if label not in SENTIMENT_LABELS:
        label = NEUTRAL

    explanation = entry.get("explanation") or ""
    if not isinstance(explanation, str):
        explanation = str(explanation)

    keywords = entry.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [keywords]
    if not isinstance(keywords, list):
        keywords = []
    keywords = [str(k).strip() for k in keywords if str(k).strip()]

    return SentimentResult(score=score, label=label,
                           explanation=explanation, keywords=keywords)


def create_sentiment_analyzer(settings: config.AnalysisSettings = config.DEFAULT_SETTINGS) -> SentimentAnalyzer:
    """Create an analyzer, failing early when no OpenAI key is configured."""
    api_key = config.get_api_key('openai')
    if not api_key:
        raise ValueError(
            "OPENAI_API_KEY not set in database or environment. "
            "Set OPENAI_API_KEY in .env or add it to the api_credentials table."
        )
    client = OpenAI(api_key=api_key, timeout=config.OPENAI_TIMEOUT_SECONDS)
    return SentimentAnalyzer(settings=settings, client=client)
