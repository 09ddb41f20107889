"""
HTTP entrypoint for the sentiment analysis pipeline.

POST /api/analyze-competitor-sentiment   {"competitor_id": 3, "analysis_id": 12}
GET  /api/analyses/<run_id>/statistics
"""

import logging
import os

from flask import Flask, jsonify, request

from sentiment_pipeline import run_sentiment_analysis
from sentiment_store import SentimentStore

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Failures caused by the request or the competitor's setup, not by the server
CLIENT_ERROR_CODES = {
    "missing_parameters",
    "configuration",
    "competitor_not_found",
    "no_social_profiles",
    "no_posts_collected",
}


def get_store() -> SentimentStore:
    return app.config.get("SENTIMENT_STORE") or SentimentStore()


@app.route("/api/analyze-competitor-sentiment", methods=["POST"])
def api_analyze_competitor_sentiment():
    """Run one analysis synchronously and return its summary."""
    data = request.get_json(silent=True) or {}
    competitor_id = data.get("competitor_id")
    analysis_id = data.get("analysis_id")

    if competitor_id is None or analysis_id is None:
        return jsonify({"success": False, "error": "Missing competitor_id or analysis_id"}), 400

    try:
        result = run_sentiment_analysis(competitor_id, analysis_id, store=get_store())
    except Exception as e:
        logger.error(f"Sentiment analysis failed: {e}")
        return jsonify({"success": False, "error": f"Sentiment analysis failed: {e}"}), 500

    if result.get("success"):
        return jsonify(result)

    status = 400 if result.get("error_code") in CLIENT_ERROR_CODES else 500
    return jsonify({"success": False, "error": result.get("error")}), status


@app.route("/api/analyses/<int:run_id>/statistics")
def api_analysis_statistics(run_id):
    """Statistics persisted for one run."""
    stats = get_store().get_statistics(run_id)
    if stats is None:
        return jsonify({"error": f"No statistics for analysis {run_id}"}), 404
    return jsonify(stats.to_dict())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(port=int(os.getenv("PORT", "5000")))
