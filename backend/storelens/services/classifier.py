"""
LLM-backed review sentiment classification.

Talks to any OpenAI-compatible chat completions endpoint (Mistral by default)
and requests a response constrained to the sentiment JSON schema.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import pydantic
from openai import APIError, AsyncOpenAI

from storelens.config import Settings
from storelens.core.normalizer import review_text_for_prompt
from storelens.errors import SentimentServiceError
from storelens.models import UnifiedReview
from storelens.schemas import SentimentAnalysisResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You will analyze app store reviews and provide sentiment analysis."

USER_PROMPT = (
    "You are a Mobile Product Manager conducting a comprehensive sentiment analysis on the reviews below.\n"
    "Categorize each review into exactly one of three groups: Positive, Negative and Neutral, "
    "and count the reviews in each group.\n"
    "Identify the top 5 recurring issues from negative and neutral reviews. "
    "Summarize each issue and give its number of mentions.\n"
    "Describe the overall sentiment distribution and any notable patterns in the dataset.\n"
    "Answer in English.\n"
    "Reviews to analyze (one per line):\n"
    "{reviews}"
)

SENTIMENT_SCHEMA: Dict[str, Any] = {
    "title": "SentimentAnalysis",
    "type": "object",
    "properties": {
        "SentimentDistribution": {
            "title": "Sentiment Distribution",
            "type": "object",
            "properties": {
                "Positive": {"title": "Positive Reviews", "type": "integer", "minimum": 0},
                "Neutral": {"title": "Neutral Reviews", "type": "integer", "minimum": 0},
                "Negative": {"title": "Negative Reviews", "type": "integer", "minimum": 0},
            },
            "required": ["Positive", "Neutral", "Negative"],
            "additionalProperties": False,
        },
        "TopIssues": {
            "title": "Top Issues",
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "Issue": {"title": "Issue", "type": "string"},
                    "Mentions": {"title": "Mentions Count", "type": "integer", "minimum": 1},
                    "Description": {"title": "Issue Description", "type": "string"},
                },
                "required": ["Issue", "Mentions", "Description"],
                "additionalProperties": False,
            },
        },
        "Insights": {
            "title": "Insights",
            "type": "object",
            "properties": {
                "OverallSentiment": {"title": "Overall Sentiment Summary", "type": "string"},
                "KeyPatterns": {"title": "Key Patterns", "type": "array", "items": {"type": "string"}},
            },
            "required": ["OverallSentiment", "KeyPatterns"],
            "additionalProperties": False,
        },
    },
    "required": ["SentimentDistribution", "TopIssues", "Insights"],
    "additionalProperties": False,
}


def build_prompt(reviews: Sequence[UnifiedReview], max_reviews: int) -> str:
    """
    Build the user prompt, one review per line.

    Args:
        reviews: Reviews to classify (newest first)
        max_reviews: Cap on the number of reviews sent to the model

    Returns:
        Prompt text
    """
    lines = [text for text in (review_text_for_prompt(review) for review in reviews[:max_reviews]) if text]
    return USER_PROMPT.format(reviews="\n".join(lines))


class SentimentClassifier:
    """Classifies a batch of reviews with one schema-constrained chat completion."""

    def __init__(
        self,
        client: Optional[Any] = None,
        model: str = "mistral-large-latest",
        max_reviews: int = 200,
        max_tokens: int = 1024,
    ):
        self._client = client
        self.model = model
        self.max_reviews = max_reviews
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "SentimentClassifier":
        client = None
        if settings.SENTIMENT_API_KEY:
            client = AsyncOpenAI(
                api_key=settings.SENTIMENT_API_KEY,
                base_url=settings.SENTIMENT_API_BASE,
                timeout=settings.SENTIMENT_TIMEOUT_SECONDS,
                max_retries=1,
            )
        return cls(client=client, model=settings.SENTIMENT_MODEL, max_reviews=settings.SENTIMENT_MAX_REVIEWS)

    async def classify(self, reviews: Sequence[UnifiedReview]) -> SentimentAnalysisResult:
        """
        Run the sentiment analysis for ``reviews``.

        Raises:
            SentimentServiceError: no API key configured, the call failed, or
                the response did not match the schema
        """
        if self._client is None:
            raise SentimentServiceError("Sentiment service is not configured (SENTIMENT_API_KEY is empty)")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(reviews, self.max_reviews)},
        ]
        logger.info("Requesting sentiment analysis of %d reviews from %s", min(len(reviews), self.max_reviews), self.model)

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "sentiment_analysis", "schema": SENTIMENT_SCHEMA, "strict": True},
                },
                temperature=0,
                max_tokens=self.max_tokens,
            )
        except APIError as e:
            logger.error("Sentiment service call failed: %s", e)
            raise SentimentServiceError(f"Sentiment service error: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise SentimentServiceError("Sentiment service returned no choices") from e
        if not content:
            raise SentimentServiceError("Sentiment service returned an empty response")

        try:
            return SentimentAnalysisResult.model_validate_json(content)
        except pydantic.ValidationError as e:
            # Model output is JSON but outside the schema, or not JSON at all
            logger.error("Malformed sentiment response: %s", e)
            raise SentimentServiceError("Sentiment service returned malformed JSON") from e


def empty_analysis() -> SentimentAnalysisResult:
    """All-zero analysis used when there is nothing to classify."""
    return SentimentAnalysisResult.model_validate({
        "SentimentDistribution": {"Positive": 0, "Neutral": 0, "Negative": 0},
        "TopIssues": [],
        "Insights": {"OverallSentiment": "No reviews available for analysis.", "KeyPatterns": []},
    })
