# storelens/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from storelens.models import Store


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class HistogramBucket(CamelModel):
    count: int = Field(ge=0)
    percentage: str                           # e.g. "42.0%"


class RatingSummary(CamelModel):
    total: int = Field(ge=0)
    average: float = Field(ge=0, le=5)
    histogram: Dict[int, HistogramBucket]
    estimated: bool = False                   # True for synthesised App Store histograms


class Country(CamelModel):
    code: str
    name: str


class App(CamelModel):
    id: str
    title: str
    icon: str
    developer: str
    developer_id: Optional[str] = None
    developer_url: Optional[str] = None
    developer_website: Optional[str] = None
    url: str
    description: str = ""
    score: float = 0.0
    ratings: RatingSummary
    price: float = 0.0
    free: bool = True
    currency: str = "USD"
    version: Optional[str] = None
    released: Optional[str] = None
    updated: Optional[str] = None
    release_notes: Optional[str] = None
    size: Optional[str] = None
    content_rating: Optional[str] = None
    required_os_version: Optional[str] = None
    android_version: Optional[str] = None
    installs: Optional[str] = None
    screenshots: List[str] = Field(default_factory=list)
    ipad_screenshots: List[str] = Field(default_factory=list)
    genres: List[str] = Field(default_factory=list)
    genre_ids: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    supported_devices: List[str] = Field(default_factory=list)
    privacy: Dict[str, Any] = Field(default_factory=dict)
    available_countries: List[Country] = Field(default_factory=list)
    store: Store


class Review(CamelModel):
    id: str
    user_name: str
    title: str = ""
    text: str = ""
    rating: int = Field(ge=1, le=5)
    score: int = Field(ge=1, le=5)
    version: str = "N/A"
    updated: datetime
    store: Store
    user_url: str = ""
    url: str = ""


class ReviewList(CamelModel):
    reviews: List[Review]
    total: int
    has_more: bool


# --- Sentiment analysis -------------------------------------------------------
# Field names mirror the JSON schema the classification service is asked to
# fill, so the aliases are spelled out instead of generated.

class SentimentDistribution(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    positive: int = Field(alias="Positive", ge=0)
    neutral: int = Field(alias="Neutral", ge=0)
    negative: int = Field(alias="Negative", ge=0)


class TopIssue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    issue: str = Field(alias="Issue")
    mentions: int = Field(alias="Mentions", ge=1)
    description: str = Field(alias="Description")


class Insights(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overall_sentiment: str = Field(alias="OverallSentiment")
    key_patterns: List[str] = Field(alias="KeyPatterns", default_factory=list)


class SentimentAnalysisResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sentiment_distribution: SentimentDistribution = Field(alias="SentimentDistribution")
    top_issues: List[TopIssue] = Field(alias="TopIssues", default_factory=list)
    insights: Insights = Field(alias="Insights")

    @field_validator("top_issues")
    @classmethod
    def keep_top_five(cls, issues: List[TopIssue]) -> List[TopIssue]:
        return issues[:5]


class HealthResponse(BaseModel):
    status: str
    as_of: str
    service: str
