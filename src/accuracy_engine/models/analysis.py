"""Request, response and analyzer-facing models for message analysis."""

from enum import StrEnum

from pydantic import BaseModel, Field

from accuracy_engine.models.accuracy import AccuracySnapshot, AggregatedProfile, Trend, Weights


class UserTier(StrEnum):
    """Subscription tier deciding which analyzers run."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class AnalysisDepth(StrEnum):
    FULL = "full"
    BASIC = "basic"
    ERROR = "error"


class AnalysisStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    DEFERRED = "deferred"
    ERROR = "error"


class LanguageDetectionSummary(BaseModel):
    """Summary produced by the external language detector."""

    primary_language: str | None = None
    english_ratio: float = 0.0
    probability: float = 0.0
    should_skip_english_checks: bool = False
    should_relax_grammar: bool = False


class MessageStatistics(BaseModel):
    word_count: int = 0
    sentence_count: int = 0
    error_count: int = 0
    critical_error_count: int = 0
    errors_by_category: dict[str, int] = Field(default_factory=dict)


class DetectedError(BaseModel):
    """A single issue reported by an analyzer or synthesized by the quality gate."""

    type: str
    category: str = "clarity"
    severity: str = "minor"  # "minor", "major", "critical"
    message: str
    suggestion: str | None = None
    explanation: str | None = None


class AnalysisRequest(BaseModel):
    """One message submitted for scoring."""

    request_id: str | None = None
    user_id: str | None = None
    user_message: str = ""
    user_tier: UserTier = UserTier.FREE
    language: LanguageDetectionSummary | None = None
    persist: bool = False
    # Scores and error counts computed upstream; when set, no analyzer runs
    scores: AccuracySnapshot | None = None
    statistics: MessageStatistics | None = None


class MessageAnalysis(BaseModel):
    """Per-message result after analyzers and the quality gate ran."""

    scores: AccuracySnapshot = Field(default_factory=AccuracySnapshot)
    feedback: dict[str, str] = Field(default_factory=dict)
    statistics: MessageStatistics = Field(default_factory=MessageStatistics)
    errors: list[DetectedError] = Field(default_factory=list)
    analysis_depth: AnalysisDepth = AnalysisDepth.FULL
    features_skipped: list[str] = Field(default_factory=list)
    penalty_reason: str | None = None


class AnalysisResponse(BaseModel):
    """Structured response returned for every coordinator call."""

    status: AnalysisStatus
    request_id: str
    trace_id: str
    message_analysis: MessageAnalysis = Field(default_factory=MessageAnalysis)
    weighted_accuracy: AccuracySnapshot | None = None
    aggregated: AggregatedProfile | None = None
    weights: Weights | None = None
    trend: Trend | None = None
    processing_time_ms: float = 0.0
    confidence_score: int = 0
    analysis_depth: AnalysisDepth = AnalysisDepth.ERROR
    server_version: str = "1.0.0"
    error_message: str | None = None
    retry_after: int | None = None
