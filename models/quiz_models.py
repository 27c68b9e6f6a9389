"""
Data Models for Quiz Analytics
==============================

This module defines the data structures used to represent quiz submissions, the
student roster and every derived view produced by the aggregation engine.
All models are implemented as frozen dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union

UNKNOWN = "Unknown"


class NoData:
    """
    Sentinel meaning "no scored submissions to compute a metric from".
    Falsy, so `if metrics:` reads naturally, but never equal to zero.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NoData"


NO_DATA = NoData()


@dataclass(frozen=True)
class Submission:
    id: str
    student_id: str
    quiz_code: str
    submitted_at: datetime
    score: Optional[float] = None
    correct_answers: int = 0
    total_questions: int = 0
    time_spent_seconds: int = 0
    subject: str = UNKNOWN
    difficulty: str = UNKNOWN

    def __post_init__(self):
        # Naive timestamps are UTC, so mixed snapshots stay comparable
        if isinstance(self.submitted_at, datetime) and self.submitted_at.tzinfo is None:
            object.__setattr__(self, "submitted_at", self.submitted_at.replace(tzinfo=timezone.utc))

    @property
    def is_scored(self) -> bool:
        return self.score is not None

    @property
    def accuracy(self) -> float:
        """Raw correctness percentage, independent of the graded score."""
        return self.correct_answers / max(self.total_questions, 1) * 100

    @property
    def has_known_time(self) -> bool:
        return self.time_spent_seconds > 0


@dataclass(frozen=True)
class Student:
    id: str
    display_name: str
    section: str = ""
    department: str = ""
    # Cached values from the backend, for fallback display only
    avg_score: Optional[float] = None
    accuracy_rate: Optional[float] = None


@dataclass(frozen=True)
class Quiz:
    code: str
    subject: str = UNKNOWN
    created_by: Optional[str] = None
    total_submissions_expected: Optional[int] = None


@dataclass(frozen=True)
class InvalidRecord:
    record_id: str
    reason: str


@dataclass(frozen=True)
class ConfigurationError:
    """A required external baseline is missing or non-positive."""
    parameter: str
    message: str


@dataclass(frozen=True)
class Trend:
    direction: str = "stable"
    volatility: float = 0.0
    improvement_rate_percent: float = 0.0


@dataclass(frozen=True)
class StudentMetrics:
    student_id: str
    average_score: int
    average_accuracy: float
    best_score: float
    worst_score: float
    quizzes_taken: int
    latest_submission_at: Optional[datetime]
    average_time_seconds: Optional[float] = None
    time_category: str = UNKNOWN
    overall_performance: float = 0.0
    consistency: float = 0.0


@dataclass(frozen=True)
class GroupAggregate:
    group_key: str
    level: str
    average_score: Optional[int]
    average_accuracy: Optional[int]
    student_count: int
    participation_rate: int
    trend: Trend
    performance_band: Optional[str]


@dataclass(frozen=True)
class LeaderboardEntry:
    student_id: str
    display_name: str
    average_score: int
    submissions_count: int
    rank: int
    has_data: bool = True


@dataclass(frozen=True)
class QuizStats:
    quiz_code: str
    submission_count: int
    distinct_submitters: int
    average_score: int
    highest_score: float
    lowest_score: float
    average_accuracy: float
    completion_rate: Optional[int]
    configuration_error: Optional[ConfigurationError] = None


@dataclass(frozen=True)
class SubjectTrend:
    subject: str
    average_score: int
    change_percent: int


@dataclass(frozen=True)
class InstitutionOverview:
    total_submissions: int
    average_score: int
    active_students: int
    quiz_coverage: Optional[int]
    recent_submissions: Tuple[Submission, ...] = ()
    configuration_error: Optional[ConfigurationError] = None


@dataclass(frozen=True)
class StudentProfile:
    student: Student
    metrics: Union[StudentMetrics, NoData]
    trend: Trend
    streak: int
    subject_scores: Dict[str, int] = field(default_factory=dict)
    difficulty_scores: Dict[str, int] = field(default_factory=dict)
