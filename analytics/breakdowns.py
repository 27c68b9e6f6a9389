"""
Breakdowns
==========

Per-student and institution-wide views built on top of the aggregation engine:
subject and difficulty breakdowns, improvement streaks, subject trends and the
overview shown at the top of the faculty dashboard.
"""

import collections
from typing import Dict, Iterable, List, Sequence

from analytics.metrics import (
    LEGACY, TREND_THRESHOLD, mean_of, usable_submissions, chronological_scores,
    compute_student_metrics, compute_trend, round_half_up,
)
from models.quiz_models import (
    UNKNOWN, ConfigurationError, InstitutionOverview, Quiz, Student,
    StudentProfile, SubjectTrend, Submission,
)

BREAKDOWN_FIELDS = ("subject", "difficulty")

# Minimum number of scored results before a subject trend is reported
SUBJECT_TREND_MIN_RESULTS = 4


def score_breakdown(submissions: Iterable[Submission], field: str = "subject") -> Dict[str, int]:
    """Average scored result per subject or difficulty, keyed alphabetically."""
    if field not in BREAKDOWN_FIELDS:
        raise ValueError(f"Cannot break scores down by {field!r}")

    buckets = collections.defaultdict(list)
    for submission in usable_submissions(submissions):
        if submission.is_scored:
            buckets[getattr(submission, field) or UNKNOWN].append(submission.score)

    return {key: round_half_up(mean_of(buckets[key])) for key in sorted(buckets)}


def improvement_streak(history: Sequence) -> int:
    """Counts consecutive non-decreasing steps ending at the latest scored attempt."""
    scores = chronological_scores(history)
    streak = 0
    for i in range(len(scores) - 1, 0, -1):
        if scores[i - 1] > scores[i]:
            break
        streak += 1
    return streak


def subject_trends(submissions: Iterable[Submission], quizzes: Sequence[Quiz],
                   limit: int = 5) -> List[SubjectTrend]:
    """
    Percent change between the older and newer half of each subject's results.
    Subjects come from the quiz catalogue; those without any result are dropped.
    """
    codes_by_subject = collections.OrderedDict()
    for quiz in quizzes:
        codes_by_subject.setdefault(quiz.subject or UNKNOWN, set()).add(quiz.code)

    valid = usable_submissions(submissions)
    trends = []
    for subject, codes in codes_by_subject.items():
        results = sorted((s for s in valid if s.quiz_code in codes and s.is_scored),
                         key=lambda s: s.submitted_at)
        if not results:
            continue

        scores = [s.score for s in results]
        change = 0
        if len(scores) >= SUBJECT_TREND_MIN_RESULTS:
            half = len(scores) // 2
            first_avg, second_avg = mean_of(scores[:half]), mean_of(scores[half:])
            if first_avg > 0:
                change = round_half_up((second_avg - first_avg) / first_avg * 100)

        trends.append(SubjectTrend(subject=subject,
                                   average_score=round_half_up(mean_of(scores)),
                                   change_percent=change))
    return trends[:limit]


def institution_overview(submissions: Iterable[Submission], quizzes: Sequence[Quiz],
                         recent: int = 10) -> InstitutionOverview:
    valid = usable_submissions(submissions)
    scores = [s.score for s in valid if s.is_scored]

    catalogue = {quiz.code for quiz in quizzes}
    coverage, error = None, None
    if catalogue:
        attempted = catalogue & {s.quiz_code for s in valid}
        coverage = round_half_up(len(attempted) / len(catalogue) * 100)
    else:
        error = ConfigurationError(parameter="quizzes",
                                   message="Quiz coverage needs a non-empty quiz catalogue")

    latest = sorted(valid, key=lambda s: s.submitted_at, reverse=True)[:recent]

    return InstitutionOverview(
        total_submissions=len(valid),
        average_score=round_half_up(mean_of(scores)) if scores else 0,
        active_students=len({s.student_id for s in valid}),
        quiz_coverage=coverage,
        recent_submissions=tuple(latest),
        configuration_error=error,
    )


def student_profile(student: Student, submissions: Iterable[Submission],
                    threshold: float = TREND_THRESHOLD,
                    convention: str = LEGACY) -> StudentProfile:
    own = [s for s in usable_submissions(submissions) if s.student_id == student.id]
    return StudentProfile(
        student=student,
        metrics=compute_student_metrics(student.id, own),
        trend=compute_trend(own, threshold=threshold, convention=convention),
        streak=improvement_streak(own),
        subject_scores=score_breakdown(own, "subject"),
        difficulty_scores=score_breakdown(own, "difficulty"),
    )
