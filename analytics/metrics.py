"""
Analytics and Metrics Calculation Module
=========================================

This module rolls raw quiz submissions up into per-student metrics, per-group
aggregates (section, department, institution), per-quiz statistics and ranked
leaderboards.

Every function here is a pure computation over the snapshot it receives.
Expected data conditions come back as values (`NO_DATA`, `InvalidRecord`,
`ConfigurationError`); only caller bugs such as an unknown scope raise.
"""

import collections
import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from models.quiz_models import (
    NO_DATA, UNKNOWN, ConfigurationError, GroupAggregate, InvalidRecord,
    LeaderboardEntry, NoData, QuizStats, Student, StudentMetrics, Submission,
    Trend,
)

logger = logging.getLogger(__name__)

INSTITUTION = "institution"
DEPARTMENT = "department"
SECTION = "section"
SCOPES = (INSTITUTION, DEPARTMENT, SECTION)

LEGACY = "legacy"
CHRONOLOGICAL = "chronological"
CONVENTIONS = (LEGACY, CHRONOLOGICAL)

TREND_WINDOW = 10
TREND_THRESHOLD = 5.0

# Lower bounds of the presentation bands, highest first
PERFORMANCE_BANDS = ((80, "high"), (70, "medium-high"), (60, "medium-low"))

# Upper bounds (seconds) of the average time-per-quiz categories
TIME_CATEGORIES = ((300, "Fast"), (600, "Moderate"), (900, "Slow"))


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero instead of Python's banker's rounding."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def mean_of(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def check_submission(submission: Submission) -> Optional[str]:
    """Returns the reason a submission cannot be aggregated, or None if it is usable."""
    if not isinstance(submission, Submission):
        raise TypeError(f"Expected Submission, got {type(submission).__name__}")

    if not isinstance(submission.submitted_at, datetime):
        return "submitted_at is not a timestamp"
    if submission.total_questions < 0:
        return "total_questions is negative"
    if submission.correct_answers < 0:
        return "correct_answers is negative"
    if submission.time_spent_seconds < 0:
        return "time_spent_seconds is negative"
    if submission.score is not None and not 0 <= submission.score <= 100:
        return f"score {submission.score} outside [0, 100]"
    return None


def partition_valid(submissions: Iterable[Submission]) -> Tuple[List[Submission], List[InvalidRecord]]:
    valid, skipped = [], []
    for submission in submissions:
        reason = check_submission(submission)
        if reason is None:
            valid.append(submission)
        else:
            skipped.append(InvalidRecord(record_id=str(submission.id), reason=reason))
    return valid, skipped


def usable_submissions(submissions: Iterable[Submission]) -> List[Submission]:
    valid, skipped = partition_valid(submissions)
    if skipped:
        logger.warning("Skipped %d invalid submission(s) out of %d",
                       len(skipped), len(valid) + len(skipped))
    return valid


def submissions_by_student(submissions: Iterable[Submission]) -> Dict[str, List[Submission]]:
    grouped = collections.defaultdict(list)
    for submission in submissions:
        grouped[submission.student_id].append(submission)
    return grouped


def time_category(average_seconds: Optional[float]) -> str:
    if average_seconds is None:
        return UNKNOWN
    for upper_bound, label in TIME_CATEGORIES:
        if average_seconds <= upper_bound:
            return label
    return "Very Slow"


def performance_band(average_score: Optional[float]) -> Optional[str]:
    if average_score is None:
        return None
    for lower_bound, label in PERFORMANCE_BANDS:
        if average_score >= lower_bound:
            return label
    return "low"


def compute_student_metrics(student_id: str,
                            submissions: Iterable[Submission]) -> Union[StudentMetrics, NoData]:
    """
    Computes the live metrics of one student.
    Only submissions belonging to `student_id` are considered; returns NO_DATA when
    none of them has been scored.
    """
    own = [s for s in usable_submissions(submissions) if s.student_id == student_id]
    scored = [s for s in own if s.is_scored]
    if not scored:
        return NO_DATA

    scores = [s.score for s in scored]
    mean_score = mean_of(scores)
    average_accuracy = mean_of([s.accuracy for s in scored])
    best, worst = max(scores), min(scores)

    timed = [s.time_spent_seconds for s in own if s.has_known_time]
    average_time = mean_of(timed) if timed else None

    return StudentMetrics(
        student_id=student_id,
        average_score=round_half_up(mean_score),
        average_accuracy=average_accuracy,
        best_score=best,
        worst_score=worst,
        quizzes_taken=len(own),
        latest_submission_at=max(s.submitted_at for s in own),
        average_time_seconds=average_time,
        time_category=time_category(average_time),
        overall_performance=mean_score * average_accuracy / 100,
        consistency=(best - worst) / best * 100 if best > 0 else 0.0,
    )


def chronological_scores(history: Sequence[Union[float, Submission]]) -> List[float]:
    items = list(history)
    if all(isinstance(item, Submission) for item in items):
        ordered = sorted(usable_submissions(items), key=lambda s: s.submitted_at)
        return [float(s.score) for s in ordered if s.is_scored]
    if any(isinstance(item, Submission) for item in items):
        raise TypeError("Trend history must be all scores or all submissions")
    return [float(score) for score in items]


def compute_trend(history: Sequence[Union[float, Submission]],
                  threshold: float = TREND_THRESHOLD,
                  convention: str = LEGACY) -> Trend:
    """
    Classifies a score history by comparing its older and newer halves.

    `history` is either plain scores (already oldest to newest) or submissions,
    which are sorted by `submitted_at` here and stripped of unscored attempts.

    Under the LEGACY convention an older half that beats the newer one by more than
    `threshold` points is labelled "up" and the opposite "down". CHRONOLOGICAL swaps
    the two labels so that "up" means the newer half is better.
    """
    if convention not in CONVENTIONS:
        raise ValueError(f"Unknown trend convention: {convention!r}")

    scores = chronological_scores(history)
    if len(scores) < 2:
        return Trend()

    half = len(scores) // 2
    first_avg, second_avg = mean_of(scores[:half]), mean_of(scores[half:])

    direction = "stable"
    if first_avg > second_avg + threshold:
        direction = "up"
    elif second_avg > first_avg + threshold:
        direction = "down"
    if convention == CHRONOLOGICAL and direction != "stable":
        direction = "down" if direction == "up" else "up"

    mean_score = mean_of(scores)
    volatility = math.sqrt(sum((s - mean_score) ** 2 for s in scores) / len(scores))
    improvement = (scores[-1] - scores[0]) / max(scores[0], 1) * 100

    return Trend(direction=direction, volatility=volatility, improvement_rate_percent=improvement)


def compute_group_aggregate(group_students: Sequence[Student],
                            submissions: Iterable[Submission],
                            group_key: str = INSTITUTION,
                            level: str = INSTITUTION,
                            window: int = TREND_WINDOW,
                            threshold: float = TREND_THRESHOLD,
                            convention: str = LEGACY) -> Optional[GroupAggregate]:
    """
    Rolls one roster group up into a GroupAggregate, or None for an empty group.
    Members without scored submissions are left out of the averages instead of
    counting as zero.
    """
    if not group_students:
        return None

    member_ids = {student.id for student in group_students}
    group_submissions = [s for s in usable_submissions(submissions) if s.student_id in member_ids]
    by_student = submissions_by_student(group_submissions)

    metrics = [compute_student_metrics(student.id, by_student.get(student.id, []))
               for student in group_students]
    with_data = [m for m in metrics if m]

    average_score = average_accuracy = None
    if with_data:
        average_score = round_half_up(mean_of([m.average_score for m in with_data]))
        average_accuracy = round_half_up(mean_of([m.average_accuracy for m in with_data]))

    participants = {s.student_id for s in group_submissions}
    participation = round_half_up(len(participants) / len(group_students) * 100)

    scored = sorted((s for s in group_submissions if s.is_scored), key=lambda s: s.submitted_at)
    recent = scored[-window:] if window > 0 else []
    trend = compute_trend(recent, threshold=threshold, convention=convention)

    return GroupAggregate(
        group_key=group_key,
        level=level,
        average_score=average_score,
        average_accuracy=average_accuracy,
        student_count=len(group_students),
        participation_rate=participation,
        trend=trend,
        performance_band=performance_band(average_score),
    )


def group_key_for(student: Student, level: str) -> str:
    department = student.department or UNKNOWN
    if level == SECTION:
        return f"{department}-{student.section or UNKNOWN}"
    if level == DEPARTMENT:
        return department
    if level == INSTITUTION:
        return INSTITUTION
    raise ValueError(f"Unknown group level: {level!r}")


def aggregate_groups(students: Sequence[Student],
                     submissions: Iterable[Submission],
                     level: str,
                     window: int = TREND_WINDOW,
                     threshold: float = TREND_THRESHOLD,
                     convention: str = LEGACY) -> List[GroupAggregate]:
    """Aggregates every group of a level, best average first and data-less groups last."""
    groups = collections.defaultdict(list)
    for student in students:
        groups[group_key_for(student, level)].append(student)

    valid = usable_submissions(submissions)
    aggregates = []
    for key, members in groups.items():
        aggregate = compute_group_aggregate(members, valid, group_key=key, level=level,
                                            window=window, threshold=threshold,
                                            convention=convention)
        if aggregate is not None:
            aggregates.append(aggregate)

    return sorted(aggregates, key=lambda g: (g.average_score is None,
                                             -(g.average_score or 0), g.group_key))


def select_scope(students: Sequence[Student], scope: str,
                 member: Optional[Student] = None) -> List[Student]:
    """
    Slices the roster for a leaderboard scope. `member` is the reference student
    whose department (and section) define the slice.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown leaderboard scope: {scope!r}")
    if scope == INSTITUTION:
        return list(students)
    if member is None:
        raise ValueError(f"Scope {scope!r} needs a reference student")

    if scope == DEPARTMENT:
        return [s for s in students if s.department == member.department]
    return [s for s in students
            if s.department == member.department and s.section == member.section]


def build_leaderboard(group_students: Sequence[Student],
                      submissions: Iterable[Submission],
                      scope: str = INSTITUTION) -> List[LeaderboardEntry]:
    """
    Ranks every roster member by average score.

    Students without scored submissions stay on the board with a score of 0.
    Ties are broken by display name and ranks never repeat.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown leaderboard scope: {scope!r}")

    by_student = submissions_by_student(usable_submissions(submissions))
    rows = []
    for student in group_students:
        own = by_student.get(student.id, [])
        metrics = compute_student_metrics(student.id, own)
        rows.append((metrics.average_score if metrics else 0, student, len(own), bool(metrics)))

    rows.sort(key=lambda row: (-row[0], row[1].display_name))
    logger.debug("Built %s leaderboard with %d entries", scope, len(rows))

    return [
        LeaderboardEntry(
            student_id=student.id,
            display_name=student.display_name,
            average_score=score,
            submissions_count=count,
            rank=position,
            has_data=has_data,
        )
        for position, (score, student, count, has_data) in enumerate(rows, start=1)
    ]


def rank_of(leaderboard: Sequence[LeaderboardEntry], student_id: str) -> Optional[int]:
    return next((entry.rank for entry in leaderboard if entry.student_id == student_id), None)


def compute_quiz_statistics(quiz_code: str,
                            submissions: Iterable[Submission],
                            baseline: Optional[int] = None) -> QuizStats:
    """
    Summarises the submissions of one quiz.
    The completion rate needs an externally supplied `baseline` (expected number of
    submitters); without a positive one it is reported as a ConfigurationError.
    """
    quiz_submissions = [s for s in usable_submissions(submissions) if s.quiz_code == quiz_code]
    scored = [s for s in quiz_submissions if s.is_scored]
    scores = [s.score for s in scored]
    submitters = len({s.student_id for s in quiz_submissions})

    completion_rate, error = None, None
    if baseline is None or baseline <= 0:
        error = ConfigurationError(
            parameter="baseline",
            message=f"Completion rate for quiz {quiz_code!r} needs a positive baseline, "
                    f"got {baseline!r}",
        )
    else:
        completion_rate = round_half_up(submitters / baseline * 100)

    return QuizStats(
        quiz_code=quiz_code,
        submission_count=len(quiz_submissions),
        distinct_submitters=submitters,
        average_score=round_half_up(mean_of(scores)) if scores else 0,
        highest_score=max(scores) if scores else 0,
        lowest_score=min(scores) if scores else 0,
        average_accuracy=mean_of([s.accuracy for s in scored]) if scored else 0.0,
        completion_rate=completion_rate,
        configuration_error=error,
    )
