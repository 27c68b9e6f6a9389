"""
Dashboard Report
================

Assembles the engine's views over one consistent snapshot and exposes them as
pandas DataFrames for whatever renders them.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd

from analytics.breakdowns import institution_overview, subject_trends
from analytics.metrics import (
    DEPARTMENT, INSTITUTION, SECTION, aggregate_groups, build_leaderboard,
    compute_quiz_statistics, compute_student_metrics, partition_valid,
    select_scope, submissions_by_student,
)
from models.quiz_models import (
    GroupAggregate, InstitutionOverview, InvalidRecord, LeaderboardEntry, NoData,
    Quiz, QuizStats, Student, StudentMetrics, SubjectTrend, Submission,
)
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

LEVELS = (SECTION, DEPARTMENT, INSTITUTION)
NOT_AVAILABLE = "N/A"


@dataclass
class DashboardReport:
    students: List[Student]
    submissions: List[Submission]
    student_metrics: Dict[str, Union[StudentMetrics, NoData]]
    groups: Dict[str, List[GroupAggregate]]
    leaderboard: List[LeaderboardEntry]
    quiz_stats: List[QuizStats]
    overview: InstitutionOverview
    subject_trends: List[SubjectTrend]
    skipped: List[InvalidRecord] = field(default_factory=list)

    def student(self, student_id: str) -> Optional[Student]:
        return next((s for s in self.students if s.id == student_id), None)

    def scoped_leaderboard(self, student_id: str, scope: str) -> List[LeaderboardEntry]:
        """Leaderboard of the slice of the roster `student_id` belongs to."""
        member = self.student(student_id)
        if member is None:
            raise ValueError(f"Unknown student: {student_id!r}")
        return build_leaderboard(select_scope(self.students, scope, member),
                                 self.submissions, scope=scope)

    def leaderboard_frame(self, entries: Optional[Sequence[LeaderboardEntry]] = None) -> pd.DataFrame:
        rows = [{
            "Rank": entry.rank,
            "Student": entry.display_name,
            "Avg Score": entry.average_score if entry.has_data else NOT_AVAILABLE,
            "Submissions": entry.submissions_count,
        } for entry in (self.leaderboard if entries is None else entries)]
        return pd.DataFrame(rows, columns=["Rank", "Student", "Avg Score", "Submissions"])

    def groups_frame(self, level: str) -> pd.DataFrame:
        if level not in LEVELS:
            raise ValueError(f"Unknown group level: {level!r}")
        rows = [{
            "Group": group.group_key,
            "Avg Score": NOT_AVAILABLE if group.average_score is None else group.average_score,
            "Accuracy (%)": NOT_AVAILABLE if group.average_accuracy is None else group.average_accuracy,
            "Students": group.student_count,
            "Participation (%)": group.participation_rate,
            "Trend": group.trend.direction,
            "Band": group.performance_band or NOT_AVAILABLE,
        } for group in self.groups.get(level, [])]
        return pd.DataFrame(rows, columns=["Group", "Avg Score", "Accuracy (%)", "Students",
                                           "Participation (%)", "Trend", "Band"])

    def quizzes_frame(self) -> pd.DataFrame:
        rows = [{
            "Quiz": stats.quiz_code,
            "Submissions": stats.submission_count,
            "Submitters": stats.distinct_submitters,
            "Avg Score": stats.average_score,
            "Highest": stats.highest_score,
            "Lowest": stats.lowest_score,
            "Accuracy (%)": round(stats.average_accuracy, 1),
            "Completion (%)": NOT_AVAILABLE if stats.completion_rate is None else stats.completion_rate,
        } for stats in self.quiz_stats]
        return pd.DataFrame(rows, columns=["Quiz", "Submissions", "Submitters", "Avg Score",
                                           "Highest", "Lowest", "Accuracy (%)", "Completion (%)"])

    def subject_trends_frame(self) -> pd.DataFrame:
        rows = [{
            "Subject": trend.subject,
            "Avg Score": trend.average_score,
            "Change (%)": trend.change_percent,
        } for trend in self.subject_trends]
        return pd.DataFrame(rows, columns=["Subject", "Avg Score", "Change (%)"])

    def students_frame(self) -> pd.DataFrame:
        rows = []
        for student in self.students:
            metrics = self.student_metrics.get(student.id)
            rows.append({
                "Student": student.display_name,
                "Department": student.department,
                "Section": student.section,
                "Avg Score": metrics.average_score if metrics else NOT_AVAILABLE,
                "Accuracy (%)": round(metrics.average_accuracy, 1) if metrics else NOT_AVAILABLE,
                "Quizzes": metrics.quizzes_taken if metrics else 0,
                "Time": metrics.time_category if metrics else NOT_AVAILABLE,
                "Cached Avg": NOT_AVAILABLE if student.avg_score is None else student.avg_score,
            })
        return pd.DataFrame(rows, columns=["Student", "Department", "Section", "Avg Score",
                                           "Accuracy (%)", "Quizzes", "Time", "Cached Avg"])


def _quiz_codes(quizzes: Sequence[Quiz], submissions: Sequence[Submission]) -> List[str]:
    catalogue = [quiz.code for quiz in quizzes]
    extra = sorted({s.quiz_code for s in submissions} - set(catalogue))
    return catalogue + extra


def build_report(students: Sequence[Student], submissions: Sequence[Submission],
                 quizzes: Sequence[Quiz] = (), config: Settings = None) -> DashboardReport:
    """
    Runs every view of the dashboard over one snapshot.
    Invalid submissions are dropped once here and listed in `skipped`.
    """
    config = config or default_settings
    valid, skipped = partition_valid(submissions)
    if skipped:
        logger.warning("Snapshot has %d invalid submission(s); they are left out of every view",
                       len(skipped))

    trend_options = dict(window=config.trend_window, threshold=config.trend_threshold,
                         convention=config.trend_convention)
    groups = {level: aggregate_groups(students, valid, level, **trend_options)
              for level in LEVELS}

    expected = {quiz.code: quiz.total_submissions_expected for quiz in quizzes}
    quiz_stats = []
    for code in _quiz_codes(quizzes, valid):
        baseline = expected.get(code) or config.default_completion_baseline
        stats = compute_quiz_statistics(code, valid, baseline=baseline)
        if stats.configuration_error:
            logger.info(stats.configuration_error.message)
        quiz_stats.append(stats)

    by_student = submissions_by_student(valid)
    logger.info("Built report for %d students, %d submissions, %d quizzes",
                len(students), len(valid), len(quiz_stats))

    return DashboardReport(
        students=list(students),
        submissions=valid,
        student_metrics={s.id: compute_student_metrics(s.id, by_student.get(s.id, []))
                         for s in students},
        groups=groups,
        leaderboard=build_leaderboard(students, valid, scope=INSTITUTION),
        quiz_stats=quiz_stats,
        overview=institution_overview(valid, quizzes),
        subject_trends=subject_trends(valid, quizzes),
        skipped=skipped,
    )
