import pytest

from analytics.breakdowns import (
    improvement_streak, institution_overview, score_breakdown, student_profile,
    subject_trends,
)
from analytics.metrics import CHRONOLOGICAL
from models.quiz_models import NO_DATA, Quiz
from mock_data import ALICE, CARA, QUIZZES, day, scenario_submissions, submission


class TestScoreBreakdown:
    def test_by_subject(self):
        subs = [
            submission("A", 80, subject="Math"),
            submission("A", 91, subject="Math"),
            submission("A", 70, subject="Physics"),
            submission("A", None, subject="Physics"),
        ]
        assert score_breakdown(subs, "subject") == {"Math": 86, "Physics": 70}

    def test_by_difficulty_with_missing_values(self):
        subs = [
            submission("A", 90, difficulty="Easy"),
            submission("A", 40, difficulty=""),
        ]
        assert score_breakdown(subs, "difficulty") == {"Easy": 90, "Unknown": 40}

    def test_unknown_field_raises(self):
        with pytest.raises(ValueError):
            score_breakdown([], "colour")


class TestImprovementStreak:
    @pytest.mark.parametrize("scores, streak", [
        ([60, 70, 70, 80], 3),
        ([80, 60, 70], 1),
        ([90, 80], 0),
        ([50], 0),
        ([], 0),
    ])
    def test_streaks(self, scores, streak):
        assert improvement_streak(scores) == streak

    def test_submissions_are_ordered_by_time(self):
        subs = [submission("A", 70, on=3), submission("A", 50, on=1), submission("A", 60, on=2)]
        assert improvement_streak(subs) == 2


class TestSubjectTrends:
    def quizzes(self):
        return [
            Quiz(code="M1", subject="Math"),
            Quiz(code="P1", subject="Physics"),
            Quiz(code="C1", subject="Chemistry"),
        ]

    def test_change_between_halves(self):
        subs = [
            submission("A", 50, on=1, quiz="M1"),
            submission("B", 50, on=2, quiz="M1"),
            submission("A", 60, on=3, quiz="M1"),
            submission("B", 60, on=4, quiz="M1"),
            submission("A", 80, on=1, quiz="P1"),
            submission("A", 90, on=2, quiz="P1"),
        ]
        trends = subject_trends(subs, self.quizzes())
        assert [(t.subject, t.average_score, t.change_percent) for t in trends] == [
            ("Math", 55, 20),
            ("Physics", 85, 0),
        ]

    def test_limit(self):
        subs = [submission("A", 50, quiz="M1"), submission("A", 50, quiz="P1")]
        assert len(subject_trends(subs, self.quizzes(), limit=1)) == 1

    def test_zero_first_half_has_no_change(self):
        subs = [submission("A", score, on=i, quiz="M1") for i, score in enumerate([0, 0, 50, 50])]
        (trend,) = subject_trends(subs, self.quizzes())
        assert trend.change_percent == 0


class TestInstitutionOverview:
    def test_overview(self):
        subs = scenario_submissions() + [submission("C", None, on=3)]
        overview = institution_overview(subs, QUIZZES)
        assert overview.total_submissions == 4
        assert overview.average_score == 77
        assert overview.active_students == 3
        assert overview.quiz_coverage == 50
        assert overview.configuration_error is None
        assert overview.recent_submissions[0].submitted_at == day(3)

    def test_recent_limit(self):
        overview = institution_overview(scenario_submissions(), QUIZZES, recent=2)
        assert len(overview.recent_submissions) == 2

    def test_empty_catalogue_is_reported(self):
        overview = institution_overview(scenario_submissions(), [])
        assert overview.quiz_coverage is None
        assert overview.configuration_error.parameter == "quizzes"

    def test_empty_submissions(self):
        overview = institution_overview([], QUIZZES)
        assert overview.total_submissions == 0
        assert overview.average_score == 0
        assert overview.quiz_coverage == 0


class TestStudentProfile:
    def test_profile(self):
        subs = [
            submission("A", 50, on=1, subject="Math"),
            submission("A", 50, on=2, subject="Math"),
            submission("A", 90, on=3, subject="Physics"),
            submission("A", 90, on=4, subject="Physics"),
            submission("B", 10, on=5),
        ]
        profile = student_profile(ALICE, subs)
        assert profile.metrics.average_score == 70
        assert profile.trend.direction == "down"
        assert profile.streak == 3
        assert profile.subject_scores == {"Math": 50, "Physics": 90}

    def test_chronological_convention(self):
        subs = [submission("A", 50, on=1), submission("A", 90, on=2)]
        assert student_profile(ALICE, subs, convention=CHRONOLOGICAL).trend.direction == "up"

    def test_profile_without_data(self):
        profile = student_profile(CARA, scenario_submissions())
        assert profile.metrics is NO_DATA
        assert profile.streak == 0
        assert profile.subject_scores == {}
