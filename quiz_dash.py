import argparse
import asyncio
import logging
import sys

import pandas as pd

from analytics.breakdowns import student_profile
from analytics.metrics import DEPARTMENT, INSTITUTION, SCOPES, SECTION
from analytics.report import DashboardReport
from ingest.backend_client import BackendError, SnapshotClient
from ingest.refresh import SnapshotRefresher, poll_notifications
from settings import settings

logger = logging.getLogger("quiz_dash")


# ==========================================
# RENDERING
# ==========================================

def print_section(title, body):
    print(f"\n=== {title} ===")
    print(body)


def print_frame(title, frame: pd.DataFrame):
    print_section(title, "(empty)" if frame.empty else frame.to_string(index=False))


def render_overview(report: DashboardReport):
    overview = report.overview
    coverage = "N/A" if overview.quiz_coverage is None else f"{overview.quiz_coverage}%"
    lines = [
        f"Students: {len(report.students)}",
        f"Submissions: {overview.total_submissions}",
        f"Active students: {overview.active_students}",
        f"Average score: {overview.average_score}%",
        f"Quiz coverage: {coverage}",
    ]
    if report.skipped:
        lines.append(f"Skipped records: {len(report.skipped)}")
    print_section("Overview", "\n".join(lines))


def render_student(report: DashboardReport, student_id, scope):
    student = report.student(student_id)
    if student is None:
        logger.error("Student %s not found in the roster", student_id)
        return

    profile = student_profile(student, report.submissions,
                              threshold=settings.trend_threshold,
                              convention=settings.trend_convention)
    metrics = profile.metrics
    if metrics:
        summary = [
            f"Average score: {metrics.average_score}%",
            f"Accuracy: {metrics.average_accuracy:.1f}%",
            f"Best / worst: {metrics.best_score:g} / {metrics.worst_score:g}",
            f"Quizzes taken: {metrics.quizzes_taken}",
            f"Time category: {metrics.time_category}",
        ]
    else:
        summary = ["Not enough data"]
    summary += [
        f"Trend: {profile.trend.direction} (volatility {profile.trend.volatility:.1f}, "
        f"improvement {profile.trend.improvement_rate_percent:+.0f}%)",
        f"Improvement streak: {profile.streak}",
        f"Subjects: {profile.subject_scores or 'N/A'}",
        f"Difficulty: {profile.difficulty_scores or 'N/A'}",
    ]
    print_section(f"Student: {student.display_name}", "\n".join(summary))
    print_frame(f"Leaderboard ({scope})",
                report.leaderboard_frame(report.scoped_leaderboard(student_id, scope)))


def render_report(report: DashboardReport, student_id=None, scope=INSTITUTION):
    render_overview(report)
    print_frame("Sections", report.groups_frame(SECTION))
    print_frame("Departments", report.groups_frame(DEPARTMENT))
    print_frame("Institution", report.groups_frame(INSTITUTION))
    print_frame("Leaderboard", report.leaderboard_frame())
    print_frame("Quizzes", report.quizzes_frame())
    print_frame("Subject trends", report.subject_trends_frame())
    if student_id:
        render_student(report, student_id, scope)


# ==========================================
# MAIN LOOP
# ==========================================

async def run(args):
    async with SnapshotClient(settings) as client:
        refresher = SnapshotRefresher(
            client.fetch_snapshot,
            lambda report: render_report(report, args.student, args.scope),
            config=settings,
        )
        if not args.watch:
            await refresher.refresh()
            return

        interval = settings.refresh_interval_minutes * 60
        logger.info("Watching for changes every %.0f s", interval)
        await refresher.run(poll_notifications(interval))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Quiz performance dashboard")
    parser.add_argument("--student", help="Student id to profile")
    parser.add_argument("--scope", choices=SCOPES, default=INSTITUTION,
                        help="Leaderboard scope for --student")
    parser.add_argument("--watch", action="store_true",
                        help="Keep refreshing on the configured interval")
    return parser.parse_args(argv)


def main(argv=None):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] [QUIZ-DASH] %(message)s",
    )
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except BackendError as e:
        logger.error("Could not load data: %s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
