"""
Row Parser for Backend Snapshots
================================

This module turns the raw rows returned by the backend tables into model records.
The dashboard tables were written by several views over time, so the same column
may appear under different spellings (`studentid`, `student_id`, ...). Rows that
cannot be turned into a usable record are skipped and reported, never raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from models.quiz_models import UNKNOWN, InvalidRecord, Quiz, Student, Submission

logger = logging.getLogger(__name__)

# Accepted spellings per field, first match wins
SUBMISSION_COLUMNS: Dict[str, tuple] = {
    "id": ("id",),
    "student_id": ("studentid", "student_id"),
    "quiz_code": ("quizcode", "quiz_code", "quizid", "quiz_id"),
    "score": ("score",),
    "correct_answers": ("correctanswers", "correct_answers"),
    "total_questions": ("totalquestions", "total_questions"),
    "time_spent_seconds": ("timespent", "time_spent"),
    "submitted_at": ("submittedat", "submitted_at", "taken_at", "created_at"),
    "subject": ("subject",),
    "difficulty": ("difficulty",),
}

STUDENT_COLUMNS: Dict[str, tuple] = {
    "id": ("id",),
    "display_name": ("full_name", "name", "display_name", "email"),
    "section": ("section",),
    "department": ("department",),
    "avg_score": ("avg_score",),
    "accuracy_rate": ("accuracy_rate", "avg_accuracy"),
}

QUIZ_COLUMNS: Dict[str, tuple] = {
    "code": ("code", "quizcode"),
    "subject": ("subject",),
    "created_by": ("created_by", "createdby"),
    "total_submissions_expected": ("total_submissions_expected", "expected_submissions"),
}


@dataclass
class ParseResult:
    records: List[Any] = field(default_factory=list)
    skipped: List[InvalidRecord] = field(default_factory=list)


class RowError(ValueError):
    pass


def _pick(row: Dict[str, Any], aliases: tuple) -> Any:
    for name in aliases:
        if row.get(name) is not None:
            return row[name]
    return None


def _nested_quiz_field(row: Dict[str, Any], name: str) -> Any:
    # Joined selects return the quiz as a nested object: {"quizzes": {"subject": ...}}
    quiz = row.get("quizzes")
    return quiz.get(name) if isinstance(quiz, dict) else None


def _count(value: Any, name: str) -> int:
    if value is None or value == "":
        return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise RowError(f"{name} is not a number: {value!r}")
    if number < 0:
        raise RowError(f"{name} is negative")
    return number


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RowError(f"{name} is not a number: {value!r}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses backend timestamps into timezone-aware UTC datetimes.
    Accepts ISO-8601 strings (with or without a trailing "Z"), datetimes and
    epoch seconds. Naive values are taken as UTC. Returns None when unparsable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            # Older interpreters reject fractions that are not 3 or 6 digits
            try:
                stamp = pd.to_datetime(text, utc=True, format="ISO8601")
            except (ValueError, OverflowError):
                return None
            if pd.isna(stamp):
                return None
            parsed = stamp.to_pydatetime()
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_submission_row(row: Dict[str, Any]) -> Submission:
    values = {key: _pick(row, aliases) for key, aliases in SUBMISSION_COLUMNS.items()}

    if values["id"] is None:
        raise RowError("missing submission id")
    if values["student_id"] is None:
        raise RowError("missing student id")
    if values["quiz_code"] is None:
        raise RowError("missing quiz code")

    submitted_at = parse_timestamp(values["submitted_at"])
    if submitted_at is None:
        raise RowError(f"unparsable submitted_at: {values['submitted_at']!r}")

    score = _optional_float(values["score"], "score")
    if score is not None and not 0 <= score <= 100:
        raise RowError(f"score {score} outside [0, 100]")

    return Submission(
        id=str(values["id"]),
        student_id=str(values["student_id"]),
        quiz_code=str(values["quiz_code"]),
        submitted_at=submitted_at,
        score=score,
        correct_answers=_count(values["correct_answers"], "correct_answers"),
        total_questions=_count(values["total_questions"], "total_questions"),
        time_spent_seconds=_count(values["time_spent_seconds"], "time_spent_seconds"),
        subject=values["subject"] or _nested_quiz_field(row, "subject") or UNKNOWN,
        difficulty=values["difficulty"] or _nested_quiz_field(row, "difficulty") or UNKNOWN,
    )


def parse_student_row(row: Dict[str, Any]) -> Student:
    values = {key: _pick(row, aliases) for key, aliases in STUDENT_COLUMNS.items()}
    if values["id"] is None:
        raise RowError("missing student id")

    return Student(
        id=str(values["id"]),
        display_name=str(values["display_name"] or f"Student {str(values['id'])[:8]}"),
        section=str(values["section"] or ""),
        department=str(values["department"] or ""),
        avg_score=_optional_float(values["avg_score"], "avg_score"),
        accuracy_rate=_optional_float(values["accuracy_rate"], "accuracy_rate"),
    )


def parse_quiz_row(row: Dict[str, Any]) -> Quiz:
    values = {key: _pick(row, aliases) for key, aliases in QUIZ_COLUMNS.items()}
    if values["code"] is None:
        raise RowError("missing quiz code")

    expected = values["total_submissions_expected"]
    return Quiz(
        code=str(values["code"]),
        subject=values["subject"] or UNKNOWN,
        created_by=values["created_by"],
        total_submissions_expected=_count(expected, "total_submissions_expected") if expected is not None else None,
    )


def _parse_rows(rows: Iterable[Dict[str, Any]], parse_row, kind: str) -> ParseResult:
    result = ParseResult()
    for index, row in enumerate(rows):
        try:
            result.records.append(parse_row(row))
        except RowError as e:
            record_id = str(row.get("id") or f"row {index}") if isinstance(row, dict) else f"row {index}"
            result.skipped.append(InvalidRecord(record_id=record_id, reason=str(e)))
        except AttributeError:
            result.skipped.append(InvalidRecord(record_id=f"row {index}", reason="row is not an object"))

    if result.skipped:
        logger.warning("Skipped %d of %d %s row(s)", len(result.skipped),
                       len(result.skipped) + len(result.records), kind)
    return result


def parse_submission_rows(rows: Iterable[Dict[str, Any]]) -> ParseResult:
    return _parse_rows(rows, parse_submission_row, "submission")


def parse_student_rows(rows: Iterable[Dict[str, Any]]) -> ParseResult:
    return _parse_rows(rows, parse_student_row, "student")


def parse_quiz_rows(rows: Iterable[Dict[str, Any]]) -> ParseResult:
    return _parse_rows(rows, parse_quiz_row, "quiz")
