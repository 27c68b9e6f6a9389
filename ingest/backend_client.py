"""
Backend Snapshot Client (Async)
===============================
Reads the roster, quiz catalogue and submissions from the hosted backend's REST
interface with httpx.AsyncClient, fetching the three tables in parallel with
asyncio.gather.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ingest.parser import parse_quiz_rows, parse_student_rows, parse_submission_rows
from models.quiz_models import InvalidRecord, Quiz, Student, Submission
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The backend could not be reached or answered with an error."""


@dataclass
class Snapshot:
    students: List[Student] = field(default_factory=list)
    quizzes: List[Quiz] = field(default_factory=list)
    submissions: List[Submission] = field(default_factory=list)
    skipped: List[InvalidRecord] = field(default_factory=list)


class SnapshotClient:
    def __init__(self, config: Settings = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or default_settings
        headers = {"Accept": "application/json"}
        if self.config.backend_api_key:
            headers["apikey"] = self.config.backend_api_key
            headers["Authorization"] = f"Bearer {self.config.backend_api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.config.backend_url.rstrip("/"),
            headers=headers,
            follow_redirects=True,
            timeout=self.config.request_timeout,
            transport=transport,
        )

    async def fetch_rows(self, table: str) -> List[Dict[str, Any]]:
        """Selects every row of a table."""
        try:
            resp = await self.client.get(f"/rest/v1/{table}", params={"select": "*"})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(f"Fetching {table} failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Fetching {table} failed: {e}") from e

        try:
            rows = resp.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON returned for {table}") from e
        if not isinstance(rows, list):
            raise BackendError(f"Unexpected payload for {table}: expected a list of rows")
        logger.debug("Fetched %d row(s) from %s", len(rows), table)
        return rows

    async def fetch_snapshot(self) -> Snapshot:
        """
        Main execution flow:
        1. Request roster, catalogue and submissions concurrently
        2. Parse each table, collecting skipped rows
        """
        student_rows, quiz_rows, submission_rows = await asyncio.gather(
            self.fetch_rows(self.config.students_table),
            self.fetch_rows(self.config.quizzes_table),
            self.fetch_rows(self.config.submissions_table),
        )

        students = parse_student_rows(student_rows)
        quizzes = parse_quiz_rows(quiz_rows)
        submissions = parse_submission_rows(submission_rows)

        snapshot = Snapshot(
            students=students.records,
            quizzes=quizzes.records,
            submissions=submissions.records,
            skipped=students.skipped + quizzes.skipped + submissions.skipped,
        )
        logger.info("Snapshot: %d students, %d quizzes, %d submissions (%d rows skipped)",
                    len(snapshot.students), len(snapshot.quizzes),
                    len(snapshot.submissions), len(snapshot.skipped))
        return snapshot

    async def close(self):
        """Closes the async client session."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
