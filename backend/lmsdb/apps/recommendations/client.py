# backend/lmsdb/apps/recommendations/client.py

"""
HTTP client for the course recommender service.

One client is created when the application starts and kept on
`app.state.recommender`; requests reach it through `get_recommender`.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Sequence

from fastapi import Request, status

from lmsdb import errors

logger = logging.getLogger(__name__)

AI_RECOMMENDER_URL = os.getenv("AI_RECOMMENDER_URL")
AI_RECOMMENDER_API_KEY = os.getenv("AI_RECOMMENDER_API_KEY")
AI_RECOMMENDER_TIMEOUT_SEC = int(os.getenv("AI_RECOMMENDER_TIMEOUT_SEC", "20"))


class RecommenderError(errors.DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Failed to get recommendations. Please try again."


class RecommenderNotConfiguredError(errors.DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Recommendation service is not configured on the server."


class RecommenderClient:
    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout: int = AI_RECOMMENDER_TIMEOUT_SEC,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def recommend(
        self,
        *,
        enrolled_courses: Sequence[str],
        available_courses: Sequence[str],
    ) -> Dict[str, Any]:
        payload = {
            "enrolledCourses": list(enrolled_courses),
            "availableCourses": list(available_courses),
        }
        req = urllib.request.Request(
            self.url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
        )
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        if self.api_key:
            req.add_header("Authorization", f"Bearer {self.api_key}")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as exc:
            logger.warning("Recommender returned an error", extra={"status": exc.code})
            raise RecommenderError()
        except (urllib.error.URLError, TimeoutError, ValueError) as exc:
            logger.warning("Recommender unreachable", extra={"error": str(exc)})
            raise RecommenderError()


def build_recommender() -> Optional[RecommenderClient]:
    if not AI_RECOMMENDER_URL:
        return None
    return RecommenderClient(AI_RECOMMENDER_URL, api_key=AI_RECOMMENDER_API_KEY)


def get_recommender(request: Request) -> Optional[RecommenderClient]:
    return getattr(request.app.state, "recommender", None)
