# backend/lmsdb/apps/dashboard/schemas.py

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# LEARNER DASHBOARD
# ---------------------------------------------------------------------------


class DashboardStats(BaseModel):
    courses_completed: int = 0
    skills_acquired: int = 0  # distinct categories of completed courses


class CourseProgressCard(BaseModel):
    id: str
    title: str
    category: str = "General"
    progress: int


class DashboardRead(BaseModel):
    stats: DashboardStats
    my_courses: List[CourseProgressCard] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# ADMIN ANALYTICS
# ---------------------------------------------------------------------------


class AnalyticsTotals(BaseModel):
    total_users: int
    total_courses: int
    total_enrollments: int
    courses_completed: int  # completion certificates issued


class CourseEnrollmentCount(BaseModel):
    course_id: str
    title: str
    enrollments: int


class MonthlyCompletions(BaseModel):
    month: str  # YYYY-MM
    label: str  # e.g. "May 2024"
    completions: int


class AnalyticsRead(BaseModel):
    totals: AnalyticsTotals
    top_courses: List[CourseEnrollmentCount] = Field(default_factory=list)
    completions_by_month: List[MonthlyCompletions] = Field(default_factory=list)
