"""Leaderboard — Pydantic v2 schemas."""

import uuid

from pydantic import BaseModel

from alumni_rewards.models.enums import LeaderboardPeriod, Tier


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: uuid.UUID
    display_name: str | None = None
    department: str | None = None
    points: int
    total_points: int
    tier: Tier


class PointsLeaderboard(BaseModel):
    period: LeaderboardPeriod
    department: str | None = None
    entries: list[LeaderboardEntry]


class DepartmentEntry(BaseModel):
    rank: int
    department: str
    total_points: int
    user_count: int
    average_points: float


class DepartmentLeaderboard(BaseModel):
    entries: list[DepartmentEntry]
