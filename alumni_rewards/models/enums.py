"""Enumerations shared by the reward ledger models and schemas."""

import enum


# ── Catalog ──────────────────────────────────────────────────────────────────


class RewardType(str, enum.Enum):
    BADGE = "badge"
    VOUCHER = "voucher"
    POINTS = "points"
    PERK = "perk"


class ActionType(str, enum.Enum):
    EVENT = "event"
    DONATION = "donation"
    MENTORSHIP = "mentorship"
    JOB = "job"
    REFERRAL = "referral"
    ENGAGEMENT = "engagement"
    CUSTOM = "custom"


class MetricKind(str, enum.Enum):
    COUNT = "count"
    AMOUNT = "amount"
    DURATION = "duration"


# ── Badges ───────────────────────────────────────────────────────────────────


class BadgeCriteriaType(str, enum.Enum):
    DONATIONS = "donations"
    MENTORSHIPS = "mentorships"
    EVENTS = "events"
    JOBS = "jobs"
    ENGAGEMENT = "engagement"
    MANUAL = "manual"


# ── Ledger ───────────────────────────────────────────────────────────────────


class ActivityStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


OPEN_STATUSES = (ActivityStatus.PENDING, ActivityStatus.IN_PROGRESS)
COMPLETED_STATUSES = (ActivityStatus.EARNED, ActivityStatus.REDEEMED)


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


# ── Accumulator ──────────────────────────────────────────────────────────────


class Tier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class LeaderboardPeriod(str, enum.Enum):
    ALL = "all"
    MONTH = "month"
    YEAR = "year"
