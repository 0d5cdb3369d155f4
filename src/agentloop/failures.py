"""Failure and stop-reason taxonomy."""

from __future__ import annotations

from enum import Enum


class FailureTag(str, Enum):
    """Standardized reasons attached to events, logs and stop states."""

    BUDGET_ITERATIONS = "BUDGET_ITERATIONS"
    BUDGET_TIME = "BUDGET_TIME"
    BUDGET_COST = "BUDGET_COST"
    PLAN_STALLED = "PLAN_STALLED"
    TOOL_ERROR = "TOOL_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    SECURITY_REJECTED = "SECURITY_REJECTED"
    ITERATION_ERROR = "ITERATION_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
