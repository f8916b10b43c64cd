"""Shared phase enumeration."""

from __future__ import annotations

from enum import Enum


class PhaseName(str, Enum):
    """LLM-backed steps the orchestrator can invoke."""

    PLAN = "plan"
    PROPOSE = "propose"
    VERIFY = "verify"
    REVIEW = "review"
    SUMMARIZE = "summarize"
    DIAGNOSE = "diagnose"
    CLASSIFY_SAFETY = "classify_safety"
    UPDATE_PLAN = "update_plan"


__all__ = ["PhaseName"]
