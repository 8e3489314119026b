"""
DECISION
========

The parsing boundary between free completion text and a structured decision.

``parse_decision`` extracts JSON (a fenced code block first, otherwise the
first brace-delimited object), strips control characters and validates the
result against ``Decision``. Anything unusable raises
``DecisionParseFailure``. ``decide`` wraps it and substitutes
``fallback_decision`` so Reason always has something to act on.

Usage::

    decision = decide(response.content)
    if decision.is_fallback:
        ...
"""

import json
import logging
import re
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import DecisionParseFailure
from ..state import PlanStep

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACED_OBJECT = re.compile(r"\{[\s\S]*\}")
_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F-\x9F]")

FALLBACK_ACTION = "ignore"
FALLBACK_CONFIDENCE = 0.3
FALLBACK_REASON = "Could not parse decision"


class DecisionStep(BaseModel):
    """One plan entry as the model wrote it."""
    model_config = ConfigDict(extra="ignore")

    step: int = 0
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""

    @field_validator("tool")
    @classmethod
    def _tool_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("tool is empty")
        return value.strip()

    @field_validator("args", mode="before")
    @classmethod
    def _args_dict(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("description", mode="before")
    @classmethod
    def _description_str(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Decision(BaseModel):
    """Strict decision schema. Lenient coercions happen in the validators."""
    model_config = ConfigDict(extra="ignore")

    action: str = FALLBACK_ACTION
    args: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.5
    plan: List[DecisionStep] = Field(default_factory=list)
    alternatives: List[Any] = Field(default_factory=list)
    factors: Dict[str, Any] = Field(default_factory=dict)
    is_fallback: bool = False

    @field_validator("action", mode="before")
    @classmethod
    def _action_name(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return FALLBACK_ACTION
        return value.strip()

    @field_validator("args", "factors", mode="before")
    @classmethod
    def _mapping(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.5
        if number != number:
            return 0.5
        return max(0.0, min(1.0, number))

    @field_validator("alternatives", mode="before")
    @classmethod
    def _alternatives_list(cls, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []

    @field_validator("plan", mode="before")
    @classmethod
    def _drop_malformed_steps(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        steps = []
        for index, item in enumerate(value, start=1):
            try:
                step = DecisionStep.model_validate(item)
            except ValidationError:
                logger.debug("Dropping malformed plan step %d: %s", index, item)
                continue
            if step.step <= 0:
                step.step = index
            steps.append(step)
        return steps

    def plan_steps(self) -> List[PlanStep]:
        return [
            PlanStep(step=s.step, tool=s.tool, args=dict(s.args), description=s.description)
            for s in self.plan
        ]


def extract_json_text(content: str) -> str:
    """Fenced block first, else the outermost brace-delimited span."""
    match = _FENCED_BLOCK.search(content or "")
    if match:
        text = match.group(1).strip()
    else:
        match = _BRACED_OBJECT.search(content or "")
        if not match:
            raise DecisionParseFailure("No JSON found in response")
        text = match.group(0)
    return _CONTROL_CHARS.sub("", text).strip()


def parse_decision(content: str) -> Decision:
    """Parse completion text into a Decision. Raises ``DecisionParseFailure``."""
    text = extract_json_text(content)
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise DecisionParseFailure(f"Invalid decision JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise DecisionParseFailure(f"Decision JSON is a {type(parsed).__name__}, expected an object")
    parsed.pop("is_fallback", None)

    try:
        return Decision.model_validate(parsed)
    except ValidationError as e:
        raise DecisionParseFailure(f"Decision failed validation: {e}") from e


def fallback_decision(content: str) -> Decision:
    """The deterministic no-op used when parsing fails."""
    return Decision(
        action=FALLBACK_ACTION,
        args={"reason": FALLBACK_REASON},
        reasoning=(content or "")[:200],
        confidence=FALLBACK_CONFIDENCE,
        is_fallback=True,
    )


def decide(content: str) -> Decision:
    try:
        decision = parse_decision(content)
    except DecisionParseFailure as e:
        logger.warning("Falling back to 'ignore' after parse failure: %s", e)
        logger.debug("Raw decision content (first 500 chars): %s", (content or "")[:500])
        return fallback_decision(content)

    logger.debug(
        "Parsed decision: action=%s confidence=%s args=%s plan=%d",
        decision.action, decision.confidence, bool(decision.args), len(decision.plan),
    )
    return decision
