import enum
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict

from pydantic import ValidationError

from app.features.analysis.schemas.analysis import ActionItem, AnalysisResultData, Priority
from app.features.analysis.services.errors import EmptyResponseError, MalformedResponseError
from app.features.analysis.services.prompts import REQUIRED_FIELDS

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL | re.IGNORECASE)


class ProviderFamily(str, enum.Enum):
    SCHEMA_CONSTRAINED = "schema_constrained"  # Gemini structured output
    CHAT_COMPLETION = "chat_completion"  # OpenAI-compatible choices[].message
    MESSAGES = "messages"  # Anthropic content[].text


@dataclass(frozen=True)
class ProviderReply:
    """Raw assistant text as extracted from one provider's response envelope."""

    family: ProviderFamily
    provider: str
    text: str


def strip_code_fences(text: str) -> str:
    """Return the body of the first ```json fenced block, or the text itself."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_json_response(response_text: str) -> Dict[str, Any]:
    if not response_text or not response_text.strip():
        raise EmptyResponseError("Received an empty response from the model.")
    try:
        parsed = json.loads(response_text.strip())
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON response: {response_text[:300]!r}")
        raise MalformedResponseError(
            "API returned invalid JSON. The response may be malformed or an error message. "
            f"Details: {e}"
        ) from e
    if not isinstance(parsed, dict) or not parsed:
        raise MalformedResponseError(
            "API returned invalid JSON. Details: parsed JSON is not a valid object or is empty."
        )
    return parsed


def _coerce_level(value: Any, field: str) -> Priority:
    if isinstance(value, Priority):
        return value
    if isinstance(value, str):
        words = value.strip().split()
        if words:
            word = words[0].capitalize()
            for level in Priority:
                if level.value == word:
                    return level
    raise MalformedResponseError(f"Malformed response: '{field}' must be High, Medium or Low, got {value!r}")


def _coerce_score(value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedResponseError(f"Malformed response: 'monetization_score' is not a number: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        raise MalformedResponseError(
            f"Malformed response: 'monetization_score' is not a finite number: {value!r}"
        )
    score = round(number)
    return min(100, max(1, score))


def _coerce_action(item: Any) -> ActionItem:
    # Some models answer with bare strings instead of objects
    if isinstance(item, str):
        if not item.strip():
            raise MalformedResponseError("Malformed response: empty suggested action")
        text = item.strip()
        return ActionItem(title=text, description=text, impact=Priority.MEDIUM)
    if isinstance(item, dict):
        title = item.get("title") or item.get("action") or item.get("name")
        description = item.get("description") or item.get("details") or ""
        if not title and not description:
            raise MalformedResponseError(f"Malformed response: suggested action has no text: {item!r}")
        impact = item.get("impact") or item.get("priority")
        try:
            level = _coerce_level(impact, "impact") if impact else Priority.MEDIUM
        except MalformedResponseError:
            level = Priority.MEDIUM
        return ActionItem(title=str(title or description).strip(), description=str(description).strip(), impact=level)
    raise MalformedResponseError(f"Malformed response: unsupported suggested action {item!r}")


def normalize_analysis(payload: Dict[str, Any], url: str) -> AnalysisResultData:
    """
    Coerce one provider's JSON object into AnalysisResultData.

    Accepts "summary" in place of "justification" and bare-string action
    items. The requested URL is used when the model leaves "url" out.
    """
    missing = [key for key in REQUIRED_FIELDS if key not in payload]
    justification = payload.get("justification", payload.get("summary"))
    if justification is None:
        missing.append("justification")
    if missing:
        raise MalformedResponseError(f"Malformed response: missing required keys {missing}")

    actions = payload["suggested_actions"]
    if isinstance(actions, str):
        actions = [actions]
    if not isinstance(actions, list):
        raise MalformedResponseError("Malformed response: 'suggested_actions' must be a list")

    try:
        return AnalysisResultData(
            url=str(payload.get("url") or url),
            monetization_score=_coerce_score(payload["monetization_score"]),
            justification=str(justification),
            priority=_coerce_level(payload["priority"], "priority"),
            suggested_actions=[_coerce_action(item) for item in actions],
            affiliate_niche=str(payload.get("affiliate_niche") or ""),
            content_gap_analysis=str(payload.get("content_gap_analysis") or ""),
            conversion_booster=str(payload.get("conversion_booster") or ""),
        )
    except ValidationError as e:
        raise MalformedResponseError(f"Malformed response: {e.error_count()} invalid field(s)") from e


def normalize_reply(reply: ProviderReply, url: str) -> AnalysisResultData:
    """Single normalization step every adapter's reply passes through."""
    if reply.family == ProviderFamily.SCHEMA_CONSTRAINED:
        text = reply.text
    else:
        text = strip_code_fences(reply.text or "")
    return normalize_analysis(parse_json_response(text), url)
