"""Contract between the task queue and an external plan generator.

The generator itself (an LLM client) lives outside this package. This
module assembles the prompt it receives, checks the payload it hands
back, and classifies its failures so callers can decide whether to retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ErrorCode, InvalidArgumentError, UpstreamGenerationError

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4-turbo",
    "google": "gemini-1.5-pro",
    "deepseek": "deepseek-coder",
}

PLAN_PROVIDERS = tuple(DEFAULT_MODELS)

MALFORMED_OUTPUT_ERRORS = {
    "NoObjectGeneratedError": "The LLM failed to generate a valid project plan. Please try again with a clearer prompt.",
    "InvalidJSONError": "The LLM generated invalid JSON. Please try again.",
}

_RATE_LIMIT_MARKERS = ("rate limit", "quota", "too many requests")
_AUTH_MARKERS = ("authentication", "api key", "unauthorized", "401")

PlanGenerator = Callable[..., Mapping[str, Any]]


@dataclass(slots=True)
class PlannedTask:
    title: str
    description: str
    tool_recommendations: Optional[str] = None
    rule_recommendations: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "description": self.description}
        if self.tool_recommendations is not None:
            data["toolRecommendations"] = self.tool_recommendations
        if self.rule_recommendations is not None:
            data["ruleRecommendations"] = self.rule_recommendations
        return data


@dataclass(slots=True)
class ProjectPlan:
    """Validated generator output, ready for ``TaskManager.create_project``."""

    project_plan: Optional[str]
    tasks: List[PlannedTask] = field(default_factory=list)


def resolve_provider(provider: Optional[str], model: Optional[str]) -> Tuple[str, str]:
    """Return ``(provider, model)``, failing fast on an unknown provider."""
    chosen = (provider or "openai").lower()
    if chosen not in DEFAULT_MODELS:
        raise InvalidArgumentError(
            ErrorCode.INVALID_PROVIDER,
            f"Invalid provider: {provider}",
            {"provider": provider, "supported": list(PLAN_PROVIDERS)},
        )
    return chosen, model or DEFAULT_MODELS[chosen]


def build_plan_prompt(prompt: str, attachments: Optional[Iterable[str]] = None) -> str:
    """Wrap the request and each attachment text in tags for the generator."""
    if not prompt or not prompt.strip():
        raise InvalidArgumentError(ErrorCode.MISSING_PARAMETER, "A prompt is required to generate a plan")
    parts = [f"<prompt>{prompt}</prompt>"]
    for attachment in attachments or []:
        parts.append(f"<attachment>{attachment}</attachment>")
    return "\n".join(parts)


def _optional_text(entry: Mapping[str, Any], key: str, index: int) -> Optional[str]:
    value = entry.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise UpstreamGenerationError(
            ErrorCode.INVALID_PLAN_RESPONSE,
            f"Task {index} has a non-text '{key}' in the generated plan",
            {"index": index, "field": key},
        )
    return value


def parse_plan_payload(payload: Any) -> ProjectPlan:
    """Check the generator payload shape and convert it into a ``ProjectPlan``."""
    if not isinstance(payload, Mapping):
        raise UpstreamGenerationError(
            ErrorCode.INVALID_PLAN_RESPONSE,
            "The plan generator returned something other than an object",
            {"type": type(payload).__name__},
        )

    raw_tasks = payload.get("tasks")
    if not isinstance(raw_tasks, list):
        raise UpstreamGenerationError(
            ErrorCode.INVALID_PLAN_RESPONSE,
            "The plan generator response is missing a 'tasks' list",
        )

    plan = payload.get("projectPlan")
    if plan is not None and not isinstance(plan, str):
        raise UpstreamGenerationError(
            ErrorCode.INVALID_PLAN_RESPONSE,
            "The plan generator returned a non-text 'projectPlan'",
        )

    tasks: List[PlannedTask] = []
    for index, entry in enumerate(raw_tasks):
        if not isinstance(entry, Mapping):
            raise UpstreamGenerationError(
                ErrorCode.INVALID_PLAN_RESPONSE,
                f"Task {index} in the generated plan is not an object",
                {"index": index},
            )
        title = entry.get("title")
        description = entry.get("description")
        if not isinstance(title, str) or not title.strip() or not isinstance(description, str) or not description.strip():
            raise UpstreamGenerationError(
                ErrorCode.INVALID_PLAN_RESPONSE,
                f"Task {index} in the generated plan needs a title and a description",
                {"index": index},
            )
        tasks.append(
            PlannedTask(
                title=title,
                description=description,
                tool_recommendations=_optional_text(entry, "toolRecommendations", index),
                rule_recommendations=_optional_text(entry, "ruleRecommendations", index),
            )
        )

    return ProjectPlan(project_plan=plan, tasks=tasks)


def classify_generation_error(error: Exception) -> Optional[UpstreamGenerationError]:
    """Map a generator exception onto a structured error, or None if unrecognised."""
    name = type(error).__name__
    if name in MALFORMED_OUTPUT_ERRORS:
        return UpstreamGenerationError(
            ErrorCode.INVALID_PLAN_RESPONSE,
            MALFORMED_OUTPUT_ERRORS[name],
            {"upstream_error": name},
        )

    text = str(error).lower()
    if any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return UpstreamGenerationError(
            ErrorCode.PLAN_RATE_LIMITED,
            "Rate limit or quota exceeded for the LLM provider. Please try again later.",
            {"upstream_error": name},
        )
    if any(marker in text for marker in _AUTH_MARKERS):
        return UpstreamGenerationError(
            ErrorCode.PLAN_AUTH_FAILED,
            "Invalid API key or authentication failed. Please check your environment variables.",
            {"upstream_error": name},
        )
    return None


def run_generator(
    generator: PlanGenerator,
    prompt: str,
    *,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    attachments: Optional[Iterable[str]] = None,
) -> ProjectPlan:
    """Invoke ``generator`` and return its validated plan."""
    chosen_provider, chosen_model = resolve_provider(provider, model)
    full_prompt = build_plan_prompt(prompt, attachments)
    try:
        payload = generator(full_prompt, provider=chosen_provider, model=chosen_model)
    except Exception as e:
        classified = classify_generation_error(e)
        if classified is None:
            raise
        raise classified from e
    return parse_plan_payload(payload)
