"""Unit tests for the plan generator contract."""

import pytest

from taskqueue.errors import ErrorCode, InvalidArgumentError, UpstreamGenerationError
from taskqueue.planning import (
    DEFAULT_MODELS,
    build_plan_prompt,
    classify_generation_error,
    parse_plan_payload,
    resolve_provider,
    run_generator,
)


class NoObjectGeneratedError(Exception):
    pass


class InvalidJSONError(Exception):
    pass


class FakeGenerator:
    """Records calls and returns a canned payload or raises a canned error."""

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    def __call__(self, prompt, provider, model):
        self.calls.append({"prompt": prompt, "provider": provider, "model": model})
        if self.error is not None:
            raise self.error
        return self.payload


PLAN = {
    "projectPlan": "Build the API first, then the UI.",
    "tasks": [
        {"title": "API", "description": "Write endpoints", "toolRecommendations": "fastapi"},
        {"title": "UI", "description": "Write pages"},
    ],
}


class TestProviders:
    """Test cases for provider and model resolution."""

    def test_defaults_to_openai(self):
        assert resolve_provider(None, None) == ("openai", DEFAULT_MODELS["openai"])

    @pytest.mark.parametrize("provider", ["openai", "google", "deepseek"])
    def test_default_model_per_provider(self, provider):
        assert resolve_provider(provider, None) == (provider, DEFAULT_MODELS[provider])

    def test_explicit_model(self):
        assert resolve_provider("google", "gemini-2.0-flash") == ("google", "gemini-2.0-flash")

    def test_unknown_provider(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            resolve_provider("acme", None)
        assert exc_info.value.code == ErrorCode.INVALID_PROVIDER
        assert "Invalid provider: acme" in str(exc_info.value)


class TestPrompt:
    """Test cases for prompt assembly."""

    def test_prompt_only(self):
        assert build_plan_prompt("Build a CLI") == "<prompt>Build a CLI</prompt>"

    def test_attachments_are_tagged(self):
        prompt = build_plan_prompt("Build a CLI", ["notes one", "notes two"])

        assert prompt.splitlines() == [
            "<prompt>Build a CLI</prompt>",
            "<attachment>notes one</attachment>",
            "<attachment>notes two</attachment>",
        ]

    @pytest.mark.parametrize("prompt", ["", "  ", None])
    def test_blank_prompt(self, prompt):
        with pytest.raises(InvalidArgumentError):
            build_plan_prompt(prompt)


class TestPayload:
    """Test cases for validating generator output."""

    def test_valid_payload(self):
        plan = parse_plan_payload(PLAN)

        assert plan.project_plan == PLAN["projectPlan"]
        assert [t.title for t in plan.tasks] == ["API", "UI"]
        assert plan.tasks[0].tool_recommendations == "fastapi"
        assert plan.tasks[1].rule_recommendations is None

    @pytest.mark.parametrize("payload", [
        None,
        "tasks",
        {},
        {"tasks": "API"},
        {"tasks": ["API"]},
        {"tasks": [{"title": "API"}]},
        {"tasks": [{"title": "", "description": "D"}]},
        {"tasks": [{"title": "T", "description": "D", "toolRecommendations": 3}]},
        {"projectPlan": ["step"], "tasks": []},
    ])
    def test_invalid_payload(self, payload):
        with pytest.raises(UpstreamGenerationError) as exc_info:
            parse_plan_payload(payload)
        assert exc_info.value.code == ErrorCode.INVALID_PLAN_RESPONSE
        assert exc_info.value.retryable


class TestErrorClassification:
    """Test cases for mapping generator failures."""

    @pytest.mark.parametrize("error", [NoObjectGeneratedError("no object"), InvalidJSONError("bad json")])
    def test_malformed_output(self, error):
        classified = classify_generation_error(error)
        assert classified.code == ErrorCode.INVALID_PLAN_RESPONSE

    @pytest.mark.parametrize("message", ["Rate limit reached", "You exceeded your current quota"])
    def test_rate_limited(self, message):
        classified = classify_generation_error(RuntimeError(message))

        assert classified.code == ErrorCode.PLAN_RATE_LIMITED
        assert classified.retryable

    @pytest.mark.parametrize("message", ["Incorrect API key provided", "Authentication failed"])
    def test_auth_failure(self, message):
        classified = classify_generation_error(RuntimeError(message))

        assert classified.code == ErrorCode.PLAN_AUTH_FAILED
        assert not classified.retryable

    def test_unrecognised(self):
        assert classify_generation_error(RuntimeError("connection reset")) is None


class TestRunGenerator:
    """Test cases for invoking a generator."""

    def test_generator_receives_resolved_arguments(self):
        generator = FakeGenerator(payload=PLAN)

        run_generator(generator, "Build it", provider="deepseek", attachments=["notes"])

        assert generator.calls == [{
            "prompt": "<prompt>Build it</prompt>\n<attachment>notes</attachment>",
            "provider": "deepseek",
            "model": "deepseek-coder",
        }]

    def test_invalid_provider_skips_generator(self):
        generator = FakeGenerator(payload=PLAN)

        with pytest.raises(InvalidArgumentError):
            run_generator(generator, "Build it", provider="acme")
        assert generator.calls == []

    def test_classified_error_keeps_cause(self):
        original = RuntimeError("429 Too Many Requests")
        generator = FakeGenerator(error=original)

        with pytest.raises(UpstreamGenerationError) as exc_info:
            run_generator(generator, "Build it")

        assert exc_info.value.code == ErrorCode.PLAN_RATE_LIMITED
        assert exc_info.value.__cause__ is original

    def test_unclassified_error_propagates(self):
        generator = FakeGenerator(error=ConnectionError("connection reset"))

        with pytest.raises(ConnectionError):
            run_generator(generator, "Build it")


class TestGenerateProjectPlan:
    """Test cases for storing a generated plan."""

    def test_generated_project_is_stored(self, manager):
        result = manager.generate_project_plan("Build it", FakeGenerator(payload=PLAN), auto_approve=True)

        assert result["status"] == "planned"
        assert result["autoApprove"] is True
        assert [t["title"] for t in result["tasks"]] == ["API", "UI"]

        project = manager.read_project(result["projectId"])
        assert project["initialPrompt"] == "Build it"
        assert project["projectPlan"] == PLAN["projectPlan"]
        assert project["tasks"][0]["toolRecommendations"] == "fastapi"

    def test_missing_plan_falls_back_to_prompt(self, manager):
        payload = {"tasks": [{"title": "Only", "description": "One"}]}

        result = manager.generate_project_plan("Build it", FakeGenerator(payload=payload))

        assert manager.read_project(result["projectId"])["projectPlan"] == "Build it"

    def test_failed_generation_stores_nothing(self, manager, task_file):
        with pytest.raises(UpstreamGenerationError):
            manager.generate_project_plan("Build it", FakeGenerator(error=InvalidJSONError("oops")))

        assert not task_file.exists()
