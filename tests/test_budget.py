import json

from sandbox_orchestrator.agent.budget import (
    ContextBudget,
    truncate,
    truncate_task_description,
    truncate_tool_output,
)
from sandbox_orchestrator.schemas import SandboxProfile


def test_truncate_keeps_short_values():
    assert truncate("hello", 10) == "hello"


def test_truncate_reports_omitted_chars_and_respects_cap():
    value = "x" * 500
    result = truncate(value, 100)
    assert len(result) <= 100
    kept = result.index("...")
    assert result.endswith(f"... [truncated {500 - kept} chars]")


def test_truncate_tiny_cap_never_exceeds_cap():
    assert len(truncate("abcdefghij" * 10, 5)) == 5


def test_truncating_twice_changes_nothing():
    value = "abcdefghij" * 50
    for cap in (0, 5, 25, 30, 100, 499):
        once = truncate(value, cap)
        assert len(once) <= cap
        assert truncate(once, cap) == once


def test_standard_budget_uses_settings(make_settings):
    settings = make_settings(tool_output_string_limit=1234)
    budget = ContextBudget.for_profile(settings, SandboxProfile.STANDARD)
    assert budget.tool_output_string_limit == 1234
    assert budget.task_description_max_chars == settings.task_description_max_chars


def test_economy_budget_defaults(settings):
    budget = ContextBudget.for_profile(settings, SandboxProfile.ECONOMY)
    assert budget.task_description_max_chars == 6_000
    assert budget.tool_output_string_limit == 6_000
    assert budget.tool_output_serialized_limit == 15_000
    assert budget.http_tool_max_response_chars == 8_000


def test_economy_budget_never_exceeds_standard(make_settings):
    settings = make_settings(
        tool_output_string_limit=2_000,
        economy_tool_output_string_limit=50_000,
    )
    budget = ContextBudget.for_profile(settings, SandboxProfile.ECONOMY)
    assert budget.tool_output_string_limit == 2_000


def test_tool_output_strings_are_capped(make_settings, log):
    settings = make_settings(tool_output_string_limit=50, tool_output_serialized_limit=10_000)
    budget = ContextBudget.for_profile(settings, SandboxProfile.STANDARD)
    result = truncate_tool_output({"stdout": "a" * 200, "nested": ["b" * 300], "exit_code": 0}, budget, log)
    data = json.loads(result)
    assert len(data["stdout"]) <= 50
    assert len(data["nested"][0]) <= 50
    assert data["exit_code"] == 0
    assert log.contains("Truncated 2 tool output string(s)")


def test_tool_output_serialized_cap(make_settings, log):
    settings = make_settings(tool_output_string_limit=1_000, tool_output_serialized_limit=200)
    budget = ContextBudget.for_profile(settings, SandboxProfile.STANDARD)
    result = truncate_tool_output({f"k{i}": "v" * 100 for i in range(20)}, budget, log)
    assert len(result) <= 200
    assert "[truncated" in result
    assert log.contains("Truncated serialized tool output")


def test_task_description_is_truncated_for_economy(settings, log):
    budget = ContextBudget.for_profile(settings, SandboxProfile.ECONOMY)
    task = "fix " * 3_000
    result = truncate_task_description(task, budget, log)
    assert len(result) <= 6_000
    assert log.contains("profile ECONOMY")
