"""Tests for workstream naming."""

from __future__ import annotations

from workstream_engine.pipeline.naming import fallback_workstream_name, name_workstreams
from workstream_engine.prompts import build_workstream_naming_user_prompt
from workstream_engine.schemas import Achievement


class _FakeNamingClient:
    def __init__(self, payload: dict):
        self.payload = payload
        self.prompts: list[str] = []

    def complete_json(self, *, system_prompt: str, user_prompt: str, **kwargs) -> dict:
        self.prompts.append(user_prompt)
        return self.payload


class _BrokenNamingClient:
    def complete_json(self, **kwargs) -> dict:
        raise TimeoutError("model timed out")


def _achievement(achievement_id: str, title: str) -> Achievement:
    return Achievement(id=achievement_id, user_id="u", title=title, summary=f"{title} summary")


def _clusters() -> list[list[Achievement]]:
    return [
        [_achievement("a1", "Migrated billing service"), _achievement("a2", "Billing service alerts")],
        [_achievement("b1", "Hired platform engineers")],
    ]


def test_batch_call_names_every_cluster_in_order():
    client = _FakeNamingClient(
        {
            "workstreams": [
                {"name": "Billing Platform", "description": "Billing reliability work."},
                {"name": "Hiring", "description": "Growing the team."},
            ]
        }
    )
    names = name_workstreams(_clusters(), client)

    assert [item.name for item in names] == ["Billing Platform", "Hiring"]
    assert all(item.fallback_used is False for item in names)
    assert len(client.prompts) == 1
    assert "Cluster 2 (1 achievements)" in client.prompts[0]


def test_wrong_count_falls_back():
    client = _FakeNamingClient({"workstreams": [{"name": "Only one", "description": "x"}]})
    names = name_workstreams(_clusters(), client)
    assert all(item.fallback_used for item in names)


def test_client_failure_falls_back_to_title_words():
    names = name_workstreams(_clusters(), _BrokenNamingClient())
    assert names[0].name.startswith("Billing Service")
    assert names[0].description == "Workstream with 2 achievements"


def test_no_client_uses_fallback():
    names = name_workstreams(_clusters(), None)
    assert len(names) == 2
    assert all(item.fallback_used for item in names)


def test_fallback_without_useful_words_is_numbered():
    name = fallback_workstream_name([_achievement("x", "a an of to")], 4)
    assert name.name == "Workstream 5"


def test_prompt_samples_titles():
    prompt = build_workstream_naming_user_prompt(
        clusters=[[("First", None), ("Second", "detail"), ("Third", None)]],
        sample_size=2,
    )
    assert "  - First" in prompt
    assert "  - Second: detail" in prompt
    assert "Third" not in prompt
    assert "Generate exactly 1 workstreams" in prompt
