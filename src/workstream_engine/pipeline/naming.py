"""Workstream naming with a batched LLM call and a word-frequency fallback."""

from __future__ import annotations

import logging
import re
from collections import Counter

from pydantic import BaseModel, ConfigDict, Field

from workstream_engine.models import LLMJsonClient
from workstream_engine.prompts import (
    WORKSTREAM_NAMING_SYSTEM_PROMPT,
    build_workstream_naming_user_prompt,
)
from workstream_engine.schemas import Achievement

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 256
MAX_DESCRIPTION_LENGTH = 1000

_STOPWORDS = {
    "the", "and", "that", "this", "from", "with", "were", "been", "have",
    "into", "for", "our", "their", "using", "across",
}


class _WorkstreamNamePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    description: str = Field(min_length=1, max_length=MAX_DESCRIPTION_LENGTH)


class _WorkstreamNamesPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workstreams: list[_WorkstreamNamePayload]


class WorkstreamName(BaseModel):
    """Name and description chosen for one cluster."""

    name: str
    description: str
    fallback_used: bool = False


def _common_words(titles: list[str], limit: int = 3) -> list[str]:
    words = [
        word
        for title in titles
        for word in re.findall(r"[a-z0-9]+", title.lower())
        if len(word) > 3 and word not in _STOPWORDS
    ]
    return [word for word, _ in Counter(words).most_common(limit)]


def fallback_workstream_name(members: list[Achievement], index: int) -> WorkstreamName:
    """Name a cluster from the most frequent words in its titles."""

    words = _common_words([member.title for member in members[:15]])
    name = " ".join(word.capitalize() for word in words) or f"Workstream {index + 1}"
    return WorkstreamName(
        name=name[:MAX_NAME_LENGTH],
        description=f"Workstream with {len(members)} achievements",
        fallback_used=True,
    )


def name_workstreams(
    clusters: list[list[Achievement]],
    llm_client: LLMJsonClient | None,
    *,
    sample_size: int = 15,
) -> list[WorkstreamName]:
    """Name every cluster in one LLM call, falling back per batch on any failure."""

    if not clusters:
        return []
    if llm_client is None:
        return [fallback_workstream_name(members, index) for index, members in enumerate(clusters)]

    try:
        payload = llm_client.complete_json(
            system_prompt=WORKSTREAM_NAMING_SYSTEM_PROMPT,
            user_prompt=build_workstream_naming_user_prompt(
                clusters=[[(member.title, member.summary) for member in members] for members in clusters],
                sample_size=sample_size,
            ),
            schema_name="workstream_names_payload",
            json_schema=_WorkstreamNamesPayload.model_json_schema(),
        )
        parsed = _WorkstreamNamesPayload.model_validate(payload)
        if len(parsed.workstreams) != len(clusters):
            raise ValueError(
                f"Expected {len(clusters)} workstream names, got {len(parsed.workstreams)}."
            )
    except Exception:
        logger.warning("Workstream naming failed, using fallback names", exc_info=True)
        return [fallback_workstream_name(members, index) for index, members in enumerate(clusters)]

    return [
        WorkstreamName(name=item.name.strip(), description=item.description.strip())
        for item in parsed.workstreams
    ]
