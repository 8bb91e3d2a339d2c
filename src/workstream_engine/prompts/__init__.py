"""Prompt builders for the workstream engine."""

from workstream_engine.prompts.naming_prompts import (
    WORKSTREAM_NAMING_SYSTEM_PROMPT,
    build_workstream_naming_user_prompt,
)

__all__ = [
    "WORKSTREAM_NAMING_SYSTEM_PROMPT",
    "build_workstream_naming_user_prompt",
]
