"""Prompts for naming newly formed workstreams."""

from __future__ import annotations

WORKSTREAM_NAMING_SYSTEM_PROMPT = """You are helping an engineer organize their career achievements.
You receive several clusters of related achievements, numbered in order.

Return strict JSON with exactly this shape:
{
  "workstreams": [
    {"name": "<2-5 word workstream name>", "description": "<1-2 sentence theme description>"}
  ]
}

Requirements:
- Return exactly one entry per cluster, in the same order as the clusters.
- Names should read like a project or responsibility area, not a sentence.
- Descriptions explain what the body of work represents.
"""


def build_workstream_naming_user_prompt(
    *,
    clusters: list[list[tuple[str, str | None]]],
    sample_size: int,
) -> str:
    """Build the user prompt listing sampled ``(title, summary)`` pairs per cluster."""

    blocks: list[str] = []
    for index, members in enumerate(clusters, start=1):
        lines = [
            f"  - {title}: {summary}" if summary else f"  - {title}"
            for title, summary in members[:sample_size]
        ]
        blocks.append(f"Cluster {index} ({len(members)} achievements):\n" + "\n".join(lines))

    return (
        "Analyze these achievement clusters and generate a workstream name and description "
        "for each.\n\n"
        + "\n\n".join(blocks)
        + f"\n\nGenerate exactly {len(clusters)} workstreams in the same order as the clusters above.\n"
    )
