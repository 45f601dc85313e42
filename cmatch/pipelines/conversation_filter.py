"""Speaker-based filtering of meeting transcripts.

Transcript lines of the form ``<speaker> HH:MM:SS`` open a new speaker turn;
the following lines belong to that speaker until the next header.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

SPEAKER_LINE = re.compile(r"^([^\s\d]+(?:\s+[^\s\d]+)*)\s+\d{2}:\d{2}:\d{2}")


@dataclass
class FilterOptions:
    exclude_speakers: list[str] = field(default_factory=list)
    include_speakers: list[str] = field(default_factory=list)
    exclude_keywords: list[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.exclude_speakers or self.include_speakers or self.exclude_keywords)


@dataclass
class FilterResult:
    filtered_data: str
    original_speakers: list[str]
    included_speakers: list[str]
    excluded_speakers: list[str]
    included_lines: int
    excluded_lines: int


def extract_speakers(conversation: str) -> list[str]:
    """Speakers in order of first appearance."""
    speakers: dict[str, None] = {}
    for line in conversation.split("\n"):
        match = SPEAKER_LINE.match(line)
        if match:
            speakers.setdefault(match.group(1).strip(), None)
    return list(speakers)


def _same_speaker(a: str, b: str) -> bool:
    return a == b or re.sub(r"\s", "", a) == re.sub(r"\s", "", b)


def _listed(speaker: str, names: Sequence[str]) -> bool:
    return any(_same_speaker(speaker, name) for name in names)


def filter_conversation(conversation: str, options: FilterOptions) -> FilterResult:
    """Drop lines from excluded speakers or containing excluded keywords."""
    kept: list[str] = []
    included: dict[str, None] = {}
    excluded: dict[str, None] = {}
    included_lines = excluded_lines = 0
    current: str | None = None
    keywords = [k.lower() for k in options.exclude_keywords if k]

    for line in conversation.split("\n"):
        match = SPEAKER_LINE.match(line)
        if match:
            current = match.group(1).strip()

        drop = False
        if current:
            if options.exclude_speakers and _listed(current, options.exclude_speakers):
                drop = True
                excluded.setdefault(current, None)
            elif options.include_speakers and not _listed(current, options.include_speakers):
                drop = True

        if not drop and keywords and any(k in line.lower() for k in keywords):
            drop = True

        if drop:
            excluded_lines += 1
            continue

        kept.append(line)
        included_lines += 1
        if current:
            included.setdefault(current, None)

    return FilterResult(
        filtered_data="\n".join(kept),
        original_speakers=extract_speakers(conversation),
        included_speakers=list(included),
        excluded_speakers=list(excluded),
        included_lines=included_lines,
        excluded_lines=excluded_lines,
    )
