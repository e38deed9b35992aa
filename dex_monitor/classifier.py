"""Substring heuristics for spotting DEX activity in raw log lines."""

from typing import Iterable, Mapping

DEX_KEYWORDS = ("swap", "trade", "exchange")


def is_relevant(
    logs: Iterable[str],
    program_ids: Iterable[str],
    keywords: Iterable[str] = DEX_KEYWORDS,
) -> bool:
    needles = (*program_ids, *keywords)
    return any(needle in line for line in logs for needle in needles)


def matched_program(logs: Iterable[str], programs: Mapping[str, str]) -> str | None:
    """Name of the first DEX (``{name: program_id}``) whose id shows up in the logs."""
    lines = list(logs)
    for name, program_id in programs.items():
        if any(program_id in line for line in lines):
            return name
    return None
