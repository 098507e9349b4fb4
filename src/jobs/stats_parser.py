import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Sequence


@dataclass(frozen=True)
class StatRule:
    """A line starting with `prefix` sets `field` to the rest of the line."""
    prefix: str
    field: str

    def match(self, line: str) -> Optional[str]:
        if line.startswith(self.prefix):
            return line[len(self.prefix):].strip()
        return None


# Ordered: a later rule can overwrite an earlier one on the same line.
DEFAULT_RULES: Sequence[StatRule] = (
    StatRule("Cells:", "cells"),
    StatRule("Area:", "area"),
    StatRule("WNS:", "wns"),
    StatRule("Instances:", "instances"),
    StatRule("Duration:", "duration"),
)

COMPLETION_MARKER = re.compile(r"Flow completed")


def iter_lines(text: str) -> Iterator[str]:
    for line in text.splitlines():
        yield line.strip()


class StatsParser:
    """
    Best-effort metric extraction from the flow's text output.

    The result is sparse: a missing key means "unknown", never an error. Only
    this class knows the output format of the toolchain.
    """

    def __init__(
        self,
        rules: Iterable[StatRule] = DEFAULT_RULES,
        completion_marker: "re.Pattern[str]" = COMPLETION_MARKER,
        completion_field: str = "status",
        completion_value: str = "completed",
    ):
        self.rules = tuple(rules)
        self.completion_marker = completion_marker
        self.completion_field = completion_field
        self.completion_value = completion_value

    def parse(self, log_text: str) -> Dict[str, str]:
        stats: Dict[str, str] = {}
        for line in iter_lines(log_text or ""):
            if not line:
                continue
            for rule in self.rules:
                value = rule.match(line)
                if value is not None:
                    stats[rule.field] = value
            if self.completion_marker.search(line):
                stats[self.completion_field] = self.completion_value
        return stats


def parse_design_stats(log_text: str) -> Dict[str, str]:
    return StatsParser().parse(log_text)
