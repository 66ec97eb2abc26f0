"""In-memory counter sink for pipeline metrics."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from loguru import logger

type Labels = tuple[tuple[str, str], ...]


@dataclass(slots=True)
class InMemoryTelemetry:
    """Counts per metric name and per ``(name, labels)`` pair, with debug logging."""

    counters: Counter[str] = field(default_factory=Counter)
    labeled: Counter[tuple[str, Labels]] = field(default_factory=Counter)

    def incr(self, name: str, value: int = 1, labels: Labels = ()) -> None:
        self.counters[name] += int(value)
        if labels:
            self.labeled[(name, tuple(labels))] += int(value)
            labels_text = ",".join(f"{k}={v}" for k, v in labels)
            logger.debug(f"telemetry {name} += {value} ({labels_text})")
        else:
            logger.debug(f"telemetry {name} += {value}")

    def get(self, name: str, **labels: str) -> int:
        """Counter total, optionally restricted to events carrying all given labels."""
        if not labels:
            return self.counters[name]
        wanted = set(labels.items())
        return sum(
            count for (metric, metric_labels), count in self.labeled.items() if metric == name and wanted <= set(metric_labels)
        )

    def snapshot(self) -> dict[str, int]:
        return dict(sorted(self.counters.items()))
