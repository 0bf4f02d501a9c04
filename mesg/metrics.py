"""Per-queue operation counters rendered in the text exposition format."""

from __future__ import annotations

import threading

_U64 = 2**64


class MetricsWriter:
    """Thread-safe counters of pushes, commits, rollbacks and live consumers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._push: dict[str, int] = {}
        self._consumers: dict[str, int] = {}
        self._commit: dict[str, int] = {}
        self._rollback: dict[str, int] = {}

    def _upsert(self, counters: dict[str, int], queue: str, initial: int, delta: int) -> None:
        with self._lock:
            if queue in counters:
                counters[queue] = (counters[queue] + delta) % _U64
            else:
                counters[queue] = initial

    def inc_push(self, queue: str) -> None:
        self._upsert(self._push, queue, 1, 1)

    def inc_consumers_count(self, queue: str) -> None:
        self._upsert(self._consumers, queue, 1, 1)

    def decr_consumers_count(self, queue: str) -> None:
        self._upsert(self._consumers, queue, 0, -1)

    def inc_commit(self, queue: str) -> None:
        self._upsert(self._commit, queue, 1, 1)

    def inc_rollback(self, queue: str) -> None:
        self._upsert(self._rollback, queue, 1, 1)

    def reset(self) -> None:
        """Drop every counter."""
        with self._lock:
            for counters in (self._push, self._consumers, self._commit, self._rollback):
                counters.clear()

    def write(self) -> str:
        """Render all counters as text."""
        with self._lock:
            sections = [
                ("mesg_push_ops", "Number of push operations", "histogram", dict(self._push)),
                ("mesg_commit_ops", "Number of commit operations", "histogram", dict(self._commit)),
                (
                    "mesg_rollback_ops",
                    "Number of commit operations",
                    "histogram",
                    dict(self._rollback),
                ),
                (
                    "mesg_consumers_count",
                    "Number of active consumers",
                    "gauge",
                    dict(self._consumers),
                ),
            ]
        lines = []
        for title, help_text, kind, counters in sections:
            lines.append(f"# HELP {title} {help_text}")
            lines.append(f"# TYPE {title} {kind}")
            lines.extend(f'{title} {{ queue="{queue}" }} {value}' for queue, value in counters.items())
            lines.append("")
        return "\n".join(lines) + "\n"