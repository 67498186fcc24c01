"""Workspace run queue.

The queue is recomputed from the runs present in the cluster on every
reconciliation, merged against the previously stored order: entries already
queued keep their relative position, newly observed runs are appended by
creation time (then name).  A fresh sort would let a listing that is briefly
missing a run reshuffle everyone behind it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from stok.models import Run

_EPOCH = datetime.min.replace(tzinfo=UTC)


def build_queue(previous: Sequence[str], runs: Iterable[Run], workspace: str | None = None) -> list[str]:
    """Ordered names of the non-completed runs.

    ``runs`` may include runs of other workspaces when ``workspace`` is
    given; those are filtered out by label.
    """
    pending = {
        run.name: run
        for run in runs
        if not run.completed and (workspace is None or run.workspace == workspace)
    }

    queue = [name for name in dict.fromkeys(previous) if name in pending]
    known = set(queue)
    new_runs = sorted(
        (run for name, run in pending.items() if name not in known),
        key=lambda run: (run.metadata.creation_timestamp or _EPOCH, run.name),
    )
    queue.extend(run.name for run in new_runs)
    return queue
