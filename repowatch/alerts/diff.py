"""Per-category novelty rules.

List categories report an item the first time its id is seen. Workflow runs
are reported on every state transition, since one run is observed several
times over its lifecycle (queued, in_progress, completed).
"""

from collections.abc import Iterable, Mapping, Sequence

from repowatch.shared.models import FileChangeMarker, TrackedFile, WorkflowRun


def diff_ids(previous: Sequence[int] | None, current: Sequence[int]) -> list[int]:
    """Ids in ``current`` that are absent from ``previous``.

    Args:
        previous: Ids observed on the last successful fetch (None if never)
        current: Ids observed now, in API order

    Returns:
        Novel ids in ``current`` order, without repeats

    Example:
        >>> diff_ids([1, 2], [3, 1, 2, 4])
        [3, 4]
    """
    seen = set(previous or ())
    novel: list[int] = []
    for item_id in current:
        if item_id not in seen:
            novel.append(item_id)
            seen.add(item_id)
    return novel


def diff_run_states(
    previous: Mapping[int, str] | None, runs: Iterable[WorkflowRun]
) -> tuple[list[int], dict[int, str]]:
    """Detect workflow runs that are new or changed state.

    Args:
        previous: Run id -> state from the last successful fetch
        runs: Runs observed now

    Returns:
        Tuple of (run ids to notify about, next run id -> state map)
    """
    last_states = previous or {}
    changed: list[int] = []
    next_states: dict[int, str] = {}

    for run in runs:
        state = run.state
        next_states[run.id] = state
        if last_states.get(run.id) != state and run.id not in changed:
            changed.append(run.id)

    return changed, next_states


def diff_file_commits(
    previous: Mapping[str, str] | None,
    observed: Iterable[tuple[TrackedFile, str | None]],
) -> tuple[list[FileChangeMarker], dict[str, str]]:
    """Detect tracked files whose latest commit differs from the last one seen.

    Args:
        previous: ``<path>_<branch>`` -> commit sha from earlier cycles
        observed: Tracked file and its latest commit sha, or None when the
            lookup failed or the file has no history

    Returns:
        Tuple of (change markers, next key -> sha map). Files without a sha
        keep their previous entry.
    """
    next_shas: dict[str, str] = dict(previous or {})
    markers: list[FileChangeMarker] = []

    for tracked, sha in observed:
        if not sha:
            continue
        key = tracked.snapshot_key
        if next_shas.get(key) != sha:
            markers.append(FileChangeMarker(path=tracked.path, branch=tracked.branch, sha=sha))
        next_shas[key] = sha

    return markers, next_shas
