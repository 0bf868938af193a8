"""State machine constants and transition logic for the stage orchestrator.

Defines the 14 project states, the directed graph of allowed transitions,
which commands may run from which states, and back-navigation targets.
Every status write in the orchestrator goes through ensure_transition().
"""

from typing import Dict, FrozenSet, Optional

from storyflow.orchestrator.errors import InvalidTransition

# Project states in pipeline order
PROJECT_STATES = {
    "draft": "Project created, nothing generated yet",
    "analyzing": "Story analysis in flight",
    "analyzed": "Story analysis available",
    "script_review": "Script generated, awaiting decision",
    "script_approved": "Script approved, storyboard pending",
    "storyboard_review": "Storyboard generated, awaiting decision",
    "storyboard_approved": "Storyboard approved, assets pending",
    "generating_assets": "Scene assets in flight",
    "assets_review": "Assets generated, awaiting decision",
    "assets_approved": "Assets approved, render pending",
    "generating_audio": "Narration synthesis in flight",
    "rendering": "Video assembly in flight",
    "ready": "Final video available",
    "failed": "Last generator call failed",
}

STATUS_ORDER = [s for s in PROJECT_STATES if s != "failed"]

# Review states a client may navigate back to, with the artifact each needs
BACK_TARGETS = {
    "script_review": "script",
    "storyboard_review": "storyboard",
    "assets_review": "assets",
}

# States where a generator call can be in flight or start
FAILABLE_STATES = frozenset({
    "analyzing",
    "analyzed",
    "script_review",
    "script_approved",
    "generating_assets",
    "assets_review",
    "generating_audio",
    "rendering",
})

_FORWARD = {
    "draft": {"analyzing"},
    "analyzing": {"analyzed"},
    "analyzed": {"analyzing", "script_review"},
    "script_review": {"analyzing", "script_approved"},
    "script_approved": {"storyboard_review"},
    "storyboard_review": {"storyboard_approved"},
    "storyboard_approved": {"generating_assets"},
    "generating_assets": {"assets_review"},
    "assets_review": {"assets_approved"},
    "assets_approved": {"generating_audio"},
    "generating_audio": {"rendering"},
    "rendering": {"ready"},
    "ready": set(),
    "failed": {
        "analyzing",
        "script_review",
        "storyboard_review",
        "generating_assets",
        "assets_review",
        "generating_audio",
    },
}


def _build_transitions() -> Dict[str, FrozenSet[str]]:
    graph = {state: set(targets) for state, targets in _FORWARD.items()}
    for state in FAILABLE_STATES:
        graph[state].add("failed")
    for target in BACK_TARGETS:
        for state in STATUS_ORDER[STATUS_ORDER.index(target) + 1:]:
            graph[state].add(target)
        graph["failed"].add(target)
    return {state: frozenset(targets) for state, targets in graph.items()}


TRANSITIONS = _build_transitions()

# Statuses each command may be issued from (before failed_from resolution)
COMMAND_SOURCES = {
    "analyze": frozenset({"draft", "analyzed", "script_review"}),
    "script": frozenset({"analyzed", "script_review"}),
    "decide_script": frozenset({"script_review"}),
    "edit_script": frozenset({"script_review"}),
    "storyboard": frozenset({"script_approved"}),
    "decide_storyboard": frozenset({"storyboard_review"}),
    "edit_storyboard": frozenset({"storyboard_review"}),
    "assets": frozenset({"storyboard_approved"}),
    "decide_assets": frozenset({"assets_review"}),
    "regenerate_asset": frozenset({"assets_review"}),
    "render": frozenset({"assets_approved"}),
}


def can_transition(src: str, dst: str) -> bool:
    """Check whether the graph has an edge src -> dst.

    A write that leaves the status unchanged is always allowed.
    """
    if src == dst:
        return src in PROJECT_STATES
    return dst in TRANSITIONS.get(src, frozenset())


def ensure_transition(src: str, dst: str) -> None:
    """Raise InvalidTransition unless src -> dst is an edge of the graph."""
    if not can_transition(src, dst):
        raise InvalidTransition(
            f"Illegal status transition '{src}' -> '{dst}'", status=src
        )


def effective_status(status: str, failed_from: Optional[str]) -> str:
    """Status used to validate a command.

    A failed project is validated as if it were still in the status the
    failing command started from, so the client can retry that command.
    """
    if status == "failed" and failed_from:
        return failed_from
    return status


def ensure_command_allowed(command: str, status: str, failed_from: Optional[str] = None) -> str:
    """Validate a command against the project status.

    Args:
        command: Key of COMMAND_SOURCES
        status: Current project status
        failed_from: Status the last failing command started from

    Returns:
        The effective status the command runs from

    Raises:
        InvalidTransition: If the command is not permitted
    """
    current = effective_status(status, failed_from)
    if current not in COMMAND_SOURCES[command]:
        allowed = ", ".join(sorted(COMMAND_SOURCES[command]))
        raise InvalidTransition(
            f"Cannot run '{command}' while status is '{status}' (allowed: {allowed})",
            status=status,
        )
    return current


def is_later_than(status: str, target: str) -> bool:
    """True if status comes after target on the forward path."""
    if status not in STATUS_ORDER or target not in STATUS_ORDER:
        return False
    return STATUS_ORDER.index(status) > STATUS_ORDER.index(target)


# Statuses held only while a generator call is running
IN_FLIGHT_STATES = frozenset({"analyzing", "generating_assets", "generating_audio", "rendering"})


def get_resume_status(status: str, completed_steps: Dict[str, bool]) -> str:
    """Determine the status an interrupted in-flight command is retried from.

    Used when a project is found in an in-flight status with no call
    running (cancelled command, crashed process). The result becomes the
    project's failed_from.

    Args:
        status: In-flight status the project was left in
        completed_steps: Dict with keys:
            - has_analysis: a story analysis is stored

    Returns:
        Status the failed project is validated against

    Examples:
        >>> get_resume_status("analyzing", {"has_analysis": False})
        'draft'
        >>> get_resume_status("rendering", {"has_analysis": True})
        'assets_approved'
    """
    if status == "analyzing":
        return "analyzed" if completed_steps.get("has_analysis", False) else "draft"
    if status == "generating_assets":
        return "storyboard_approved"
    if status in ("generating_audio", "rendering"):
        return "assets_approved"
    raise ValueError(f"'{status}' is not an in-flight status")
