"""Approval gate between pipeline stages.

Pure decision function: maps (stage, approved, revision notes) to the
action the orchestrator should execute. No side effects.
"""

from dataclasses import dataclass
from typing import Optional

from storyflow.orchestrator.errors import UnsupportedRevision, ValidationError

# Stages whose rejection can carry notes into the next generator request
NOTES_STAGES = frozenset({"script"})
GATED_STAGES = frozenset({"script", "storyboard", "assets"})


@dataclass(frozen=True)
class GateAction:
    """Outcome of a gate decision.

    kind is "advance" or "regenerate"; notes is set only for regenerate.
    """

    kind: str
    notes: Optional[str] = None

    @property
    def advances(self) -> bool:
        return self.kind == "advance"


ADVANCE = GateAction("advance")


def regenerate(notes: str) -> GateAction:
    return GateAction("regenerate", notes)


def decide(stage: str, approved: bool, revision_notes: Optional[str] = None) -> GateAction:
    """Decide the next action for a reviewed stage.

    Args:
        stage: "script", "storyboard" or "assets"
        approved: User decision
        revision_notes: Required (non-blank) when rejecting a script

    Returns:
        ADVANCE, or regenerate(notes) for a rejected script

    Raises:
        ValidationError: Unknown stage, or script rejected without notes
        UnsupportedRevision: Rejection of a stage with no notes channel
    """
    if stage not in GATED_STAGES:
        raise ValidationError(f"Unknown review stage '{stage}'")
    if approved:
        return ADVANCE
    if stage not in NOTES_STAGES:
        raise UnsupportedRevision(
            f"Rejecting the {stage} is not supported; approve it or navigate back"
        )
    notes = (revision_notes or "").strip()
    if not notes:
        raise ValidationError("revisionNotes is required when rejecting a script")
    return regenerate(notes)
