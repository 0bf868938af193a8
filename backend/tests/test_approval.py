"""Approval gate decisions."""

import pytest

from storyflow.orchestrator import approval
from storyflow.orchestrator.errors import UnsupportedRevision, ValidationError


@pytest.mark.parametrize("stage", ["script", "storyboard", "assets"])
def test_approve_advances(stage):
    action = approval.decide(stage, True)
    assert action.advances
    assert action.notes is None


def test_script_rejection_regenerates_with_notes():
    action = approval.decide("script", False, "  more suspense  ")
    assert action.kind == "regenerate"
    assert action.notes == "more suspense"
    assert not action.advances


@pytest.mark.parametrize("notes", [None, "", "   "])
def test_script_rejection_requires_notes(notes):
    with pytest.raises(ValidationError):
        approval.decide("script", False, notes)


@pytest.mark.parametrize("stage", ["storyboard", "assets"])
def test_rejection_without_revision_channel(stage):
    with pytest.raises(UnsupportedRevision):
        approval.decide(stage, False, "anything")


def test_unknown_stage():
    with pytest.raises(ValidationError):
        approval.decide("render", True)
