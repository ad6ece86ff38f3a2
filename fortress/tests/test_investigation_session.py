import anyio
import pytest

from fortress.app.collaborators.protocols import FixSuggestion
from fortress.app.schemas.pipeline import LogLevel
from fortress.app.schemas.session import ExplanationStatus
from fortress.app.session.findings import FindingStore, UnknownFindingError
from fortress.app.session.investigation import (
    PENDING_EXPLANATION,
    InvestigationManager,
)
from fortress.tests.mocks import FAST_POLICY, Gate, MockReasoner, make_finding

pytestmark = pytest.mark.anyio


def _manager(reasoner, finding_ids=("F-1", "F-2")):
    store = FindingStore()
    store.replace([make_finding(i) for i in finding_ids])
    changes = []
    logs = []
    manager = InvestigationManager(
        reasoner,
        store,
        policy=FAST_POLICY,
        on_change=lambda event_type, details: changes.append(event_type),
        log=lambda level, message: logs.append((level, message)),
    )
    return manager, changes, logs


async def test_open_stores_explanation():
    manager, _, _ = _manager(MockReasoner())

    await manager.open("F-1")

    session = manager.session
    assert session.selected_finding_id == "F-1"
    assert session.explanation == "Mock explanation for F-1"
    assert session.explanation_status == ExplanationStatus.OK
    assert session.healing is False


async def test_open_shows_pending_marker_while_explaining():
    gate = Gate()
    manager, _, _ = _manager(MockReasoner(explain_gates=[gate]))

    async with anyio.create_task_group() as tg:
        tg.start_soon(manager.open, "F-1")
        await gate.started.wait()

        assert manager.session.explanation == PENDING_EXPLANATION
        assert manager.session.explanation_status == ExplanationStatus.PENDING

        gate.open()

    assert manager.session.explanation_status == ExplanationStatus.OK


async def test_collaborator_failure_text_becomes_degraded_explanation():
    manager, _, _ = _manager(MockReasoner(explain_fails=True))

    await manager.open("F-1")

    assert manager.session.explanation_status == ExplanationStatus.DEGRADED
    assert "explainer offline" in manager.session.explanation


async def test_open_unknown_finding_raises_without_touching_state():
    manager, changes, _ = _manager(MockReasoner())
    await manager.open("F-1")
    changes.clear()

    with pytest.raises(UnknownFindingError):
        await manager.open("MISSING")

    assert manager.session.selected_finding_id == "F-1"
    assert changes == []


async def test_reopening_discards_explanation_of_previous_finding():
    first_gate = Gate()
    manager, _, _ = _manager(MockReasoner(explain_gates=[first_gate]))

    async with anyio.create_task_group() as tg:
        tg.start_soon(manager.open, "F-1")
        await first_gate.started.wait()

        await manager.open("F-2")
        first_gate.open()

    assert manager.session.selected_finding_id == "F-2"
    assert manager.session.explanation == "Mock explanation for F-2"


async def test_remediation_round_trip():
    manager, _, logs = _manager(MockReasoner())
    await manager.open("F-1")

    await manager.request_remediation()

    session = manager.session
    assert session.healing is False
    assert session.remediation.suggested_fix == "Rotate the key"
    assert session.remediation.diff == "-old\n+new\n"
    assert session.remediation.degraded is False
    assert (LogLevel.SYSTEM, "Triggering Patch Synthesis for F-1") in logs


async def test_remediation_sets_healing_while_in_flight():
    gate = Gate()
    manager, _, _ = _manager(MockReasoner(fix_gate=gate))
    await manager.open("F-1")

    async with anyio.create_task_group() as tg:
        tg.start_soon(manager.request_remediation)
        await gate.started.wait()

        assert manager.session.healing is True
        assert manager.session.remediation is None

        # A second request while healing is ignored
        await manager.request_remediation()

        gate.open()

    assert manager.session.healing is False
    assert manager.session.remediation is not None


async def test_remediation_failure_is_degraded_content():
    manager, _, _ = _manager(MockReasoner(fix_fails=True))
    await manager.open("F-1")

    await manager.request_remediation()

    assert manager.session.healing is False
    assert manager.session.remediation.degraded is True
    assert "patch engine offline" in manager.session.remediation.suggested_fix


async def test_malformed_fix_payload_is_degraded():
    manager, _, _ = _manager(MockReasoner(fix={"patch": 1}))
    await manager.open("F-1")

    await manager.request_remediation()

    assert manager.session.remediation.degraded is True


async def test_remediation_without_investigation_is_noop():
    reasoner = MockReasoner()
    manager, changes, logs = _manager(reasoner)

    await manager.request_remediation()

    assert manager.session is None
    assert reasoner.fixed == []
    assert changes == []
    assert logs == []


async def test_close_before_remediation_resolves_discards_late_result():
    """
    Open, request remediation, close before it resolves, then open a
    different finding: the late patch must not land anywhere.
    """
    fix_gate = Gate()
    reasoner = MockReasoner(fix_gate=fix_gate)
    manager, _, _ = _manager(reasoner)
    await manager.open("F-1")

    async with anyio.create_task_group() as tg:
        tg.start_soon(manager.request_remediation)
        await fix_gate.started.wait()

        manager.close()
        assert manager.session is None

        await manager.open("F-2")
        fix_gate.open()

    session = manager.session
    assert session.selected_finding_id == "F-2"
    assert session.remediation is None
    assert session.healing is False


async def test_close_discards_session_and_suggestion():
    manager, changes, _ = _manager(MockReasoner())
    await manager.open("F-1")

    manager.close()
    manager.close()

    assert manager.session is None
    assert changes.count(changes[-1]) == 1


def test_fix_suggestion_defaults_to_empty_diff():
    assert FixSuggestion(fix="x").diff == ""
