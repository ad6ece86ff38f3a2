import pytest

from fortress.app.pipeline.orchestrator import PipelineOrchestrator
from fortress.app.pipeline.registry import StageRegistry
from fortress.app.schemas.findings import Severity
from fortress.app.schemas.pipeline import LogLevel, StageStatus
from fortress.tests.mocks import (
    FAST_POLICY,
    ScriptedScanner,
    make_finding,
    make_target,
    scanners_for,
)

pytestmark = pytest.mark.anyio


class RecordingObserver:
    def __init__(self, stop_after: int = -1) -> None:
        self.stages = []
        self.logs = []
        self._stop_after = stop_after

    @property
    def active(self) -> bool:
        if self._stop_after < 0:
            return True
        completed = [s for s in self.stages if s.status.terminal]
        return len(completed) < self._stop_after

    def stage_changed(self, stage) -> None:
        self.stages.append(stage)

    def log(self, level, message) -> None:
        self.logs.append((level, message))


def _orchestrator(scanner, registry=None):
    registry = registry or StageRegistry.default()
    return PipelineOrchestrator(
        registry,
        scanners_for(registry.ids, scanner),
        policy=FAST_POLICY,
    )


async def test_stages_run_in_registry_order_and_findings_keep_discovery_order():
    registry = StageRegistry.default()
    scanner = ScriptedScanner(
        {
            "secret_ml": [make_finding("F-1")],
            "attack_gnn": [make_finding("F-2"), make_finding("F-3")],
        }
    )
    observer = RecordingObserver()

    result = await _orchestrator(scanner, registry).run(make_target(), observer)

    assert scanner.executed == registry.ids
    assert [f.id for f in result.findings] == ["F-1", "F-2", "F-3"]
    assert result.aborted is False
    assert all(r.status == StageStatus.COMPLETED for r in result.stage_results)


async def test_each_stage_moves_pending_running_terminal_exactly_once():
    observer = RecordingObserver()

    await _orchestrator(ScriptedScanner()).run(make_target(), observer)

    by_stage = {}
    for stage in observer.stages:
        by_stage.setdefault(stage.id, []).append(stage.status)

    assert len(by_stage) == 8
    for statuses in by_stage.values():
        assert statuses == [StageStatus.RUNNING, StageStatus.COMPLETED]


async def test_failed_stage_is_contained_and_later_stages_still_run():
    """
    Stage 3 of 8 fails: it is marked ERROR, stages 4-8 still execute and
    the batch holds findings from every other stage.
    """
    registry = StageRegistry.default()
    ids = registry.ids
    scanner = ScriptedScanner(
        {stage_id: [make_finding(f"F-{i}")] for i, stage_id in enumerate(ids, 1)},
        failing=[ids[2]],
    )
    observer = RecordingObserver()

    result = await _orchestrator(scanner, registry).run(make_target(), observer)

    assert scanner.executed == ids
    statuses = {r.stage_id: r.status for r in result.stage_results}
    assert statuses[ids[2]] == StageStatus.ERROR
    assert all(
        statuses[s] == StageStatus.COMPLETED for s in ids if s != ids[2]
    )
    assert [f.id for f in result.findings] == [
        "F-1", "F-2", "F-4", "F-5", "F-6", "F-7", "F-8"
    ]
    assert ids[2] in result.errors
    assert "engine crashed" in result.errors[ids[2]]
    assert any(
        level == LogLevel.ERROR and "failed" in message
        for level, message in observer.logs
    )


async def test_stage_without_bound_scanner_is_marked_error():
    registry = StageRegistry.default()
    scanners = scanners_for(registry.ids[1:], ScriptedScanner())
    orchestrator = PipelineOrchestrator(registry, scanners, policy=FAST_POLICY)

    result = await orchestrator.run(make_target())

    assert result.stage_results[0].status == StageStatus.ERROR
    assert result.stage_results[0].error == "no scanner bound to stage"
    assert all(
        r.status == StageStatus.COMPLETED for r in result.stage_results[1:]
    )


async def test_malformed_scanner_output_fails_only_that_stage():
    registry = StageRegistry.default()
    scanner = ScriptedScanner(
        {"sast_risk": [make_finding("F-OK")]},
        raw={"secret_ml": [{"id": "broken"}]},
    )

    result = await _orchestrator(scanner, registry).run(make_target())

    assert result.stage_results[0].status == StageStatus.ERROR
    assert result.stage_results[0].error.startswith("malformed scanner output")
    assert [f.id for f in result.findings] == ["F-OK"]


async def test_duplicates_are_not_removed_by_the_orchestrator():
    scanner = ScriptedScanner(
        {
            "secret_ml": [make_finding("DUP")],
            "sast_risk": [make_finding("DUP", severity=Severity.HIGH)],
        }
    )

    result = await _orchestrator(scanner).run(make_target())

    assert [f.id for f in result.findings] == ["DUP", "DUP"]


async def test_stale_observer_stops_launching_stages():
    scanner = ScriptedScanner()
    observer = RecordingObserver(stop_after=2)

    result = await _orchestrator(scanner).run(make_target(), observer)

    assert result.aborted is True
    assert len(scanner.executed) == 2
    assert len(result.stage_results) == 2


async def test_stage_start_is_announced_with_system_log():
    observer = RecordingObserver()

    await _orchestrator(ScriptedScanner()).run(make_target(), observer)

    system_lines = [m for level, m in observer.logs if level == LogLevel.SYSTEM]
    assert len(system_lines) == 8
    assert system_lines[0] == "Layer 1/8: Secret Prediction (XGBoost) engaged"
