"""
Stage Registry.

Immutable catalog of pipeline stage definitions. Registry position is
execution order.
"""

from __future__ import annotations

from typing import Iterable, Iterator, List, Tuple

from fortress.app.schemas.pipeline import Stage, StageStatus


DEFAULT_STAGE_DEFINITIONS: Tuple[Tuple[str, str], ...] = (
    ("secret_ml", "Secret Prediction (XGBoost)"),
    ("sast_risk", "Contextual SAST (Ensemble)"),
    ("attack_gnn", "Attack Path GNN"),
    ("dast_sim", "DAST Runtime Likelihood"),
    ("sec_memory", "Security Memory Graph"),
    ("verdict_ai", "Decision Intelligence"),
    ("xai_layer", "XAI Attribution (SHAP)"),
    ("self_heal", "Patch Synthesis"),
)


class StageRegistry:
    """Ordered, duplicate-free set of stage definitions."""

    def __init__(self, stages: Iterable[Stage]) -> None:
        frozen: Tuple[Stage, ...] = tuple(stages)

        if not frozen:
            raise ValueError("StageRegistry requires at least one stage")

        seen = set()
        for stage in frozen:
            if stage.id in seen:
                raise ValueError(f"Duplicate stage id in registry: {stage.id!r}")
            if stage.status != StageStatus.PENDING:
                raise ValueError(
                    f"Registry stage {stage.id!r} must start PENDING, "
                    f"got {stage.status.value}"
                )
            seen.add(stage.id)

        self._stages = frozen

    @classmethod
    def default(cls) -> "StageRegistry":
        return cls(
            Stage(id=stage_id, label=label)
            for stage_id, label in DEFAULT_STAGE_DEFINITIONS
        )

    def fresh(self) -> List[Stage]:
        """Registry defaults as a new list (all PENDING, progress 0)."""
        return list(self._stages)

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self._stages]

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)
