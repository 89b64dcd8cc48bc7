# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import InvalidWorkflowTransition


class WorkflowStage(str, Enum):
    SEARCH = "SEARCH"
    RESULTS = "RESULTS"
    SEAT_SELECTION = "SEAT_SELECTION"
    PAYMENT = "PAYMENT"
    CONFIRMATION = "CONFIRMATION"
    FAILED = "FAILED"


# Order used for progress rendering; FAILED has no position.
STAGE_ORDER = (
    WorkflowStage.SEARCH,
    WorkflowStage.RESULTS,
    WorkflowStage.SEAT_SELECTION,
    WorkflowStage.PAYMENT,
    WorkflowStage.CONFIRMATION,
)


class WorkflowTransitions:
    """
    Legal stage transitions for one booking attempt.
    Hold-dependent guards live in the workflow; this table only
    knows which edges exist at all.
    """

    _ALLOWED_TRANSITIONS: Dict[WorkflowStage, Set[WorkflowStage]] = {
        WorkflowStage.SEARCH: {
            WorkflowStage.RESULTS,
            WorkflowStage.FAILED,
        },
        WorkflowStage.RESULTS: {
            WorkflowStage.SEARCH,
            WorkflowStage.RESULTS,
            WorkflowStage.SEAT_SELECTION,
            WorkflowStage.FAILED,
        },
        WorkflowStage.SEAT_SELECTION: {
            WorkflowStage.RESULTS,
            WorkflowStage.SEAT_SELECTION,
            WorkflowStage.PAYMENT,
            WorkflowStage.FAILED,
        },
        WorkflowStage.PAYMENT: {
            WorkflowStage.SEAT_SELECTION,
            WorkflowStage.CONFIRMATION,
            WorkflowStage.FAILED,
        },
        WorkflowStage.CONFIRMATION: {
            WorkflowStage.SEARCH,
        },
        WorkflowStage.FAILED: {
            WorkflowStage.SEARCH,
        },
    }

    @classmethod
    def can_transition(
        cls,
        from_stage: WorkflowStage,
        to_stage: WorkflowStage,
    ) -> bool:
        cls._ensure_valid_stage(from_stage)
        cls._ensure_valid_stage(to_stage)

        return to_stage in cls._ALLOWED_TRANSITIONS.get(from_stage, set())

    @classmethod
    def validate_transition(
        cls,
        from_stage: WorkflowStage,
        to_stage: WorkflowStage,
        detail: str | None = None,
    ) -> None:
        """
        Raises InvalidWorkflowTransition if transition is illegal.
        """
        if not cls.can_transition(from_stage, to_stage):
            raise InvalidWorkflowTransition(
                from_stage=from_stage.value,
                to_stage=to_stage.value,
                detail=detail,
            )

    @classmethod
    def is_terminal(cls, stage: WorkflowStage) -> bool:
        """
        Terminal stages only allow a restart.
        """
        cls._ensure_valid_stage(stage)
        return cls._ALLOWED_TRANSITIONS[stage] == {WorkflowStage.SEARCH}

    @classmethod
    def get_allowed_transitions(
        cls, stage: WorkflowStage
    ) -> Set[WorkflowStage]:
        cls._ensure_valid_stage(stage)
        return set(cls._ALLOWED_TRANSITIONS.get(stage, set()))

    @staticmethod
    def progress(stage: WorkflowStage) -> int | None:
        """Zero-based position of the stage in the forward flow."""
        if stage in STAGE_ORDER:
            return STAGE_ORDER.index(stage)
        return None

    @staticmethod
    def _ensure_valid_stage(stage: WorkflowStage) -> None:
        if not isinstance(stage, WorkflowStage):
            raise TypeError(
                f"Expected WorkflowStage, got {type(stage)}"
            )
