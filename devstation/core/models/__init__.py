"""
Domain models — types for the provisioning pipeline.

All models are re-exported here for convenient access:

    from devstation.core.models import Action, Receipt, Step, Stage, ExecutionMode
"""

from devstation.core.models.action import Action, FailureKind, Receipt
from devstation.core.models.step import (
    ConfirmationDecision,
    ExecutionMode,
    ProgressState,
    Stage,
    Step,
    number_stages,
)

__all__ = [
    # action.py
    "Action",
    "FailureKind",
    "Receipt",
    # step.py
    "ConfirmationDecision",
    "ExecutionMode",
    "ProgressState",
    "Stage",
    "Step",
    "number_stages",
]
