# dreamlib/errors.py
from __future__ import annotations

from typing import List, Optional

from models import CheckpointResult, IntegrityReport, ValidationRecommendation


class PipelineError(Exception):
    """
    A fatal submission failure. `user_message` is what the submitter sees;
    the exception text is for logs.
    """

    def __init__(
        self,
        stage: str,
        code: str,
        user_message: str,
        *,
        technical_message: str = "",
        recommendations: Optional[List[ValidationRecommendation]] = None,
    ):
        self.stage = stage
        self.code = code
        self.user_message = user_message
        self.recommendations = list(recommendations or [])
        super().__init__(technical_message or user_message)


class GateRejected(PipelineError):
    def __init__(self, checkpoint: CheckpointResult, code: str = "GATE_REJECTED"):
        self.checkpoint = checkpoint
        super().__init__(
            checkpoint.id,
            code,
            checkpoint.message,
            recommendations=checkpoint.recommendations,
        )


class InterpretationError(PipelineError):
    def __init__(self, technical_message: str):
        super().__init__(
            "interpretation",
            "INTERPRETATION_FAILED",
            "We couldn't interpret your dream right now. Please try again in a moment.",
            technical_message=technical_message,
        )


class IntegrityError(PipelineError):
    def __init__(self, report: IntegrityReport):
        self.report = report
        details = list(report.missing_fields) + [f"{k} ({v})" for k, v in report.invalid_fields.items()]
        super().__init__(
            "integrity",
            "INTEGRITY_FAILED",
            "Your dream could not be saved because some required information is missing or invalid.",
            technical_message="integrity check failed: " + ", ".join(details),
        )


class PersistenceError(PipelineError):
    def __init__(self, technical_message: str):
        super().__init__(
            "persistence",
            "PERSISTENCE_FAILED",
            "Failed to save your dream. Please try again.",
            technical_message=technical_message,
        )
