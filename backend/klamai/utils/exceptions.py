"""
Custom exception classes
"""
from fastapi import HTTPException


class CaseNotFoundError(HTTPException):
    """Raised when case doesn't exist"""
    def __init__(self, case_id: str):
        super().__init__(
            status_code=404,
            detail=f"Case {case_id} not found"
        )


class InvalidCaseTextError(HTTPException):
    """Raised when the intake text is missing or blank"""
    def __init__(self):
        super().__init__(
            status_code=400,
            detail="El texto del caso es requerido"
        )


class ProcessingQueueFullError(HTTPException):
    """Raised when the background queue cannot take another job"""
    def __init__(self):
        super().__init__(
            status_code=503,
            detail="Processing queue is full, try again later"
        )


class ProcessingQueueUnavailableError(HTTPException):
    """Raised when no workers are running to take the job"""
    def __init__(self):
        super().__init__(
            status_code=503,
            detail="Processing queue is not running"
        )


# ============================================================================
# Pipeline errors (never surfaced as HTTP responses directly)
# ============================================================================

class LlmJsonParseError(ValueError):
    """LLM output could not be parsed into the expected JSON object"""


class AssistantRunError(RuntimeError):
    """An assistant run did not reach the completed state"""


class AttachmentTransferError(RuntimeError):
    """A single attachment could not be copied between object stores"""
    def __init__(self, source_key: str, reason: str):
        super().__init__(f"Transfer of '{source_key}' failed: {reason}")
        self.source_key = source_key
        self.reason = reason


class GenerationStepError(RuntimeError):
    """A required generation branch failed; the run must be reverted"""
    def __init__(self, step: str, reason: str):
        super().__init__(f"Required step '{step}' failed: {reason}")
        self.step = step
        self.reason = reason


class StaleProcessingRunError(RuntimeError):
    """A newer processing run was dispatched for the same case"""
    def __init__(self, case_id: str, version: int):
        super().__init__(f"Processing run v{version} for case {case_id} is superseded")
        self.case_id = case_id
        self.version = version
