"""Exception types for the hydration jobs library."""

from typing import Any, Optional

from hydration_jobs.failures import FailureCode


class HydrationError(Exception):
    """Base exception for all hydration job errors."""

    failure_code = FailureCode.UNKNOWN


class JobNotFoundError(HydrationError):
    """Raised when a job is not found."""

    def __init__(self, job_id: Any, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class JobValidationError(HydrationError):
    """Raised synchronously when a submission is invalid."""

    failure_code = FailureCode.VALIDATION_FAILED


class EntityNotFoundError(JobValidationError):
    """Raised when the target curriculum entity does not exist."""

    failure_code = FailureCode.DEPENDENCY_MISSING

    def __init__(self, entity_type: str, entity_id: str, message: str = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        if message is None:
            message = f"Entity not found: {entity_type} {entity_id}"
        super().__init__(message)


class HydrationDisabledError(HydrationError):
    """Raised when a kill switch blocks submission."""

    def __init__(self, setting_key: str):
        self.setting_key = setting_key
        super().__init__(setting_key)


class InvalidTransitionError(HydrationError):
    """Raised when a job cannot move to the requested status."""

    def __init__(self, job_id: Any, status: str, target: str):
        self.job_id = job_id
        self.status = status
        self.target = target
        super().__init__(f"Job {job_id} cannot move from {status} to {target}")


class DependencyMissingError(HydrationError):
    """Raised when content a job depends on is missing."""

    failure_code = FailureCode.DEPENDENCY_MISSING


class DispatchError(HydrationError):
    """Raised when an outbox entry could not be delivered to the queue."""

    failure_code = FailureCode.TRANSPORT_ERROR


class DispatchResolutionError(DispatchError):
    """Raised when an outbox entry can never be routed (not a transient outage)."""

    failure_code = FailureCode.DEPENDENCY_MISSING


class LegacyPayloadError(HydrationError):
    """Raised when a queue message cannot be resolved to a hydration job."""

    failure_code = FailureCode.DEPENDENCY_MISSING


class GenerationError(HydrationError):
    """Base class for generation backend failures."""

    failure_code = FailureCode.TRANSPORT_ERROR


class GenerationTimeoutError(GenerationError):
    """Raised when the generation call exceeds its timeout."""

    failure_code = FailureCode.TIMEOUT


class GenerationTransportError(GenerationError):
    """Raised when the generation backend is unreachable or errors."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ContentValidationError(HydrationError):
    """Raised when generated output fails its content contract."""

    failure_code = FailureCode.VALIDATION_FAILED

    def __init__(self, message: str, details: Optional[Any] = None):
        self.details = details
        super().__init__(message)


class ParseFailedError(ContentValidationError):
    """Generated output did not contain a parseable JSON object."""

    failure_code = FailureCode.PARSE_FAILED


class SchemaInvalidError(ContentValidationError):
    """Generated output has the wrong shape."""

    failure_code = FailureCode.SCHEMA_INVALID


class PlaceholderContentError(ContentValidationError):
    """Generated output is a placeholder or deferral instead of content."""

    failure_code = FailureCode.PLACEHOLDER_CONTENT


class SemanticWeaknessError(ContentValidationError):
    """Generated output is well-formed but too thin to be useful."""

    failure_code = FailureCode.SEMANTIC_WEAKNESS


class ContextMismatchError(ContentValidationError):
    """Generated output does not match the requested language or difficulty."""

    failure_code = FailureCode.CONTEXT_MISMATCH


class PromptInvalidError(HydrationError):
    """Raised when a prompt cannot be built, or no handler exists for a job type."""

    failure_code = FailureCode.PROMPT_INVALID
