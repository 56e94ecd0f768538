class FunnelError(Exception):
    code = "funnel_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationFailed(FunnelError):
    code = "validation_failed"

    def __init__(self, field_errors: dict[str, str], message: str | None = None):
        super().__init__(message or "; ".join(f"{k}: {v}" for k, v in field_errors.items()))
        self.field_errors = field_errors


class AdapterUnavailable(FunnelError):
    """The collaborator could not be reached or gave no usable answer; callers fall back locally."""
    code = "adapter_unavailable"


class AdapterFailed(FunnelError):
    """A retryable failure of an action the user asked for (payment, booking, messaging)."""
    code = "adapter_failed"


class ManualSchedulingRequired(AdapterFailed):
    code = "requires_manual_scheduling"


class ConfigurationError(FunnelError):
    code = "service_not_configured"


class NotFound(FunnelError):
    code = "not_found"


class InvalidCode(FunnelError):
    code = "invalid_code"


class CodeExpired(FunnelError):
    code = "code_expired"


class CodeMismatch(FunnelError):
    code = "code_mismatch"


class StageTransitionError(FunnelError):
    code = "invalid_stage_transition"


class ActionNotAllowed(FunnelError):
    code = "action_not_allowed"


class EvaluationClosed(ActionNotAllowed):
    """The evaluation is completed or cancelled (e.g. refunded) and takes no further actions."""
    code = "evaluation_closed"
