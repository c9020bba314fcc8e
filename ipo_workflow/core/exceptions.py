"""
Workflow-wide exception hierarchy.

Why this module exists:
  Every guard in the workflow engine (access control, state machine,
  feedback loop, section store) must fail with one of a small, closed set of
  error kinds so that any caller (HTTP adapter, CLI, tests) can react to them
  without importing service internals.

  NotFoundError / ForbiddenError / ValidationError / ConflictError abort the
  operation before anything is committed. DependencyFailure describes a
  best-effort side effect (listing creation, notification fan-out, audit
  write) that failed after the primary transition was committed; services
  never let it escape, they attach it to the result as a warning.

Usage:
    from ipo_workflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Application", resource_id=app_id)
    raise ValidationError("Rejection reason is required", details={"reason": "empty"})
"""


class NotFoundError(Exception):
    """Raised when a requested entity does not exist.

    Distinct from ForbiddenError: the core never folds "absent" and
    "not allowed" into one kind. Callers that want to hide existence may
    collapse the two at their own boundary.

    Args:
        resource: Human-readable entity name (e.g. "Application", "Feedback").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the entity exists but the actor lacks the capability.

    Maps to HTTP 403.

    Args:
        actor_id: Who attempted the action.
        capability: The capability the operation required (e.g. "submit").
        resource_id: The application the check was evaluated against.
    """

    def __init__(self, actor_id: str | None, capability: str, resource_id: str | None = None) -> None:
        self.actor_id = actor_id
        self.capability = capability
        self.resource_id = resource_id
        msg = f"Actor {actor_id or 'anonymous'} may not '{capability}'"
        if resource_id is not None:
            msg += f" on application {resource_id}"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Structured breakdown, e.g. ``{"incomplete_sections": [2, 7]}``.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised for an illegal or duplicate state transition.

    Maps to HTTP 409. Approving an already-approved application, moving a
    RESOLVED feedback item backwards, or assigning an advisor twice all end
    here.

    Args:
        resource: Entity name.
        field: The field whose current value blocks the operation.
        value: The current (conflicting) value.
        message: Optional override of the generated message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} has {field}={value!r}; operation not allowed")


class DependencyFailure(Exception):
    """A best-effort side effect failed without invalidating the transition.

    Args:
        dependency: Which collaborator failed ("listing", "notification", "audit").
        message: Human-readable summary.
        details: Structured context (recipient id, listing payload, ...).
    """

    def __init__(self, dependency: str, message: str, details: dict | None = None) -> None:
        self.dependency = dependency
        self.details = details or {}
        super().__init__(message)

    def to_warning(self) -> dict:
        return {
            "dependency": self.dependency,
            "message": str(self),
            "details": self.details,
        }
