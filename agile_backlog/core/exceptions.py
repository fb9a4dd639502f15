"""
Engine-wide exception hierarchy.

Every service raises one of these types; adapters (tool dispatch, HTTP)
map them to responses once. Each class carries a machine-readable
``code``. Three codes must reach callers verbatim:

    PROJECT_NOT_REGISTERED, PROJECT_ACCESS_DENIED, CIRCULAR_DEPENDENCY

Conflict detection is deliberately absent here: a concurrent-edit
conflict is a warning flag returned next to a successful write.

Usage:
    from agile_backlog.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Story", resource_id=42)
    raise ValidationError("Title is required", details={"title": "empty"})
"""


class ErrorCode:
    """Machine-readable error code constants."""

    PROJECT_NOT_REGISTERED = "PROJECT_NOT_REGISTERED"
    PROJECT_ACCESS_DENIED = "PROJECT_ACCESS_DENIED"
    NOT_FOUND = "NOT_FOUND"
    REFERENTIAL_INTEGRITY = "REFERENTIAL_INTEGRITY"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION = "VALIDATION"
    DUPLICATE = "DUPLICATE"


class NotFoundError(Exception):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Story", "Sprint").
        resource_id: The id that was looked up.
    """

    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    code = ErrorCode.VALIDATION

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write would duplicate a unique key.

    Args:
        resource: Entity name.
        field: The unique field (or field tuple) that would be duplicated.
        value: The conflicting value.
    """

    code = ErrorCode.DUPLICATE

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ReferentialIntegrityError(Exception):
    """Raised when a write names a foreign key that does not resolve.

    Covers both a missing parent row and a parent that lives in a
    different project than the child being written.
    """

    code = ErrorCode.REFERENTIAL_INTEGRITY

    def __init__(self, resource: str, field: str, value=None, reason: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource}.{field}={value!r} does not reference an existing record"
        if reason:
            msg = f"{resource}.{field}={value!r}: {reason}"
        super().__init__(msg)


class ProjectContextError(Exception):
    """Base for isolation failures raised by the access guard."""

    code = ErrorCode.PROJECT_ACCESS_DENIED

    def __init__(self, message: str, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message)


class ProjectNotRegisteredError(ProjectContextError):
    """No project is registered under the supplied identifier."""

    code = ErrorCode.PROJECT_NOT_REGISTERED

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(
            f"No project registered with identifier: {identifier}. "
            "Please register this project first using register_project."
        )


class ProjectAccessDeniedError(ProjectContextError):
    """The referenced entity belongs to a different project."""

    code = ErrorCode.PROJECT_ACCESS_DENIED

    def __init__(self, entity_type: str, entity_id, project_name: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Access denied: {entity_type} #{entity_id} belongs to a different project. "
            f"You can only access items from your current project ({project_name})."
        )


class CircularDependencyError(Exception):
    """Inserting the edge would close a loop in the dependency graph."""

    code = ErrorCode.CIRCULAR_DEPENDENCY
    MESSAGE = "Cannot create dependency: would create a circular dependency"

    def __init__(self, source=None, target=None) -> None:
        self.source = source
        self.target = target
        super().__init__(self.MESSAGE)


class InvalidTransitionError(Exception):
    """Raised for an illegal status change.

    Args:
        resource: Entity name ("Sprint", "Story", ...).
        old_status: Current status.
        new_status: Requested status, or an operation name such as "delete".
        message: Optional override for the default wording.
    """

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, resource: str, old_status: str, new_status: str, message: str | None = None) -> None:
        self.resource = resource
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(message or f"Invalid {resource} transition: {old_status} → {new_status}")
