from uuid import UUID


class FormFlowServiceException(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DAOException(FormFlowServiceException): ...


class ValidationException(FormFlowServiceException):
    status_code = 400

    def __init__(self, message: str = "Validation Error"):
        super().__init__(message)


class NotFoundException(FormFlowServiceException):
    status_code = 404

    def __init__(self, message: str = "Not Found"):
        super().__init__(message)


class ConflictException(FormFlowServiceException):
    status_code = 409

    def __init__(
        self,
        message: str = "Conflict",
        current_state: str | None = None,
        action: str | None = None,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.action = action


class InvalidTransitionException(ConflictException):
    def __init__(self, action: str, current_state: str, reason: str | None = None):
        message = f"invalid transition: action '{action}' not allowed from state '{current_state}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, current_state=current_state, action=action)


class CommentRequiredException(ConflictException):
    def __init__(self, action: str, current_state: str):
        super().__init__(
            f"comment is required for action '{action}' from state '{current_state}'",
            current_state=current_state,
            action=action,
        )


class PermissionDeniedException(ConflictException):
    def __init__(self, action: str, current_state: str, permission: str):
        super().__init__(
            f"insufficient permissions: action '{action}' requires '{permission}'",
            current_state=current_state,
            action=action,
        )
        self.permission = permission


class ConcurrentModificationException(ConflictException):
    def __init__(
        self,
        record_id: UUID,
        expected_state: str,
        action: str | None = None,
    ):
        super().__init__(
            f"record `{record_id}` is no longer in state '{expected_state}'",
            current_state=expected_state,
            action=action,
        )
        self.record_id = record_id


class RecordNotEditableException(ConflictException):
    def __init__(self, record_id: UUID, current_state: str):
        super().__init__(
            f"cannot update record `{record_id}` in state '{current_state}' - only draft records can be edited",
            current_state=current_state,
        )
        self.record_id = record_id


class StorageException(FormFlowServiceException):
    def __init__(self, operation: str, cause: Exception | None = None):
        message = f"failed to {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
