from enum import Enum


class DomainException(Exception):
    pass


class ErrorKind(str, Enum):
    INVALID_TRANSITION = "InvalidTransition"
    ENTITY_NOT_FOUND = "EntityNotFound"
    TRANSITION_IN_PROGRESS = "TransitionInProgress"
    PROPAGATION_FAILURE = "PropagationFailure"
    CONCURRENT_MODIFICATION = "ConcurrentModification"


class StatusTransitionError(DomainException):
    """Структурированная ошибка смены статуса: kind: машиночитаемый вид"""
    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EntityNotFoundError(StatusTransitionError):
    kind = ErrorKind.ENTITY_NOT_FOUND

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} не найден(а)")


class InvalidTransitionError(StatusTransitionError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, entity_type: str, entity_id: str, current, requested, valid_next):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        self.valid_next = sorted(valid_next, key=lambda s: s.value)
        super().__init__(
            f"Недопустимый переход {entity_type} {entity_id}: {current.value} → {requested.value}. "
            f"Допустимо: {', '.join(s.value for s in self.valid_next) or 'нет'}"
        )


class PropagationFailureError(StatusTransitionError):
    kind = ErrorKind.PROPAGATION_FAILURE

    def __init__(self, entity_type: str, entity_id: str, cause: Exception):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(f"Ошибка распространения статуса на {entity_type} {entity_id}: {cause}")


class ConcurrentModificationError(StatusTransitionError):
    kind = ErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} изменен(а) параллельно")


class InvalidPurchaseError(DomainException):
    pass


class DispatchStepError(DomainException):
    pass
