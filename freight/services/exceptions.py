class ServiceError(Exception):
    """Base class for errors raised by the freight service layer."""


class AuthorizationError(ServiceError):
    """The acting user lacks the role or ownership the operation needs."""


class LoadValidationError(ServiceError):
    """Malformed or missing payload; raised before anything is written."""


class LoadNotFound(ServiceError):
    pass


class InvalidTransition(ServiceError):
    """
    The load is not in the predecessor state the transition requires.

    Also raised when a concurrent request won the conditional update.
    """

    def __init__(self, message, *, current_status=None):
        super().__init__(message)
        self.current_status = current_status


class StoreUnavailable(ServiceError):
    """The conditional update failed at the database; safe to retry."""


class PaymentError(ServiceError):
    pass


class DispatchDegraded(ServiceError):
    """
    The state change committed but some notification side effects failed.

    Returned on `TransitionResult.warning`; never raised out of a transition.
    """

    def __init__(self, report):
        super().__init__(
            "Status updated, but some notifications may not have gone out."
        )
        self.report = report
