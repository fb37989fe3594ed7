class SubscriptionError(Exception):
    """Base class. ``status_code`` is the HTTP status the API answers with."""

    status_code = 500


class ValidationError(SubscriptionError):
    """A precondition the caller can fix is missing (e.g. CPF not on file)."""

    status_code = 400


class ConflictError(SubscriptionError):
    status_code = 400


class NotFoundError(SubscriptionError):
    status_code = 400


class GatewayError(SubscriptionError):
    """The billing provider call failed. Local state was not touched."""

    status_code = 500


class TransientStoreError(SubscriptionError):
    status_code = 500
