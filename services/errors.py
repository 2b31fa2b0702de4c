"""Exception types for the billing layer."""


class BillingError(Exception):
    """Base billing exception."""


class ProviderUnavailable(BillingError):
    """Billing provider could not be reached or did not answer usefully."""


class MalformedPayload(BillingError):
    """Webhook body could not be parsed into an event."""


class StoreFailure(BillingError):
    """Subscription persistence failed."""


class UserNotFound(BillingError):
    """No local account exists for the given email."""


class InvalidSignature(BillingError):
    """Webhook signature is missing or does not match the shared secret."""
