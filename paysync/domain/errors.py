"""Error taxonomy shared by the payment services and the HTTP layer."""


class PaysyncError(Exception):
    """Base class for every failure raised by the payment core."""


class ConfigurationError(PaysyncError, RuntimeError):
    """A required setting is missing or malformed."""


class AuthRequired(PaysyncError):
    """The operation needs an authenticated account."""


class Forbidden(PaysyncError):
    """The account is authenticated but lacks the required privilege."""


class NotFound(PaysyncError):
    """A catalog item or record does not exist."""


class NotConfigured(PaysyncError):
    """A catalog item exists but has no Stripe price reference."""


class InvalidRequest(PaysyncError):
    pass


class BadSignature(PaysyncError):
    """Webhook signature verification failed."""


class MalformedPayload(PaysyncError):
    pass


class ProcessorError(PaysyncError):
    """A call to Stripe failed."""


class StoreError(PaysyncError):
    """The persistent store rejected or failed an operation."""
