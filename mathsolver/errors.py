class NotFoundError(LookupError):
    """Unknown provider or token id."""


class InvalidRequestError(ValueError):
    """The request is well-formed but the provider is not in a usable state."""
