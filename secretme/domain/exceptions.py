"""
Domain errors raised by the usecases and mapped to HTTP responses by the API.
"""


class SecretMeError(Exception):
    """Base class for domain errors."""


class UserNotFoundError(SecretMeError):
    """The referenced user does not exist."""


class PremiumRequiredError(SecretMeError):
    """The requested channel is only available to premium users."""


class ChannelNotConfiguredError(SecretMeError):
    """The user has no destination configured for the requested channel."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"{channel} channel is not configured")
