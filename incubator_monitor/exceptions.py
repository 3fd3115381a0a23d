"""
Incubator monitor exceptions.

Nothing below is fatal to the running monitor except ConfigurationError at
startup; everything else is caught at the component boundary and logged.
"""


class IncubatorMonitorError(Exception):
    """Base exception for the incubator monitor."""

    pass


class ConfigurationError(IncubatorMonitorError):
    """Broker configuration is missing or invalid."""

    pass


class TransportError(IncubatorMonitorError):
    """Publish/subscribe transport failure."""

    pass


class TransportConnectError(TransportError):
    """Cannot establish a session with the broker."""

    pass


class SubscriptionError(TransportError):
    """The broker refused one or more subscriptions."""

    pass


class PublishError(TransportError):
    """A message could not be handed to the transport."""

    pass


class NotConnectedError(TransportError):
    """Operation requires a connected session."""

    pass


class MalformedPayloadError(IncubatorMonitorError):
    """Transport payload is not a decimal number."""

    pass


class ValidationError(IncubatorMonitorError):
    """Settings change rejected."""

    pass


class PresentationError(IncubatorMonitorError):
    """The alert presenter failed."""

    pass


class InvariantViolation(AssertionError):
    """Internal state invariant broken (e.g. two open alarm episodes)."""

    pass
