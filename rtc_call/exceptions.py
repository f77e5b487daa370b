"""Exception types raised by rtc-call."""


class RTCCallError(Exception):
    """Base class for rtc-call errors."""

    pass


class ProtocolError(RTCCallError):
    """Raised when a signaling envelope is malformed.

    Attributes:
        payload: The offending payload, as received.
    """

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload


class SignalingError(RTCCallError):
    """Raised when the signaling link is used while closed or unreachable."""

    pass


class ConfigurationError(RTCCallError):
    """Raised when a configuration value is invalid."""

    pass
