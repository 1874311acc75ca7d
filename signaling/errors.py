class SignalingError(Exception):
    """Base class for relay and peer client errors."""


class InvalidSignalError(SignalingError):
    """A frame or envelope is missing required fields or has the wrong shape."""


class SignalStoreError(SignalingError):
    """The durable signal queue could not be read or written."""


class MediaUnavailableError(SignalingError):
    """Local media capture failed. Terminal for the session."""
