"""Exception taxonomy shared by the transport, codec, mirrors and storage."""


class ScopeError(Exception):
    """Base error for this library."""


class TransportError(ScopeError):
    """Connection refused, write failed or read timed out."""


class NotConnectedError(TransportError):
    pass


class ProtocolError(ScopeError):
    """A response did not parse as the expected type."""


class ValidationError(ScopeError):
    """A caller-supplied value is outside an enumerated domain."""


class SyncBusyError(ScopeError):
    """A pull or push is already running against the same mirror."""


class SetupFileError(ScopeError):
    pass
