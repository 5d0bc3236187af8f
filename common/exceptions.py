"""Custom exception classes for ZapShare."""


class ZapShareError(Exception):
    """
    Base exception class for all ZapShare errors.

    Attributes:
        remediation: Optional hint shown to the operator alongside the message
    """

    remediation: str = ""

    def __init__(self, message: str = "", remediation: str = None):
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class InputError(ZapShareError):
    """
    Raised when the operator supplied an unusable path or argument.
    """
    pass


class SharedFileNotFoundError(InputError):
    """
    Raised when the file to share does not exist.
    """
    remediation = (
        "Check the path for special characters, make sure the file was not moved "
        "or deleted, and that you have permission to read it."
    )


class PathInvalidError(InputError):
    """
    Raised when the path to share cannot be interpreted.
    """
    pass


class DirectoryNotAllowedError(InputError):
    """
    Raised when the path to share is a directory.
    """
    remediation = "Compress the directory into a zip file first and share the archive."


class AuthenticationError(ZapShareError):
    """
    Raised when the sender rejects the supplied password.
    """
    remediation = "Ask the sender for the current password."


class TransportError(ZapShareError):
    """
    Raised when the underlying connection fails.
    """
    remediation = "Check your network connection and firewall settings."


class ServerUnreachableError(TransportError):
    """
    Raised when the receiver cannot establish a connection to the sender.
    """
    remediation = (
        "Check that the sender is still sharing, that both devices are on the same "
        "network (or the share link has not expired), and that no firewall blocks the port."
    )


class ListenerBindError(TransportError):
    """
    Raised when the sender cannot bind its listening socket.
    """
    pass


class PortExhaustedError(TransportError):
    """
    Raised when no free port could be found.
    """
    pass


class TunnelError(ZapShareError):
    """
    Base class for tunnel creation failures.
    """
    remediation = "Check your internet connection and that ssh is installed and allowed outbound."


class TunnelTimeoutError(TunnelError):
    """
    Raised when the tunnel could not be created within the allowed time.
    """
    pass


class TunnelCreationError(TunnelError):
    """
    Raised when the tunnel provider failed to create a tunnel.
    """
    pass


class ProtocolViolationError(ZapShareError):
    """
    Raised when a peer sends frames out of protocol order or with wrong sizes.
    """
    pass


class FrameDecodeError(ProtocolViolationError):
    """
    Raised when a frame cannot be decoded.
    """
    pass


class RemoteError(ZapShareError):
    """
    Raised when the sender reports an error other than a password rejection.
    """
    pass


class DestinationWriteError(ZapShareError):
    """
    Raised when a received file cannot be written to the destination directory.
    """
    remediation = "Check free disk space and write permissions of the destination directory."
