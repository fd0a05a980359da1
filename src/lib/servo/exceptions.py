"""
Exceptions raised by the servo link: serial channel, sequence store and codec.
"""


class ServoLinkError(Exception):
    """Base class for all servo link errors."""

    def __init__(self, message, *args, port=None):
        super().__init__(message, *args)
        self.message = message
        self.port = port

    def __str__(self):
        base_message = super().__str__()
        if self.port:
            return f"{base_message} (port: {self.port})"
        return base_message


class DeviceUnavailableError(ServoLinkError):
    """No serial device could be found or opened at startup."""


class MalformedLineError(ServoLinkError):
    """A step or text line could not be read as three numbers."""


class StorageWriteError(ServoLinkError):
    """Writing a sequence file to disk failed. In-memory state is untouched."""

    def __init__(self, message, path=None):
        super().__init__(message)
        self.path = path


class ChannelWriteError(ServoLinkError):
    """Writing a command to the device failed (cable pulled, port closed...)."""


class ChannelReadError(ServoLinkError):
    """Reading a line from the device failed."""
