from typing import Optional

## NOTE: Exceptions keep the offending value on self.msg for logging by the caller


## -------------- LINE BUFFER EXCEPTIONS ------------------------------

class BufferOverflowError(BufferError):
    def __init__(self, buffer: "LineBuffer"):
        self.msg = f"Line buffer overflow - {len(buffer._incomingData)} undelimited bytes (max={buffer._MAX_BUFFER_SIZE})"
        super().__init__(self.msg)


class IncorrectDelimitersTypeError(TypeError):
    def __init__(self, MESSAGE_DELIMITERS):
        self.msg = f"Incorrect type for LineBuffer().MESSAGE_DELIMITERS - {type(MESSAGE_DELIMITERS)}"
        super().__init__(self.msg)


class EmptyDelimitersTypeError(ValueError):
    def __init__(self, MESSAGE_DELIMITERS):
        self.msg = f"Cannot pass empty MESSAGE_DELIMITERS argument - {MESSAGE_DELIMITERS}"
        super().__init__(self.msg)


class IncorrectDelimiterTypeError(TypeError):
    def __init__(self, delimiter):
        self.msg = f"Incorrect type for LineBuffer().MESSAGE_DELIMITERS[i] - {type(delimiter)}"
        super().__init__(self.msg)


class DuplicateDelimitersError(ValueError):
    def __init__(self, MESSAGE_DELIMITERS):
        self.msg = f"Duplicate delimiters were detected in the argument MESSAGE_DELIMITERS - {MESSAGE_DELIMITERS}"
        super().__init__(self.msg)


class PopFromEmptyQueueError(IndexError):
    def __init__(self):
        self.msg = "Cannot pop a line from empty LineBuffer()._messages deque"
        super().__init__(self.msg)


## -------------- SANDBOX EXCEPTIONS ------------------------------

class SandboxPathError(Exception):
    def __init__(self, clientPath: str, reason: str) -> None:
        self.clientPath = clientPath
        self.msg = f"{reason} - client path: <{clientPath}>"
        super().__init__(self.msg)


class PathNotFoundError(SandboxPathError):
    def __init__(self, clientPath: str) -> None:
        super().__init__(clientPath, "Path does not exist under the server root")


class PermissionDeniedPathError(SandboxPathError):
    def __init__(self, clientPath: str, serverRoot: Optional[str] = None) -> None:
        self.serverRoot = serverRoot
        super().__init__(clientPath, "Path escapes the server root")


## -------------- DATA CHANNEL EXCEPTIONS ------------------------------

class DataChannelError(Exception):
    pass


class DataChannelSetupError(DataChannelError):
    def __init__(self, HOST: str, PORT: int, reason: object) -> None:
        self.msg = f"Could not setup passive data channel @ {HOST}:{PORT} - {reason}"
        super().__init__(self.msg)


## -------------- CONFIGURATION EXCEPTIONS ------------------------------

class InvalidServerPortError(ValueError):
    def __init__(self, name: str, PORT: object):
        self.msg = f"Invalid {name} for FTPServerConfig instance: {PORT!r}"
        super().__init__(self.msg)
