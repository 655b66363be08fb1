import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Sequence

from _exceptions import *


class ResultCode(IntEnum):
    RestartMarkerReply = 110
    ServiceReadInXXXMinutes = 120
    DataConnectionAlreadyOpen = 125
    FileStatusOk = 150
    Ok = 200
    CommandNotImplementedSuperfluousAtThisSite = 202
    SystemStatus = 211
    DirectoryStatus = 212
    FileStatus = 213
    HelpMessage = 214
    SystemType = 215
    ServiceReadyForNewUser = 220
    ServiceClosingControlConnection = 221
    DataConnectionOpen = 225
    ClosingDataConnection = 226
    EnteringPassiveMode = 227
    UserLoggedIn = 230
    RequestedFileActionOkay = 250
    PATHNAMECreated = 257
    UserNameOkayNeedPassword = 331
    NeedAccountForLogin = 332
    RequestedFileActionPendingFurtherInformation = 350
    ServiceNotAvailable = 421
    CantOpenDataConnection = 425
    ConnectionClosed = 426
    FileBusy = 450
    LocalErrorInProcessing = 451
    InsufficientStorageSpace = 452
    UnknownCommand = 500
    InvalidParameterOrArgument = 501
    CommandNotImplemented = 502
    BadSequenceOfCommands = 503
    CommandNotImplementedForThatParameter = 504
    NotLoggedIn = 530
    NeedAccountForStoringFiles = 532
    FileNotFound = 550
    PageTypeUnknown = 551
    ExceededStorageAllocation = 552
    FileNameNotAllowed = 553


class CommandVerb(Enum):
    AUTH = b"AUTH"
    SYST = b"SYST"
    USER = b"USER"
    NOOP = b"NOOP"
    PWD = b"PWD"
    TYPE = b"TYPE"
    PASV = b"PASV"
    LIST = b"LIST"
    CWD = b"CWD"
    CDUP = b"CDUP"
    MKD = b"MKD"
    RMD = b"RMD"
    UNKNOWN = b"UNKN"


@dataclass(frozen=True)
class Command:
    """A single parsed control-connection command.

    `argument` holds the verb's payload: the user name for USER, the path for
    LIST/CWD/MKD/RMD (None when a required path was not supplied) and the raw
    verb token for UNKNOWN. Argument-less verbs always carry None."""
    verb: CommandVerb
    argument: Optional[str] = None

    def __str__(self) -> str:
        if self.argument is None:
            return self.verb.value.decode("ascii")
        return f"{self.verb.value.decode('ascii')}({self.argument!r})"


@dataclass(frozen=True)
class Reply:
    code: ResultCode
    message: str = ""

    def encode(self) -> bytes:
        return encodeReply(self.code, self.message)


def encodeReply(code: int, message: str = "") -> bytes:
    """Serializes a reply into its wire form `<code>[ <message>]\\r\\n`"""
    ## NOTE: Paths taken from the filesystem may carry undecodable bytes as surrogates
    if not message:
        return f"{int(code)}\r\n".encode("utf-8")
    return f"{int(code)} {message}\r\n".encode("utf-8", errors="surrogateescape")


@dataclass
class LineBuffer:
    """Splits the byte stream read from a control connection into delimited lines.

    Lines are queued without their delimiter and consumed with popFromQueue()."""
    MESSAGE_DELIMITERS: List[bytes] = field(default_factory=lambda: [b"\r\n"])
    _incomingData: bytearray = field(init=False, default_factory=bytearray)
    _messages: deque = field(init=False, default_factory=deque)
    _MAX_BUFFER_SIZE: int = 1024 * 8 ## 8KB for a single undelimited line

    def __post_init__(self) -> None:
        self._validateDelimiters()
        ## NOTE: Longer delimiters are tried first so b"\r\n" wins over b"\r"
        delimiters = sorted(self.MESSAGE_DELIMITERS, key=len, reverse=True)
        self.MESSAGE_DELIMITER_REGEX = re.compile(b"|".join(re.escape(delimiter) for delimiter in delimiters))

    def _validateDelimiters(self) -> None:
        """Validates that the delimiters are a list of bytestrings"""
        if not isinstance(self.MESSAGE_DELIMITERS, Sequence) or isinstance(self.MESSAGE_DELIMITERS, (bytes, str)):
            raise IncorrectDelimitersTypeError(self.MESSAGE_DELIMITERS)

        if len(self.MESSAGE_DELIMITERS) == 0:
            raise EmptyDelimitersTypeError(self.MESSAGE_DELIMITERS)

        for delimiter in self.MESSAGE_DELIMITERS:
            if not isinstance(delimiter, bytes) or len(delimiter) == 0:
                raise IncorrectDelimiterTypeError(delimiter)

        if len(set(self.MESSAGE_DELIMITERS)) != len(self.MESSAGE_DELIMITERS):
            raise DuplicateDelimitersError(self.MESSAGE_DELIMITERS)

        return None

    def __len__(self) -> int:
        return len(self._messages)

    def write(self, chunk: bytes) -> None:
        """Appends a received chunk and queues every line it completes"""
        self._incomingData += chunk
        self._executeMessageParser()

    def popFromQueue(self) -> bytes:
        """Pops the oldest complete line (without its delimiter)"""
        if len(self._messages) == 0:
            raise PopFromEmptyQueueError()
        return self._messages.popleft()

    def _executeMessageParser(self) -> None:
        leftIndex = 0
        for match in self.MESSAGE_DELIMITER_REGEX.finditer(self._incomingData):
            self._messages.append(bytes(self._incomingData[leftIndex:match.start()]))
            leftIndex = match.end()

        ## Remove data that was parsed into lines
        del self._incomingData[:leftIndex]

        ## A peer that never sends a delimiter cannot grow the buffer without bound
        if len(self._incomingData) > self._MAX_BUFFER_SIZE:
            raise BufferOverflowError(self)

        return None
