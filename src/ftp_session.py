import os
import shutil
import socket
import logging
import ipaddress
from datetime import datetime
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional, Tuple

from _ftpDS import Command, CommandVerb, LineBuffer, Reply, ResultCode
from _exceptions import *
from ftp_commands import parseCommand
from ftp_listing import formatListing
from ftp_paths import canonicalRoot, resolveParentPath, resolvePath, toSessionPath


def encodePassiveAddress(HOST: str, PORT: int) -> str:
    """PASV payload: the address octets joined by commas, then `, <high byte>, <low byte>`"""
    octets = ",".join(str(octet) for octet in ipaddress.IPv4Address(HOST).packed)
    return f"{octets}, {PORT >> 8}, {PORT & 0xff}"


@dataclass
class PassiveListener:
    """Listening socket of one passive transfer, it accepts exactly one peer and is then discarded"""
    HOST: str
    PORT: int
    acceptTimeout: Optional[float] = None
    listenerSocket: Optional[socket.socket] = field(init=False, default=None, repr=False)

    def bind(self) -> Tuple[str, int]:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            ## NOTE: The passive port is reused for every transfer, so TIME_WAIT must not block the next bind
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((self.HOST, self.PORT))
            s.listen(1)
        except OSError as e:
            s.close()
            raise DataChannelSetupError(self.HOST, self.PORT, e)

        self.listenerSocket = s
        return s.getsockname()[:2]

    def acceptPeer(self) -> socket.socket:
        ## NOTE: Without an acceptTimeout a silent client stalls its session here indefinitely
        try:
            self.listenerSocket.settimeout(self.acceptTimeout)
            dataSocket, _ = self.listenerSocket.accept()
        except OSError as e:
            raise DataChannelSetupError(self.HOST, self.PORT, e)
        finally:
            self.close()

        dataSocket.settimeout(None)
        return dataSocket

    def close(self) -> None:
        if self.listenerSocket is not None:
            self.listenerSocket.close()
            self.listenerSocket = None


@dataclass
class FTPSession:
    """State and command loop of a single control connection.

    A session is confined to the thread running it, it owns its control socket
    and at most one data channel (opened by PASV, consumed by the next LIST)."""
    controlSocket: socket.socket
    PASV_HOST: str = "127.0.0.1"
    PASV_PORT: int = 43210
    PASV_ACCEPT_TIMEOUT: Optional[float] = None
    serverRoot: Callable[[], str] = field(default=os.getcwd, repr=False)
    CHUNK_SIZE: int = field(default=1024, repr=False)

    currentDirectory: PurePosixPath = field(init=False, default=PurePosixPath("/"))
    userName: Optional[str] = field(init=False, default=None)
    dataChannel: Optional[socket.socket] = field(init=False, default=None, repr=False)
    _lineBuffer: LineBuffer = field(init=False, default_factory=LineBuffer, repr=False)

    _handlers = {
        CommandVerb.AUTH: "_handleAUTH",
        CommandVerb.SYST: "_handleSYST",
        CommandVerb.USER: "_handleUSER",
        CommandVerb.NOOP: "_handleNOOP",
        CommandVerb.PWD: "_handlePWD",
        CommandVerb.TYPE: "_handleTYPE",
        CommandVerb.PASV: "_handlePASV",
        CommandVerb.LIST: "_handleLIST",
        CommandVerb.CWD: "_handleCWD",
        CommandVerb.CDUP: "_handleCDUP",
        CommandVerb.MKD: "_handleMKD",
        CommandVerb.RMD: "_handleRMD",
        CommandVerb.UNKNOWN: "_handleUNKNOWN",
    }

    def __post_init__(self) -> None:
        peer = self._getPeerName()
        self.HOST, self.PORT = peer

    ## -------------- SESSION LOOP START ------------------------------

    def run(self) -> None:
        self._logSessionEvent("Session-Start", "Success")
        try:
            self.sendReply(ResultCode.ServiceReadyForNewUser, "Welcome to this FTP server!")
            while True:
                line = self.readCommandLine()
                if line is None:
                    break
                self.handleCommand(parseCommand(line))
        except (OSError, BufferOverflowError) as e:
            ## Transport errors only end this session
            logging.error(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tTransport-Error\t{e}")
            self._logSessionEvent("Session-End", "Failure")
        else:
            self._logSessionEvent("Session-End", "Success")
        finally:
            self.close()

    def readCommandLine(self) -> Optional[bytes]:
        """Blocks until a complete line is available, returns None on EOF"""
        while len(self._lineBuffer) == 0:
            chunk = self.controlSocket.recv(self.CHUNK_SIZE)
            if not chunk:
                return None
            self._lineBuffer.write(chunk)
        return self._lineBuffer.popFromQueue()

    def sendReply(self, code: ResultCode, message: str = "") -> None:
        reply = Reply(code, message).encode()
        logging.debug(f"<==== {reply!r}")
        self.controlSocket.sendall(reply)

    def handleCommand(self, command: Command) -> None:
        logging.debug(f"====> {command}")
        handler = getattr(self, self._handlers[command.verb])
        handler(command)

    def close(self) -> None:
        self._closeDataChannel()
        self.controlSocket.close()

    ## -------------- SESSION LOOP END ------------------------------


    ## -------------- COMMAND HANDLERS START ------------------------------

    def _handleAUTH(self, command: Command) -> None:
        self.sendReply(ResultCode.CommandNotImplemented, "Not implemented")

    def _handleSYST(self, command: Command) -> None:
        self.sendReply(ResultCode.Ok, "I won't tell")

    def _handleUSER(self, command: Command) -> None:
        ## Any non-empty user name is accepted, no credentials are checked
        if not command.argument:
            return self.sendReply(ResultCode.InvalidParameterOrArgument, "Invalid username")

        self.userName = command.argument
        self._logSessionEvent("User-Login", "Success")
        self.sendReply(ResultCode.UserLoggedIn, f"Welcome {self.userName}!")

    def _handleNOOP(self, command: Command) -> None:
        self.sendReply(ResultCode.Ok, "Doing nothing...")

    def _handlePWD(self, command: Command) -> None:
        currentDirectory = str(self.currentDirectory)
        if not currentDirectory:
            return self.sendReply(ResultCode.FileNotFound, "No such file or directory")
        self.sendReply(ResultCode.PATHNAMECreated, f'"{currentDirectory}" ')

    def _handleTYPE(self, command: Command) -> None:
        self.sendReply(ResultCode.Ok, "Transfer type changed successfully")

    def _handlePASV(self, command: Command) -> None:
        if self.dataChannel is not None:
            return self.sendReply(ResultCode.DataConnectionAlreadyOpen, "Already listen...")

        listener = PassiveListener(self.PASV_HOST, self.PASV_PORT, self.PASV_ACCEPT_TIMEOUT)
        try:
            _, port = listener.bind()
            self.sendReply(ResultCode.EnteringPassiveMode, encodePassiveAddress(self._advertisedHost(), port))
            ## The control connection blocks here until the client connects
            self.dataChannel = listener.acceptPeer()
        except DataChannelSetupError as e:
            logging.warning(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tPASV\t{e.msg}")
            return self.sendReply(ResultCode.ServiceNotAvailable, "issues happen...")
        finally:
            listener.close()

        self._logSessionEvent("Data-Channel-Open", "Success")

    def _handleLIST(self, command: Command) -> None:
        if self.dataChannel is None:
            return self.sendReply(ResultCode.ConnectionClosed, "No opened data connection")

        ## The channel serves exactly one transfer, whatever its outcome
        dataChannel, self.dataChannel = self.dataChannel, None
        try:
            try:
                realPath = resolvePath(self.currentDirectory / command.argument, self.serverRoot())
                listing = formatListing(realPath)
            except (SandboxPathError, OSError) as e:
                logging.info(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tLIST\t{e}")
                return self.sendReply(ResultCode.FileNotFound, "No such file or directory")

            self.sendReply(ResultCode.DataConnectionAlreadyOpen, "Starting to list directory...")
            dataChannel.sendall(listing.encode("utf-8", errors="surrogateescape"))
        finally:
            dataChannel.close()

        self.sendReply(ResultCode.ClosingDataConnection, "Transfer done")

    def _handleCWD(self, command: Command) -> None:
        if not command.argument:
            return self._replyMissingArgument()

        serverRoot = self.serverRoot()
        try:
            realPath = resolvePath(self.currentDirectory / command.argument, serverRoot)
            if not os.path.isdir(realPath):
                raise PathNotFoundError(command.argument)
            self.currentDirectory = toSessionPath(realPath, serverRoot)
        except SandboxPathError as e:
            logging.info(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tCWD\t{e.msg}")
            return self.sendReply(ResultCode.FileNotFound, "No such file or directory")

        logging.debug(f"current cwd: {self.currentDirectory}")
        self.sendReply(ResultCode.Ok, f'Directory changed to "{command.argument}"')

    def _handleCDUP(self, command: Command) -> None:
        ## The parent of "/" is "/"
        self.currentDirectory = self.currentDirectory.parent
        self.sendReply(ResultCode.Ok, "Done")

    def _handleMKD(self, command: Command) -> None:
        if not command.argument:
            return self._replyMissingArgument()

        try:
            target = resolveParentPath(self.currentDirectory / command.argument, self.serverRoot())
            os.mkdir(target)
        except (SandboxPathError, OSError) as e:
            logging.info(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tMKD\t{e}")
            return self.sendReply(ResultCode.FileNotFound, "Couldn't create folder")

        self.sendReply(ResultCode.PATHNAMECreated, "Folder successfully created!")

    def _handleRMD(self, command: Command) -> None:
        if not command.argument:
            return self._replyMissingArgument()

        serverRoot = self.serverRoot()
        try:
            target = resolvePath(self.currentDirectory / command.argument, serverRoot)
            if Path(target) == canonicalRoot(serverRoot):
                raise PermissionDeniedPathError(command.argument, serverRoot)
            shutil.rmtree(target)
        except (SandboxPathError, OSError) as e:
            logging.info(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\tRMD\t{e}")
            return self.sendReply(ResultCode.FileNotFound, "Couldn't remove folder!")

        self._ensureCurrentDirectory(serverRoot)
        self.sendReply(ResultCode.RequestedFileActionOkay, "Folder successfully removed!")

    def _handleUNKNOWN(self, command: Command) -> None:
        self.sendReply(ResultCode.CommandNotImplemented, "Not implemented")

    def _replyMissingArgument(self) -> None:
        self.sendReply(ResultCode.InvalidParameterOrArgument, "Missing argument")

    ## -------------- COMMAND HANDLERS END ------------------------------


    def _ensureCurrentDirectory(self, serverRoot: str) -> None:
        ## Removing an ancestor of the current directory moves the session up to the closest directory left
        while self.currentDirectory != self.currentDirectory.parent:
            try:
                resolvePath(self.currentDirectory, serverRoot)
                return None
            except SandboxPathError:
                self.currentDirectory = self.currentDirectory.parent
        return None

    def _advertisedHost(self) -> str:
        ## A wildcard passive host is replaced by the address the client reached us on
        if ipaddress.IPv4Address(self.PASV_HOST).is_unspecified:
            try:
                localAddress = self.controlSocket.getsockname()
                if self.controlSocket.family == socket.AF_INET:
                    return localAddress[0]
            except OSError:
                pass
            return "127.0.0.1"
        return self.PASV_HOST

    def _closeDataChannel(self) -> None:
        if self.dataChannel is not None:
            self.dataChannel.close()
            self.dataChannel = None

    def _getPeerName(self) -> Tuple[str, int]:
        try:
            peer = self.controlSocket.getpeername()
        except OSError:
            return "Undefined", 0
        ## NOTE: AF_UNIX peers (e.g. socket.socketpair()) have no (host, port) pair
        if isinstance(peer, tuple):
            return peer[0], peer[1]
        return str(peer) or "Local", 0

    def _logSessionEvent(self, eventType: str, description: str) -> None:
        logging.info(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{self.userName}\t{eventType}\t{description}")
