import os
import socket
import signal
import logging
import selectors
import threading
import ipaddress
from datetime import datetime
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Tuple

from _exceptions import *
from ftp_session import FTPSession


## -------------- CONFIGURATION START ------------------------------

@dataclass
class FTPServerConfig:
    HOST: str = "0.0.0.0"
    PORT: int = 1234
    ## NOTE: A single passive port is shared by every session, 0 allocates an ephemeral port per PASV
    PASV_HOST: str = "127.0.0.1"
    PASV_PORT: int = 43210
    PASV_ACCEPT_TIMEOUT: Optional[float] = None
    addressReuse: bool = True
    LOG_FILE: Optional[str] = None
    LOG_LEVEL: str = "DEBUG"

    def __post_init__(self) -> None:
        self._validateArgs()

    def _validateArgs(self) -> None:
        ## Raises ValueError if not valid IPv4 addresses
        ipaddress.IPv4Address(self.HOST)
        ipaddress.IPv4Address(self.PASV_HOST)

        for name in ("PORT", "PASV_PORT"):
            port = getattr(self, name)
            if not (isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535):
                raise InvalidServerPortError(name, port)

        if self.PASV_ACCEPT_TIMEOUT is not None and self.PASV_ACCEPT_TIMEOUT <= 0:
            raise ValueError(f"PASV_ACCEPT_TIMEOUT must be positive or None - {self.PASV_ACCEPT_TIMEOUT}")

        if not isinstance(logging.getLevelName(self.LOG_LEVEL.upper()), int):
            raise ValueError(f"Unknown LOG_LEVEL - {self.LOG_LEVEL}")

        return None

    @classmethod
    def fromEnvironment(cls, environ: Optional[Mapping[str, str]] = None) -> "FTPServerConfig":
        environ = os.environ if environ is None else environ
        kwargs = {}
        if environ.get("FTP_HOST"):
            kwargs["HOST"] = environ["FTP_HOST"]
        if environ.get("FTP_PORT"):
            kwargs["PORT"] = cls._parsePort("PORT", environ["FTP_PORT"])
        if environ.get("FTP_PASV_HOST"):
            kwargs["PASV_HOST"] = environ["FTP_PASV_HOST"]
        if environ.get("FTP_PASV_PORT"):
            kwargs["PASV_PORT"] = cls._parsePort("PASV_PORT", environ["FTP_PASV_PORT"])
        if environ.get("FTP_PASV_TIMEOUT"):
            kwargs["PASV_ACCEPT_TIMEOUT"] = float(environ["FTP_PASV_TIMEOUT"])
        if environ.get("FTP_LOG_FILE"):
            kwargs["LOG_FILE"] = environ["FTP_LOG_FILE"]
        if environ.get("FTP_LOG_LEVEL"):
            kwargs["LOG_LEVEL"] = environ["FTP_LOG_LEVEL"]
        return cls(**kwargs)

    @staticmethod
    def _parsePort(name: str, value: str) -> int:
        try:
            return int(value)
        except ValueError:
            raise InvalidServerPortError(name, value)


def setupLogging(config: FTPServerConfig) -> None:
    ## NOTE: This removes root Handlers - if root handlers are not empty, basicConfig won't install ours
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(filename=config.LOG_FILE, level=config.LOG_LEVEL.upper())

## -------------- CONFIGURATION END ------------------------------


@dataclass
class FTPServer:
    """Accepts control connections and runs one FTPSession per connection in its own thread"""
    config: FTPServerConfig = field(default_factory=FTPServerConfig)
    serverRoot: Callable[[], str] = field(default=os.getcwd, repr=False)
    installSignalHandlers: bool = field(default=False, repr=False)

    serverSocket: socket.socket = field(init=False, repr=False)
    selector: selectors.BaseSelector = field(init=False, repr=False, default_factory=selectors.DefaultSelector)
    sessionThreads: List[threading.Thread] = field(init=False, repr=False, default_factory=list)
    _exitFlag: bool = field(init=False, default=False)
    _terminated: threading.Event = field(init=False, default_factory=threading.Event)

    def __post_init__(self) -> None:
        try:
            self._setupServerSocket()
            if self.installSignalHandlers:
                self._setupSignalHandlers()
            self._logDebugMessage("Server", "Server-Setup", "Success")
        except Exception as e:
            self._logDebugMessage("Server", "Server-Setup", "Failure")
            raise e

    @property
    def HOST(self) -> str:
        return self.config.HOST

    @property
    def PORT(self) -> int:
        return self.config.PORT

    @property
    def address(self) -> Tuple[str, int]:
        """The bound control address (the real port when PORT is 0)"""
        return self.serverSocket.getsockname()[:2]

    def _setupSignalHandlers(self) -> None:
        try:
            signal.signal(signal.SIGBREAK, self._sigHandler)
        except AttributeError: pass ## Avoid errors caused by OS differences
        try:
            signal.signal(signal.SIGINT, self._sigHandler)
        except AttributeError: pass ## Avoid errors caused by OS differences

    def run(self) -> None:
        return self._executeEventLoop()

    def _executeEventLoop(self) -> None:
        self._logDebugMessage("Server", "Server-Running", "Success")
        try:
            while self._exitFlag is False:
                events = self.selector.select(timeout=0.1)
                for selectorKey, bitmask in events:
                    if selectorKey.data == "ServerSocket":
                        self._acceptConnection()
        finally:
            self._close()

    def _close(self) -> None:
        try:
            self.selector.unregister(self.serverSocket)
            self.selector.close()
            self.serverSocket.close()
            self._logDebugMessage("Server", "Server-Termination", "Success")
        except (KeyError, ValueError, OSError) as e:
            self._logDebugMessage("Server", "Server-Termination", f"Warning - {e}")
        finally:
            self._terminated.set()

    def _setupServerSocket(self) -> None:
        self.serverSocket = self._createServerSocket()
        self.selector.register(self.serverSocket, selectors.EVENT_READ, data="ServerSocket")
        logging.info(f"Server listening on {self.address[0]}:{self.address[1]}")

    def _createServerSocket(self) -> socket.socket:
        serverSocket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if self.config.addressReuse:
                serverSocket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            serverSocket.bind((self.HOST, self.PORT))
            serverSocket.listen()
            serverSocket.setblocking(False)
        except OSError as e:
            logging.error(f"FTP Server Socket Error: {e}")
            serverSocket.close()
            raise e

        return serverSocket

    def _acceptConnection(self) -> None:
        try:
            controlSocket, address = self.serverSocket.accept()
        except OSError as e:
            ## A failed accept never stops the loop
            logging.warning(f"{datetime.now()}\tUndefined\tUndefined\tRejected\tConnection-Rejected\t{e}")
            return None

        hostname, port = address[:2]
        controlSocket.setblocking(True)
        session = FTPSession(
            controlSocket,
            PASV_HOST=self.config.PASV_HOST,
            PASV_PORT=self.config.PASV_PORT,
            PASV_ACCEPT_TIMEOUT=self.config.PASV_ACCEPT_TIMEOUT,
            serverRoot=self.serverRoot,
        )

        ## Sessions are never joined, a stalled client must not block shutdown
        sessionThread = threading.Thread(target=session.run, daemon=True, name=f"FTPSession-{hostname}:{port}")
        self.sessionThreads = [thread for thread in self.sessionThreads if thread.is_alive()]
        self.sessionThreads.append(sessionThread)
        sessionThread.start()
        logging.info(f"{datetime.now()}\t{hostname}\t{port}\tUndefined\tConnection-Accepted\tSuccess")

    def activeSessionCount(self) -> int:
        return sum(1 for thread in self.sessionThreads if thread.is_alive())

    def _logDebugMessage(self, user: str = "Server", eventType: str = "Default", description: str = "Default") -> None:
        logging.debug(f"{datetime.now()}\t{self.HOST}\t{self.PORT}\t{user}\t{eventType}\t{description}")

    def close(self, blocking: bool = True) -> None:
        self._exitFlag = True
        if blocking:
            self._terminated.wait()

    ## Required parameters by signal handler
    def _sigHandler(self, signum, frame) -> None:
        ## The handler runs on the event loop's thread, so it cannot wait for the loop to finish
        self.close(blocking=False)


def main() -> None:
    config = FTPServerConfig.fromEnvironment()
    setupLogging(config)

    ## The server root is the working directory of the process
    serverRoot = os.environ.get("FTP_ROOT")
    if serverRoot:
        os.chdir(serverRoot)

    server = FTPServer(config, installSignalHandlers=True)
    print(f"Waiting for clients to connect on {server.address[0]}:{server.address[1]} (root={os.getcwd()})...")
    server.run()


if __name__ == "__main__":
    main()
