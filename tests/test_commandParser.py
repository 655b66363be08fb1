import os
import sys
import random

import pytest

sys.path.insert(0, os.path.join("..", "src"))
sys.path.insert(0, "src")
from _ftpDS import Command, CommandVerb
from ftp_commands import parseCommand, splitCommandLine, toUppercase


class Test_CommandParser_Verbs:
    @pytest.mark.parametrize("line, verb", [
        (b"AUTH", CommandVerb.AUTH),
        (b"SYST", CommandVerb.SYST),
        (b"NOOP", CommandVerb.NOOP),
        (b"PWD", CommandVerb.PWD),
        (b"PASV", CommandVerb.PASV),
        (b"CDUP", CommandVerb.CDUP),
    ])
    def test_argumentless(self, line, verb) -> None:
        assert parseCommand(line) == Command(verb)

    def test_argumentlessIgnoresArgument(self) -> None:
        ## NOTE: TYPE negotiation is a no-op, so "TYPE I" only keeps the verb
        assert parseCommand(b"TYPE I") == Command(CommandVerb.TYPE)
        assert parseCommand(b"AUTH TLS") == Command(CommandVerb.AUTH)

    @pytest.mark.parametrize("line", [b"pwd", b"Pwd", b"pWd"])
    def test_caseInsensitive(self, line) -> None:
        assert parseCommand(line) == Command(CommandVerb.PWD)

    def test_argumentKeepsCase(self) -> None:
        assert parseCommand(b"cwd SubDir") == Command(CommandVerb.CWD, "SubDir")

    def test_leadingSpacesSkipped(self) -> None:
        assert parseCommand(b"   USER anonymous") == Command(CommandVerb.USER, "anonymous")


class Test_CommandParser_Arguments:
    def test_user(self) -> None:
        assert parseCommand(b"USER anonymous") == Command(CommandVerb.USER, "anonymous")

    def test_userMissingName(self) -> None:
        assert parseCommand(b"USER") == Command(CommandVerb.USER, "")

    def test_listDefault(self) -> None:
        assert parseCommand(b"LIST") == Command(CommandVerb.LIST, ".")

    def test_listEmptyArgument(self) -> None:
        assert parseCommand(b"LIST ") == Command(CommandVerb.LIST, ".")

    def test_listPath(self) -> None:
        assert parseCommand(b"LIST /sub") == Command(CommandVerb.LIST, "/sub")

    @pytest.mark.parametrize("verb", [CommandVerb.CWD, CommandVerb.MKD, CommandVerb.RMD])
    def test_pathCommands(self, verb) -> None:
        line = verb.value + b" a/b"
        assert parseCommand(line) == Command(verb, "a/b")

    @pytest.mark.parametrize("verb", [CommandVerb.CWD, CommandVerb.MKD, CommandVerb.RMD])
    def test_pathCommandsMissingArgument(self, verb) -> None:
        ## A missing required path must not abort parsing
        assert parseCommand(verb.value) == Command(verb, None)

    def test_argumentIsRemainderAfterFirstSpace(self) -> None:
        assert parseCommand(b"MKD my folder") == Command(CommandVerb.MKD, "my folder")

    def test_utf8Argument(self) -> None:
        assert parseCommand("MKD dossier-é".encode("utf-8")) == Command(CommandVerb.MKD, "dossier-é")

    def test_malformedUtf8Argument(self) -> None:
        assert parseCommand(b"CWD \xff\xfe") == Command(CommandVerb.CWD, "")
        assert parseCommand(b"USER \xc3") == Command(CommandVerb.USER, "")


class Test_CommandParser_Unknown:
    def test_unknownVerb(self) -> None:
        assert parseCommand(b"RETR file.txt") == Command(CommandVerb.UNKNOWN, "RETR")

    def test_unknownVerbUppercased(self) -> None:
        assert parseCommand(b"stor x") == Command(CommandVerb.UNKNOWN, "STOR")

    def test_emptyLine(self) -> None:
        assert parseCommand(b"") == Command(CommandVerb.UNKNOWN, "")

    def test_onlySpaces(self) -> None:
        assert parseCommand(b"    ") == Command(CommandVerb.UNKNOWN, "")

    def test_nonAsciiVerb(self) -> None:
        command = parseCommand(b"\xe9pwd")
        assert command.verb is CommandVerb.UNKNOWN

    def test_parsingIsTotal(self) -> None:
        rng = random.Random(5423)
        for _ in range(2000):
            length = rng.randint(0, 40)
            line = bytes(rng.choice([byte for byte in range(256) if byte not in (0x0d, 0x0a)]) for _ in range(length))
            command = parseCommand(line)
            assert isinstance(command, Command)
            assert isinstance(command.verb, CommandVerb)


class Test_CommandParser_Helpers:
    def test_toUppercase_asciiOnly(self) -> None:
        assert toUppercase(b"abcxyz") == b"ABCXYZ"
        assert toUppercase(b"\xe9a1{") == b"\xe9A1{"

    def test_splitCommandLine(self) -> None:
        assert splitCommandLine(b"CWD a b") == (b"CWD", b"a b")
        assert splitCommandLine(b"PWD") == (b"PWD", None)
        assert splitCommandLine(b"  NOOP") == (b"NOOP", None)
