from typing import Dict, FrozenSet, Optional, Tuple

from _ftpDS import Command, CommandVerb


_recognizedVerbs: Dict[bytes, CommandVerb] = {verb.value: verb for verb in CommandVerb if verb is not CommandVerb.UNKNOWN}

## Verbs whose argument is a path that must be supplied by the client
_requiredPathVerbs: FrozenSet[CommandVerb] = frozenset({CommandVerb.CWD, CommandVerb.MKD, CommandVerb.RMD})
_argumentVerbs: FrozenSet[CommandVerb] = _requiredPathVerbs | {CommandVerb.USER, CommandVerb.LIST}

DEFAULT_LIST_PATH = "."


def toUppercase(data: bytes) -> bytes:
    """ASCII-only upper-casing, bytes outside a-z are left untouched"""
    return bytes(byte - 32 if 0x61 <= byte <= 0x7a else byte for byte in data)


def splitCommandLine(line: bytes) -> Tuple[bytes, Optional[bytes]]:
    ## Leading spaces before the verb are skipped
    line = line.lstrip(b" ")
    verb, separator, argument = line.partition(b" ")
    if not separator:
        return verb, None
    return verb, argument


def _decodeArgument(argument: bytes) -> str:
    try:
        return argument.decode("utf-8")
    except UnicodeDecodeError:
        return ""


def parseCommand(line: bytes) -> Command:
    """Converts one control line (delimiter already stripped) into a Command.

    Parsing is total: unrecognized verbs become CommandVerb.UNKNOWN carrying the
    verb token, and an argument that is not valid UTF-8 becomes an empty string."""
    rawVerb, rawArgument = splitCommandLine(bytes(line))
    rawVerb = toUppercase(rawVerb)

    verb = _recognizedVerbs.get(rawVerb)
    if verb is None:
        return Command(CommandVerb.UNKNOWN, rawVerb.decode("utf-8", errors="replace"))

    if verb not in _argumentVerbs:
        return Command(verb)

    argument = None if rawArgument is None else _decodeArgument(rawArgument)

    if verb is CommandVerb.USER:
        return Command(verb, argument or "")
    if verb is CommandVerb.LIST:
        ## NOTE: `LIST ` (trailing space, empty argument) lists the current directory too
        return Command(verb, argument or DEFAULT_LIST_PATH)

    ## CWD, MKD and RMD keep None for a missing path, the session rejects it with a 501 reply
    return Command(verb, argument)
