"""Command normalisation: raw payload or topic token -> structured command."""

from __future__ import annotations

import json
import re

from tuya_mqtt.exceptions import NormalizeError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.structs import (
    Action,
    BooleanSetCommand,
    RawCommand,
    StructuredCommand,
    ToggleCommand,
)

__all__ = ["command_payload", "is_json_string", "normalize"]

logger = get_logger(__name__)

_ASCII_FOLD = str.maketrans("ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz")

# Structural JSON scan: collapse escapes, then tokens, then opening brackets;
# valid JSON leaves only brackets, separators and whitespace behind.
_JSON_ESCAPES = re.compile(r'\\["\\/bfnrtu]')
_JSON_TOKENS = re.compile(r'"[^"\\\n\r]*"|true|false|null|-?\d+(?:\.\d*)?(?:[eE][+\-]?\d+)?')
_JSON_OPENERS = re.compile(r"(?:^|:|,)(?:\s*\[)+")
_JSON_REMAINDER = re.compile(r"^[\],:{}\s]*$")


def _fold(token: str) -> str:
    return token.translate(_ASCII_FOLD)


def is_json_string(text: str) -> bool:
    """Cheap check whether ``text`` looks like a JSON value. Never raises."""
    scanned = _JSON_ESCAPES.sub("@", text)
    scanned = _JSON_TOKENS.sub("]", scanned)
    scanned = _JSON_OPENERS.sub("", scanned)
    return _JSON_REMAINDER.match(scanned) is not None


def normalize(action: Action | str, raw_token: str) -> StructuredCommand:
    """Turn a ``command`` token into a structured command.

    First match wins: ``toggle``, the literals ``1``/``0``, any JSON value,
    then ``on`` for true and anything else for false.
    """
    if action != Action.COMMAND:
        raise NormalizeError(raw_token, f"action '{action}' is not normalized")

    lp = "normalize:"
    folded = _fold(raw_token)
    if folded == "toggle":
        return ToggleCommand()
    if raw_token in ("1", "0"):
        return BooleanSetCommand(value=raw_token == "1")
    if is_json_string(raw_token):
        try:
            data = json.loads(raw_token)
        except ValueError:
            # scan is looser than the grammar, e.g. "]]" or an empty token
            logger.debug("%s token passed JSON scan but did not decode: %r", lp, raw_token)
        else:
            logger.debug("%s command is JSON", lp)
            return RawCommand(data=data)
    return BooleanSetCommand(value=folded == "on")


def command_payload(command: BooleanSetCommand | RawCommand) -> object:
    """Value passed to the device ``set`` call for a non-toggle command."""
    match command:
        case BooleanSetCommand(value=value):
            return {"set": value}
        case RawCommand(data=data):
            return data
