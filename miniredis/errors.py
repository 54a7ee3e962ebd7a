"""
Error types shared by the codec, the store and the command handlers.

ProtocolError means the byte stream cannot be trusted any more and the
connection has to go. CommandError and its subclasses are ordinary replies:
they are rendered as ``-ERR <message>`` and the connection stays open.
"""


class ProtocolError(Exception):
    """Malformed RESP framing."""


class IncompleteFrameError(ProtocolError):
    """The buffer ended before the current frame was complete."""


class CommandError(Exception):
    """An error reported back to the client as an error reply."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_reply(self) -> str:
        return f"-ERR {self.message}"


class WrongArityError(CommandError):
    def __init__(self, command: str):
        super().__init__(f"wrong number of arguments for '{command.lower()}' command")


class WrongTypeError(CommandError):
    def __init__(self):
        super().__init__("Operation against a key holding the wrong kind of value")


class NotAnIntegerError(CommandError):
    def __init__(self):
        super().__init__("value is not an integer or out of range")


class InvalidExpireError(CommandError):
    def __init__(self, command: str = "set"):
        super().__init__(f"invalid expire time in '{command.lower()}' command")


class CommandSyntaxError(CommandError):
    def __init__(self):
        super().__init__("syntax error")


class InvalidTimeoutError(CommandError):
    pass
