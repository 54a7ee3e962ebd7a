"""
Command Dispatcher Module

Routes decoded requests to handlers that operate on the shared KVStore and
BlockingCoordinator.

Commands:
    PING [message]                  -> +PONG | message
    ECHO <message>                  -> message
    SET <key> <value> [EX s|PX ms]  -> +OK
    GET <key>                       -> value | null
    INCR <key>                      -> new integer
    RPUSH <key> <value> [...]       -> new length
    LPUSH <key> <value> [...]       -> new length
    LRANGE <key> <start> <end>      -> array of values
    LLEN <key>                      -> length
    LPOP <key> [count]              -> value | array | null
    BLPOP <key> <timeout>           -> [key, value] | null (possibly deferred)

Handlers raise CommandError for arity, type and argument problems; the
dispatcher turns those into "-ERR <message>" replies and the store is left
untouched by the failed command.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .cache.blocking import BlockingCoordinator, Deliver
from .cache.store import ExpiryMode, KVStore, parse_int
from .errors import (
    CommandError,
    CommandSyntaxError,
    InvalidTimeoutError,
    NotAnIntegerError,
    WrongArityError,
)
from .protocol.commands import CommandType, Deferred

logger = logging.getLogger(__name__)

Handler = Callable[[List[bytes], Optional[Deliver]], Any]

OK = "+OK"
PONG = "+PONG"


def _check_arity(command: CommandType, args: List[bytes], minimum: int, maximum: Optional[int] = None) -> None:
    """Validate argument count; args excludes the command name."""
    if len(args) < minimum or (maximum is not None and len(args) > maximum):
        raise WrongArityError(command.value)


def _parse_timeout(raw: bytes) -> float:
    try:
        timeout = float(raw)
    except ValueError:
        raise InvalidTimeoutError("timeout is not a float or out of range") from None
    if timeout != timeout or timeout in (float("inf"), float("-inf")):
        raise InvalidTimeoutError("timeout is not a float or out of range")
    if timeout < 0:
        raise InvalidTimeoutError("timeout is negative")
    return timeout


class CommandDispatcher:
    """
    Stateless routing table from command name to handler.

    The table is built once per dispatcher; every handler runs to
    completion without awaiting, so a command never observes a partial
    effect of another.

    Usage:
        dispatcher = CommandDispatcher(store, coordinator)
        reply = dispatcher.dispatch([b"SET", b"k", b"v"])   # "+OK"

    Attributes:
        store: Shared KVStore
        coordinator: Shared BlockingCoordinator
    """

    def __init__(self, store: KVStore, coordinator: BlockingCoordinator):
        self.store = store
        self.coordinator = coordinator
        self._handlers: Dict[CommandType, Handler] = {
            CommandType.PING: self._ping,
            CommandType.ECHO: self._echo,
            CommandType.SET: self._set,
            CommandType.GET: self._get,
            CommandType.INCR: self._incr,
            CommandType.RPUSH: self._rpush,
            CommandType.LPUSH: self._lpush,
            CommandType.LRANGE: self._lrange,
            CommandType.LLEN: self._llen,
            CommandType.LPOP: self._lpop,
            CommandType.BLPOP: self._blpop,
        }

    def dispatch(self, request: List[bytes], deliver: Optional[Deliver] = None) -> Any:
        """
        Execute one request.

        Args:
            request: Command name followed by its arguments
            deliver: Callback for replies produced after this call returns
                (needed by BLPOP when it has to wait)

        Returns:
            The reply value for the codec, or a Deferred when the reply
            will be sent through deliver later.
        """
        if not request:
            return "-ERR empty command"

        command = CommandType.from_name(request[0])
        if command is None:
            name = request[0].decode("utf-8", errors="replace")
            return f"-ERR unknown command '{name}'"

        try:
            return self._handlers[command](request[1:], deliver)
        except CommandError as exc:
            logger.debug(f"{command.value} failed: {exc.message}")
            return exc.to_reply()

    # ------------------------------------------------------------------
    # Connection commands
    # ------------------------------------------------------------------

    def _ping(self, args, deliver):
        _check_arity(CommandType.PING, args, 0, 1)
        return args[0] if args else PONG

    def _echo(self, args, deliver):
        _check_arity(CommandType.ECHO, args, 1, 1)
        return args[0]

    # ------------------------------------------------------------------
    # String commands
    # ------------------------------------------------------------------

    def _set(self, args, deliver):
        _check_arity(CommandType.SET, args, 2)
        key, value, options = args[0], args[1], args[2:]

        mode, amount = ExpiryMode.NONE, None
        if options:
            if len(options) != 2:
                raise CommandSyntaxError()
            try:
                mode = ExpiryMode(options[0].decode("utf-8", errors="replace").upper())
            except ValueError:
                raise CommandSyntaxError() from None
            amount = options[1]

        self.store.set(key, value, mode, amount)
        return OK

    def _get(self, args, deliver):
        _check_arity(CommandType.GET, args, 1, 1)
        return self.store.get(args[0])

    def _incr(self, args, deliver):
        _check_arity(CommandType.INCR, args, 1, 1)
        return self.store.incr(args[0])

    # ------------------------------------------------------------------
    # List commands
    # ------------------------------------------------------------------

    def _rpush(self, args, deliver):
        _check_arity(CommandType.RPUSH, args, 2)
        length = self.store.rpush(args[0], *args[1:])
        self.coordinator.wake(args[0])
        return length

    def _lpush(self, args, deliver):
        _check_arity(CommandType.LPUSH, args, 2)
        length = self.store.lpush(args[0], *args[1:])
        self.coordinator.wake(args[0])
        return length

    def _lrange(self, args, deliver):
        _check_arity(CommandType.LRANGE, args, 3, 3)
        start, end = parse_int(args[1]), parse_int(args[2])
        return self.store.lrange(args[0], start, end)

    def _llen(self, args, deliver):
        _check_arity(CommandType.LLEN, args, 1, 1)
        return self.store.llen(args[0])

    def _lpop(self, args, deliver):
        _check_arity(CommandType.LPOP, args, 1, 2)
        if len(args) == 1:
            return self.store.lpop(args[0])

        try:
            count = parse_int(args[1])
        except NotAnIntegerError:
            raise CommandError("value is out of range, must be positive") from None
        if count < 0:
            raise CommandError("value is out of range, must be positive")
        return self.store.lpop(args[0], count)

    def _blpop(self, args, deliver):
        _check_arity(CommandType.BLPOP, args, 2, 2)
        key = args[0]
        timeout = _parse_timeout(args[1])

        value = self.store.lpop(key)
        if value is not None:
            return [key, value]

        if deliver is None:
            raise CommandError("BLPOP cannot block without a connection")
        return Deferred(self.coordinator.block(key, deliver, timeout))
