"""Structured logging of resources involved in a controller loop."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Union

_MISSING = "(MISSING)"
_DEFAULT_LOGGER_NAME = "ackruntime"


def _render(msg: str, values: tuple) -> str:
    if not values:
        return msg
    pairs = []
    items = iter(values)
    for key in items:
        value = next(items, _MISSING)
        pairs.append(f"{key}={value}")
    return msg + " " + " ".join(pairs)


class StructuredLogger:
    """A logger that carries key/value pairs appended to every message.

    The pairs are rendered into the message text and also attached to each
    log record as the ``ack_values`` attribute.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        values: Iterable[Any] = (),
    ) -> None:
        self.logger = logger if logger is not None else logging.getLogger(_DEFAULT_LOGGER_NAME)
        self.values: tuple = tuple(values)

    def with_values(self, *args: Any) -> "StructuredLogger":
        """A new logger carrying these pairs after the current ones."""
        return StructuredLogger(self.logger, self.values + args)

    def with_name(self, name: str) -> "StructuredLogger":
        """A new logger writing to the child logger ``name``."""
        return StructuredLogger(self.logger.getChild(name), self.values)

    def debug_enabled(self) -> bool:
        """Whether debug messages are written."""
        return self.logger.isEnabledFor(logging.DEBUG)

    def info(self, msg: str, *args: Any) -> None:
        """Write ``msg`` at info level with the carried and given pairs."""
        self._emit(logging.INFO, msg, args)

    def debug(self, msg: str, *args: Any) -> None:
        """Write ``msg`` at debug level with the carried and given pairs."""
        self._emit(logging.DEBUG, msg, args)

    def _emit(self, level: int, msg: str, args: tuple) -> None:
        if not self.logger.isEnabledFor(level):
            return
        values = self.values + tuple(args)
        self.logger.log(level, "%s", _render(msg, values), extra={"ack_values": values})


LoggerLike = Union[StructuredLogger, logging.Logger, None]


def _structured(log: LoggerLike) -> StructuredLogger:
    if isinstance(log, StructuredLogger):
        return log
    return StructuredLogger(log)


def _get(obj: Any, *names: str) -> Any:
    if obj is None:
        return None
    for name in names:
        if hasattr(obj, name):
            return getattr(obj, name)
    return None


def _resource_generation(res: Any) -> Any:
    meta_object = getattr(res, "meta_object", None)
    if callable(meta_object):
        meta = meta_object()
    else:
        meta = getattr(res, "metadata", res)
    return getattr(meta, "generation", 0)


def _expand_resource_fields(res: Any, args: tuple) -> tuple:
    return ("generation", _resource_generation(res)) + tuple(args)


def _expand_adopted_resource_fields(res: Any, args: tuple) -> tuple:
    meta = getattr(res, "metadata", res)
    kubernetes = _get(getattr(res, "spec", None), "kubernetes")
    return (
        "target_group", _get(kubernetes, "group") or "",
        "target_kind", _get(kubernetes, "kind") or "",
        "namespace", getattr(meta, "namespace", ""),
        "name", getattr(meta, "name", ""),
        "generation", getattr(meta, "generation", 0),
    ) + tuple(args)


def _expand_field_export_fields(res: Any, args: tuple) -> tuple:
    meta = getattr(res, "metadata", res)
    spec = getattr(res, "spec", None)
    source = _get(spec, "from_", "source")
    resource = _get(source, "resource")
    target = _get(spec, "to", "target")
    return (
        "source_name", _get(resource, "name"),
        "source_kind", _get(resource, "kind"),
        "source_path", _get(source, "path"),
        "target_name", _get(target, "name"),
        "target_namespace", _get(target, "namespace"),
        "target_kind", _get(target, "kind"),
        "namespace", getattr(meta, "namespace", ""),
        "name", getattr(meta, "name", ""),
        "generation", getattr(meta, "generation", 0),
    ) + tuple(args)


class ResourceLogger:
    """Writes log messages about one resource, tracking nested code blocks."""

    def __init__(self, log: LoggerLike, res: Any, *args: Any) -> None:
        self.log = _structured(log).with_values(*args)
        self.res = res
        self.block_depth = 0

    def is_debug_enabled(self) -> bool:
        """Whether the underlying logger writes debug messages."""
        return self.log.debug_enabled()

    def with_values(self, *args: Any) -> None:
        """Add key/value pairs to every later message."""
        self.log = self.log.with_values(*args)

    def debug(self, msg: str, *args: Any) -> None:
        """Write a debug message with the resource's standard fields."""
        self.log.debug(msg, *_expand_resource_fields(self.res, args))

    def info(self, msg: str, *args: Any) -> None:
        """Write an info message with the resource's standard fields."""
        self.log.info(msg, *_expand_resource_fields(self.res, args))

    def enter(self, name: str, *args: Any) -> None:
        """Log entry into the function or block ``name``."""
        if not self.is_debug_enabled():
            return
        self.block_depth += 1
        msg = ">" * self.block_depth + " " + name
        self.log.debug(msg, *_expand_resource_fields(self.res, args))

    def exit(self, name: str, err: Optional[BaseException] = None, *args: Any) -> None:
        """Log exit from the function or block ``name``, with ``err`` if any."""
        if not self.is_debug_enabled():
            return
        values = tuple(args)
        if err is not None:
            values += ("error", err)
        msg = "<" * self.block_depth + " " + name
        self.log.debug(msg, *_expand_resource_fields(self.res, values))
        self.block_depth -= 1

    def trace(self, name: str, *args: Any) -> Callable[..., None]:
        """Log entry into ``name`` and return a callable that logs its exit."""
        self.enter(name, *args)

        def _exit(err: Optional[BaseException] = None, *exit_args: Any) -> None:
            self.exit(name, err, *exit_args)

        return _exit


def adapt_resource(log: LoggerLike, res: Any, *args: Any) -> StructuredLogger:
    """A logger carrying the resource's standard fields."""
    return _structured(log).with_values(*_expand_resource_fields(res, args))


def debug_resource(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write a debug message about a resource."""
    adapt_resource(log, res, *args).debug(msg)


def info_resource(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write an info message about a resource."""
    adapt_resource(log, res, *args).info(msg)


def adapt_adopted_resource(log: LoggerLike, res: Any, *args: Any) -> StructuredLogger:
    """A logger carrying an adopted resource's standard fields."""
    return _structured(log).with_values(*_expand_adopted_resource_fields(res, args))


def debug_adopted_resource(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write a debug message about an adopted resource."""
    adapt_adopted_resource(log, res, *args).debug(msg)


def info_adopted_resource(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write an info message about an adopted resource."""
    adapt_adopted_resource(log, res, *args).info(msg)


def adapt_field_export(log: LoggerLike, res: Any, *args: Any) -> StructuredLogger:
    """A logger carrying a field export's standard fields."""
    return _structured(log).with_values(*_expand_field_export_fields(res, args))


def debug_field_export(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write a debug message about a field export."""
    adapt_field_export(log, res, *args).debug(msg)


def info_field_export(log: LoggerLike, res: Any, msg: str, *args: Any) -> None:
    """Write an info message about a field export."""
    adapt_field_export(log, res, *args).info(msg)