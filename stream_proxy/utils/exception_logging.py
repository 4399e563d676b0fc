"""
Helpers for classifying and logging failures raised while relaying a stream.

Starlette and AnyIO can wrap the interesting exception in an exception group,
so both helpers look through nested groups before deciding anything.
"""

import logging
from typing import Optional, Tuple, Type, Union

import httpx
from starlette.requests import ClientDisconnect

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]

# Raised on our side of the relay when the client has gone away.
CLIENT_DISCONNECT_ERRORS = (
    ClientDisconnect,
    BrokenPipeError,
    ConnectionResetError,
    httpx.StreamClosed,
)


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def find_exception_in_exception_groups(
    exception: BaseException, target_type: ExceptionTypes
) -> Optional[BaseException]:
    """
    Return the first exception of ``target_type`` found in ``exception`` or
    any exception group nested inside it, or None.
    """
    if isinstance(exception, target_type):
        return exception
    for sub_exc in _sub_exceptions(exception):
        found = find_exception_in_exception_groups(sub_exc, target_type)
        if found is not None:
            return found
    return None


def is_client_disconnect(exception: BaseException) -> bool:
    return (
        find_exception_in_exception_groups(exception, CLIENT_DISCONNECT_ERRORS)
        is not None
    )


def format_exception_message(exception: BaseException) -> str:
    if exception is None:
        return "None"
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return f"{type(exception).__name__}: {_safe_str(exception)}"
    parts = "; ".join(
        f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in sub_exceptions
    )
    return f"{_safe_str(exception)} (Sub-exceptions: {parts})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log ``exception`` under ``prefix``, one extra record per sub-exception
    when it is an exception group.
    """
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        logger.log(
            level,
            f"{prefix} {format_exception_message(exception)}",
            exc_info=exception,
        )
        return

    logger.log(
        level,
        f"{prefix} Exception with {len(sub_exceptions)} sub-exceptions: {_safe_str(exception)}",
    )
    for i, sub_exc in enumerate(sub_exceptions):
        logger.log(
            level,
            f"{prefix} Sub-exception {i + 1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
            exc_info=sub_exc,
        )
