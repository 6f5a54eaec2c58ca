"""
Helpers for logging and inspecting exceptions raised by the outbound
transport, including exception groups and chained causes.
"""

import logging
from typing import Iterator


def _safe_str(obj) -> str:
    """
    Convert an object to string even when its __str__ or __repr__ is broken.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def iter_exception_chain(exception: BaseException, limit: int = 16) -> Iterator[BaseException]:
    """
    Yield an exception followed by its causes, contexts and group members.

    httpx wraps the socket level failure (``ConnectionRefusedError``,
    ``ssl.SSLError`` ...) a few layers deep; this walks all of them once.

    Args:
        exception: The exception to start from
        limit: Upper bound on the number of exceptions visited

    Returns:
        An iterator over every distinct exception reachable from ``exception``
    """
    seen = set()
    pending = [exception]
    while pending and len(seen) < limit:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if hasattr(current, "exceptions"):
            pending.extend(_safe_get_exceptions(current))
        pending.append(current.__cause__)
        pending.append(current.__context__)


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, expanding exception groups into one line per member.
    Never raises, even for broken exception objects.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Relay]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        sub_exceptions = (
            _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
        )

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            return

        logger.log(
            level,
            f"{safe_prefix} {type(exception).__name__}: {_safe_str(exception)}",
            exc_info=exception if exception is not None else False,
        )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception message, including sub-exceptions for exception groups.
    """
    if exception is None:
        return "None"
    sub_exceptions = (
        _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    )
    if not sub_exceptions:
        return _safe_str(exception) or type(exception).__name__
    joined = "; ".join(
        f"{type(sub).__name__}: {_safe_str(sub)}" for sub in sub_exceptions
    )
    return f"{_safe_str(exception)} (Sub-exceptions: {joined})"
