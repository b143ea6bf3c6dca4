"""Bounded invocations on a shared worker pool."""

import concurrent.futures
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

_executor = concurrent.futures.ThreadPoolExecutor(max_workers=8, thread_name_prefix="balance-sync")


class InvocationTimeoutError(Exception):
    """A reconciliation did not finish within the invocation timeout."""


def run_with_timeout(fn: Callable[[], T], timeout: float) -> T:
    """Run ``fn`` on the shared worker pool and wait at most ``timeout`` seconds for it.

    On timeout the work keeps running in the background; its write either lands
    or is redone by the next trigger.
    """
    future = _executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as exc:
        msg = f"Invocation did not finish within {timeout}s"
        raise InvocationTimeoutError(msg) from exc
