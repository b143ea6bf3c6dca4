"""Workers package: event reactor, due-transaction sweeper, and the sweep scheduler."""

from .invocation import InvocationTimeoutError, run_with_timeout  # noqa: F401
from .reactor import EventReactor  # noqa: F401
from .sweeper import DueTransactionSweeper  # noqa: F401
