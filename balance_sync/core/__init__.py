"""Core package: provides models, database helpers, settings, and shared utilities."""

from .db import Base, SessionLocal, create_ledger_engine, init_db  # noqa: F401
from .models import Account, Transaction, TransactionChange  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
