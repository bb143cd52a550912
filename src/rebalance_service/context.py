"""
Account context management using ContextVar for async-safe context propagation.
"""

from contextvars import ContextVar
from typing import Optional

# Account currently being balanced, carried across async boundaries
current_account: ContextVar[Optional[str]] = ContextVar('current_account', default=None)


def set_current_account(account_id: str) -> None:
    """Set the current account in the context."""
    current_account.set(account_id)


def get_current_account() -> Optional[str]:
    """Get the current account from the context."""
    return current_account.get()


def clear_current_account() -> None:
    """Clear the current account from the context."""
    current_account.set(None)
