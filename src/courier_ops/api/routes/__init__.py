"""Route group exports."""

from . import assignments, health, reports, settlements, wallets

__all__ = ["assignments", "health", "reports", "settlements", "wallets"]
