"""Daily token budget."""

from aiwriter.budget.ledger import BudgetLedger, Clock, SystemClock

__all__ = ["BudgetLedger", "Clock", "SystemClock"]
