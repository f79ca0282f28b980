# conglomerate/models/__init__.py
from .profile import Profile
from .deposit import Deposit
from .investment import Investment
from .withdrawal import Withdrawal
from .audit import AuditLog
from .ledger import LedgerEntry

__all__ = ["Profile", "Deposit", "Investment", "Withdrawal", "AuditLog", "LedgerEntry"]
