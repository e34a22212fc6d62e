from .auth import User
from .cash import CashRegister, CashSession, CashMovement, BankDeposit
from .accounting import PieceSequence, LedgerEntry, AccountMappingRule, EncashmentAccount, Journal, Account
from .events import MembershipPayment, DisposalType, DisposalLot, DisposalItem
from .audit import AuditEvent

__all__ = [
    'User',
    'CashRegister', 'CashSession', 'CashMovement', 'BankDeposit',
    'PieceSequence', 'LedgerEntry', 'AccountMappingRule', 'EncashmentAccount', 'Journal', 'Account',
    'MembershipPayment', 'DisposalType', 'DisposalLot', 'DisposalItem',
    'AuditEvent',
]
