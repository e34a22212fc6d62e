# Overview: Account mapping lookups (journal, product and encashment accounts) with built-in defaults.

"""
Account Mapping Resolver

WHY: The ledger generator needs account codes for every business event,
but associations run with little or no accounting configuration.

DESIGN PRINCIPLES:
- Configuration rows win when present and active
- Missing configuration falls back to the defaults below (fail-open):
  bookkeeping must never block day-to-day operations
- Read-only during generation; upserts are an admin concern
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from flask import current_app

from ..extensions import db
from ..models import AccountMappingRule, EncashmentAccount, Journal, Account
from ..validation import require_text


@dataclass(frozen=True)
class AccountMapping:
    event_type: str
    journal_code: str
    product_account: str
    piece_prefix: str
    product_account_label: str | None = None
    analytic_section: str | None = None
    generate_entries: bool = True


@dataclass(frozen=True)
class EncashmentTarget:
    account_number: str
    account_label: str | None = None
    journal_code: str | None = None


# =============================================================================
# DEFAULTS
# =============================================================================

EVENT_MEMBERSHIP = "membership"
EVENT_RENTAL = "rental"
EVENT_LATE_FEE = "late_fee"
EVENT_FINE = "fine"
EVENT_SALE = "sale"
EVENT_DONATION = "donation"
EVENT_DEPOSIT = "deposit"
EVENT_DEPOSIT_REFUND = "deposit_refund"

DEFAULT_ACCOUNT_MAPPINGS = {
    EVENT_MEMBERSHIP: AccountMapping(EVENT_MEMBERSHIP, "VT", "7061", "COT", "Cotisations des adherents"),
    EVENT_RENTAL: AccountMapping(EVENT_RENTAL, "VT", "7083", "LOC", "Locations"),
    EVENT_LATE_FEE: AccountMapping(EVENT_LATE_FEE, "VT", "7063", "RET", "Amendes et penalites"),
    EVENT_FINE: AccountMapping(EVENT_FINE, "VT", "7063", "AMD", "Amendes et penalites"),
    EVENT_SALE: AccountMapping(EVENT_SALE, "VT", "7062", "VTE", "Prestations de services"),
    EVENT_DONATION: AccountMapping(EVENT_DONATION, "VT", "7064", "DON", "Dons"),
    EVENT_DEPOSIT: AccountMapping(EVENT_DEPOSIT, "VT", "4190", "CAU", "Cautions recues"),
    EVENT_DEPOSIT_REFUND: AccountMapping(EVENT_DEPOSIT_REFUND, "BQ", "4190", "RMB", "Cautions recues"),
}

# Unknown event types still post somewhere reviewable
FALLBACK_MAPPING = AccountMapping("other", "OD", "758", "OP", "Produits divers de gestion courante")

DEFAULT_ENCASHMENT_ACCOUNTS = {
    "cash": EncashmentTarget("5300", "Caisse", "CA"),
    "cheque": EncashmentTarget("5112", "Cheques a encaisser", "BQ"),
    "card": EncashmentTarget("5121", "Banque - Compte courant", "BQ"),
    "transfer": EncashmentTarget("5121", "Banque - Compte courant", "BQ"),
    "direct_debit": EncashmentTarget("5121", "Banque - Compte courant", "BQ"),
}

DEFAULT_JOURNAL_LABELS = {
    "VT": "Journal des ventes",
    "AC": "Journal des achats",
    "BQ": "Journal de banque",
    "CA": "Journal de caisse",
    "OD": "Journal des operations diverses",
    "AN": "Journal des a-nouveaux",
}

# Simplified chart of accounts for everyday operations
DEFAULT_ACCOUNT_LABELS = {
    # Treasury
    "512": "Banque",
    "5112": "Cheques a encaisser",
    "5121": "Compte courant",
    "5122": "Livret A",
    "530": "Caisse",
    "5300": "Caisse principale",
    # Third parties
    "411": "Clients",
    "4110": "Clients divers",
    "419": "Clients - avances recues",
    "4190": "Cautions recues",
    "467": "Autres comptes debiteurs ou crediteurs",
    # Fixed assets
    "2184": "Mobilier",
    # Products
    "706": "Prestations de services",
    "7061": "Cotisations",
    "7062": "Prestations de services",
    "7063": "Amendes et penalites",
    "7064": "Dons",
    "7083": "Locations",
    "741": "Subventions exploitation",
    "754": "Dons",
    "758": "Produits divers de gestion courante",
    # Charges
    "606": "Achats non stockes de matieres et fournitures",
    "627": "Services bancaires et assimiles",
    "6571": "Charges exceptionnelles sur operations de gestion",
    "6713": "Dons et liberalites",
}


# =============================================================================
# LOOKUPS
# =============================================================================

def resolve(event_type: str) -> AccountMapping:
    """Mapping for an event type: active configuration row, else default."""
    rule = db.session.query(AccountMappingRule).filter_by(event_type=event_type, is_active=True).first()
    if rule:
        return AccountMapping(
            event_type=rule.event_type,
            journal_code=rule.journal_code,
            product_account=rule.product_account,
            piece_prefix=rule.piece_prefix,
            product_account_label=rule.product_account_label,
            analytic_section=rule.analytic_section,
            generate_entries=rule.generate_entries,
        )

    default = DEFAULT_ACCOUNT_MAPPINGS.get(event_type)
    if default:
        return default

    current_app.logger.warning("No account mapping for event type %r, using fallback", event_type)
    return replace(FALLBACK_MAPPING, event_type=event_type)


def resolve_encashment_account(payment_method: str) -> EncashmentTarget:
    """Treasury account for a payment method: configuration row, default table, then config fallback."""
    row = db.session.query(EncashmentAccount).filter_by(payment_method=payment_method, is_active=True).first()
    if row:
        return EncashmentTarget(row.account_number, row.account_label, row.journal_code)

    default = DEFAULT_ENCASHMENT_ACCOUNTS.get(payment_method)
    if default:
        return default

    fallback = current_app.config.get("DEFAULT_ENCASHMENT_ACCOUNT", "5121")
    return EncashmentTarget(fallback, "Compte par defaut", None)


def journal_label(code: str) -> str:
    journal = db.session.query(Journal).filter_by(code=code, is_active=True).first()
    if journal:
        return journal.label
    return DEFAULT_JOURNAL_LABELS.get(code, f"Journal {code}")


def account_label(number: str) -> str:
    """Account label; unknown sub-accounts inherit the closest parent's label."""
    account = db.session.query(Account).filter_by(number=number, is_active=True).first()
    if account:
        return account.label

    if number in DEFAULT_ACCOUNT_LABELS:
        return DEFAULT_ACCOUNT_LABELS[number]
    for i in range(len(number) - 1, 0, -1):
        parent = number[:i]
        if parent in DEFAULT_ACCOUNT_LABELS:
            return DEFAULT_ACCOUNT_LABELS[parent]
    return f"Compte {number}"


class AccountMappingResolver:
    """
    Resolver handed to the ledger generator.

    Labels are cached for the resolver's lifetime only (one generation),
    never across requests.
    """

    def __init__(self):
        self._journal_labels: dict[str, str] = {}
        self._account_labels: dict[str, str] = {}

    def resolve(self, event_type: str) -> AccountMapping:
        return resolve(event_type)

    def resolve_encashment_account(self, payment_method: str) -> EncashmentTarget:
        return resolve_encashment_account(payment_method)

    def stock_account(self) -> str:
        return current_app.config.get("DEFAULT_STOCK_ACCOUNT", "2184")

    def journal_label(self, code: str) -> str:
        if code not in self._journal_labels:
            self._journal_labels[code] = journal_label(code)
        return self._journal_labels[code]

    def account_label(self, number: str) -> str:
        if number not in self._account_labels:
            self._account_labels[number] = account_label(number)
        return self._account_labels[number]


# =============================================================================
# CONFIGURATION (admin)
# =============================================================================

def set_account_mapping(
    event_type: str,
    *,
    journal_code: str,
    product_account: str,
    piece_prefix: str,
    product_account_label: str | None = None,
    analytic_section: str | None = None,
    generate_entries: bool = True,
    is_active: bool = True,
) -> AccountMappingRule:
    """Create or replace the mapping row for an event type."""
    event_type = require_text(event_type, "event_type", max_length=32)
    rule = db.session.query(AccountMappingRule).filter_by(event_type=event_type).first()
    if rule is None:
        rule = AccountMappingRule(event_type=event_type)
        db.session.add(rule)

    rule.journal_code = require_text(journal_code, "journal_code", max_length=8)
    rule.product_account = require_text(product_account, "product_account", max_length=20)
    rule.piece_prefix = require_text(piece_prefix, "piece_prefix", max_length=16)
    rule.product_account_label = product_account_label
    rule.analytic_section = analytic_section
    rule.generate_entries = generate_entries
    rule.is_active = is_active
    db.session.commit()
    return rule


def set_encashment_account(
    payment_method: str,
    *,
    account_number: str,
    account_label: str | None = None,
    journal_code: str | None = None,
    is_active: bool = True,
) -> EncashmentAccount:
    payment_method = require_text(payment_method, "payment_method", max_length=32)
    row = db.session.query(EncashmentAccount).filter_by(payment_method=payment_method).first()
    if row is None:
        row = EncashmentAccount(payment_method=payment_method)
        db.session.add(row)

    row.account_number = require_text(account_number, "account_number", max_length=20)
    row.account_label = account_label
    row.journal_code = journal_code
    row.is_active = is_active
    db.session.commit()
    return row
