"""Ledger service - renders stored transactions as Ledger text."""

import logging
from datetime import date
from typing import Optional

from config import settings
from integrations.currency import CurrencyTable
from integrations.provider_protocol import CanonicalTransaction
from services.ledger_store import LedgerStore
from services.rule_service import RenderedTransaction, RuleTransformer

logger = logging.getLogger(__name__)

ACCOUNT_WIDTH = 40
AMOUNT_WIDTH = 14


class LedgerService:
    """Loads transactions from the store, runs the rules and formats them."""

    def __init__(
        self,
        store: LedgerStore,
        transformer: Optional[RuleTransformer] = None,
        currencies: Optional[CurrencyTable] = None,
    ):
        self._store = store
        self._transformer = transformer if transformer is not None else RuleTransformer()
        self._currencies = currencies or CurrencyTable.iso(settings.DEFAULT_CURRENCY)

    def _funding_names(self, transactions: list[CanonicalTransaction]) -> dict[str, str]:
        """Ledger names for funding accounts: ``<root>:<account name>``."""
        names: dict[str, str] = {}
        for txn in transactions:
            account_id = txn.postings[0].account if txn.postings else None
            if not account_id or account_id in names:
                continue
            account = self._store.account_by_id(account_id)
            if account is None:
                names[account_id] = account_id
            else:
                names[account_id] = account.ledger_name
        return names

    def rendered(
        self, begin: date | None = None, until: date | None = None
    ) -> list[RenderedTransaction]:
        """Apply the rules to every transaction dated within [begin, until].

        Raises:
            RuleEvaluationError: If any rule fails; no partial result is returned.
        """
        transactions = self._store.transactions(begin, until)
        names = self._funding_names(transactions)
        return [
            self._transformer.apply(txn, names.get(txn.postings[0].account))
            for txn in transactions
        ]

    def render(self, begin: date | None = None, until: date | None = None) -> str:
        """Return the Ledger text for transactions dated within [begin, until]."""
        blocks = [self.format_transaction(txn) for txn in self.rendered(begin, until)]
        logger.debug("Rendered %d transactions", len(blocks))
        return "\n".join(blocks)

    def format_transaction(self, txn: RenderedTransaction) -> str:
        flag = "!" if txn.pending else "*"
        title = txn.payee or txn.narration
        lines = [f"{txn.date.isoformat()} {flag} {title}".rstrip()]
        if txn.payee and txn.narration and txn.narration != txn.payee:
            lines.append(f"    ; {txn.narration}")
        if txn.tags:
            lines.append(f"    ; :{':'.join(txn.tags)}:")
        if txn.links:
            lines.append("    ; " + " ".join(f"^{link}" for link in txn.links))
        for key in sorted(txn.metadata):
            lines.append(f"    ; {key}: {txn.metadata[key]}")
        for posting in txn.postings:
            units = self._currencies.money(posting.units.amount, posting.units.currency)
            lines.append(
                f"    {posting.account:<{ACCOUNT_WIDTH}}  "
                f"{units.amount:>{AMOUNT_WIDTH}} {units.currency}"
            )
        return "\n".join(lines) + "\n"
