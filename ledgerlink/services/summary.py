"""Net worth summary over a user's accounts."""
from decimal import Decimal
from typing import List
from ledgerlink.models.records import Account, BankConnection
from ledgerlink.models.summary import AccountSummary


def summarize_accounts(
    accounts: List[Account],
    connections: List[BankConnection],
    transactions_this_month: int = 0,
) -> AccountSummary:
    """
    Summarize accounts included in net worth.

    Positive balances count as assets, negative ones as liabilities
    (reported as a positive amount). Balances are added as-is, without
    currency conversion. ``transactions_this_month`` is the month-to-date
    transaction count, passed through for the dashboard.
    """
    included = [a for a in accounts if a.is_included_in_networth]
    assets = sum((a.balance for a in included if a.balance > 0), Decimal("0"))
    liabilities = sum((-a.balance for a in included if a.balance < 0), Decimal("0"))
    sync_times = [c.last_sync_at for c in connections if c.last_sync_at]
    return AccountSummary(
        total_accounts=len(included),
        net_worth=assets - liabilities,
        total_assets=assets,
        total_liabilities=liabilities,
        transactions_this_month=transactions_this_month,
        last_sync_at=max(sync_times) if sync_times else None,
    )
