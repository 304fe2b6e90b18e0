"""Translation of aggregator vocabulary into internal account types."""
from typing import Optional
from ledgerlink.models.records import AccountType

ACCOUNT_TYPE_MAP = {
    "checking": AccountType.CHECKING,
    "savings": AccountType.SAVINGS,
    "card": AccountType.CREDIT_CARD,
    "loan": AccountType.LOAN,
    "securities": AccountType.INVESTMENT,
    "life_insurance": AccountType.INVESTMENT,
    "market": AccountType.INVESTMENT,
}


def map_account_type(external_type: Optional[str]) -> AccountType:
    """Map an aggregator account type (case-insensitive) to an AccountType; unknown types map to OTHER."""
    if not external_type:
        return AccountType.OTHER
    return ACCOUNT_TYPE_MAP.get(external_type.strip().lower(), AccountType.OTHER)
