"""Bank aggregator (Powens) record models."""
import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AggregatorRecord(BaseModel):
    """Base for raw aggregator records: numeric ids become strings, unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


def _currency_code(value: Any) -> Any:
    # The aggregator sends currencies either as "EUR" or as {"id": "EUR", "symbol": "€", ...}
    if isinstance(value, dict):
        return value.get("id") or value.get("code")
    return value


class AggregatorUser(BaseModel):
    """Result of creating an aggregator-side user."""

    auth_token: str = Field(..., description="Permanent user token")
    external_user_id: str = Field(..., description="Aggregator user identifier")


class AggregatorBank(AggregatorRecord):
    """Bank metadata attached to an account."""

    id: Optional[str] = None
    name: Optional[str] = None
    logo_url: Optional[str] = None


class AggregatorCategory(AggregatorRecord):
    """Transaction category."""

    id: Optional[str] = None
    name: Optional[str] = None


class AggregatorAccount(AggregatorRecord):
    """Account as listed by the aggregator."""

    id: str = Field(..., description="Aggregator account identifier")
    connection_id: Optional[str] = Field(None, alias="id_connection")
    name: str = Field("Account", description="Display name")
    balance: Decimal = Field(Decimal("0"), description="Current balance (signed)")
    currency: str = Field("EUR", description="Currency code")
    type: Optional[str] = Field(None, description="Aggregator account type")
    number: Optional[str] = None
    iban: Optional[str] = None
    bank: Optional[AggregatorBank] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v):
        return _currency_code(v) or "EUR"

    @field_validator("balance", mode="before")
    @classmethod
    def _default_balance(cls, v):
        return Decimal("0") if v is None else v

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v):
        return v or "Account"


class AggregatorTransaction(AggregatorRecord):
    """Transaction as listed by the aggregator."""

    id: str = Field(..., description="Aggregator transaction identifier")
    account_id: Optional[str] = Field(None, alias="id_account")
    date: datetime.date
    value_date: Optional[datetime.date] = None
    description: Optional[str] = Field(None, alias="wording")
    original_description: Optional[str] = Field(None, alias="original_wording")
    amount: Decimal = Field(..., description="Signed amount (negative for debit)")
    currency: Optional[str] = None
    type: Optional[str] = None
    state: Optional[str] = Field(None, description="pending, completed or cancelled")
    category: Optional[AggregatorCategory] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v):
        return _currency_code(v)

    @field_validator("date", "value_date", mode="before")
    @classmethod
    def _day_only(cls, v):
        # Timestamps like "2024-01-15 00:00:00" are truncated to the day
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @property
    def resolved_description(self) -> str:
        return self.description or self.original_description or "Transaction"

    @property
    def is_pending(self) -> bool:
        return self.state == "pending"


class AggregatorConnection(AggregatorRecord):
    """A bank connection held by the aggregator for a user."""

    id: str
    user_id: Optional[str] = Field(None, alias="id_user")
    bank_id: Optional[str] = Field(None, alias="id_bank")
    state: Optional[str] = None
    error: Optional[str] = None
    last_update: Optional[str] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)
