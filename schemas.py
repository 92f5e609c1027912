from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Amount = Union[int, float]


class CardUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1, max_length=32)
    value: Decimal
    is_incremental: bool = Field(default=False, alias="isIncremental")


class TransactionIn(BaseModel):
    type: str = Field(..., min_length=1, max_length=32)
    amount: Decimal
    # epoch seconds or ISO-8601; missing or 0 means now
    timestamp: Optional[Union[datetime, float]] = None


class CardsOut(BaseModel):
    savings: Amount
    income: Amount
    expenses: Amount
    balance: Amount


class ChartsOut(BaseModel):
    months: list[str]
    income: list[Amount]
    expenses: list[Amount]
    days: list[str]
    earning: list[Amount]
    spent: list[Amount]


class HistoryOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    operation_type: str
    amount: Amount
    is_incremental: bool
    recorded_at: datetime = Field(..., alias="timestamp")


class TransactionOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    type: str
    amount: Amount
    occurred_at: datetime = Field(..., alias="timestamp")
