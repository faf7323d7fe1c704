import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from models import CategoryIcon

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

# aggregates go out as plain JSON numbers; stored amounts stay decimal strings
MoneyNumber = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


def _strip_text(value):
    if isinstance(value, str):
        return value.strip()
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class RegisterIn(CamelModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=200)
    full_name: str = Field(..., min_length=1, max_length=200)

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_full_name(cls, value):
        return _strip_text(value)


class LoginIn(CamelModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=200)


class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: CategoryIcon
    color: str = Field(..., pattern=COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip_text(value)


class CategoryUpdate(CamelModel):
    """Partial category update; only fields present in the payload are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[CategoryIcon] = None
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)

    @field_validator("name", "icon", "color", mode="before")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field may be omitted but not null")
        return _strip_text(value)


class ExpenseIn(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category_id: Optional[int] = None
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip_text(value)


class ExpenseUpdate(CamelModel):
    """Partial expense update.

    ``category_id`` and ``description`` accept an explicit null (uncategorize,
    clear description); the remaining fields may only be omitted.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    category_id: Optional[int] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", "amount", "date", mode="before")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field may be omitted but not null")
        return _strip_text(value)


class UserOut(CamelModel):
    id: int
    email: str
    full_name: str


class UserEnvelope(CamelModel):
    user: UserOut


class CategoryOut(CamelModel):
    id: int
    user_id: int
    name: str
    icon: str
    color: str
    created_at: datetime


class CategoryWithStatsOut(CategoryOut):
    expense_count: int
    total_amount: MoneyNumber


class ExpenseOut(CamelModel):
    id: int
    user_id: int
    category_id: Optional[int]
    title: str
    amount: Decimal
    date: dt.date
    description: Optional[str]
    created_at: datetime


class ExpenseWithCategoryOut(ExpenseOut):
    category: Optional[CategoryOut] = None


class StatsOut(CamelModel):
    total_expenses: MoneyNumber
    weekly_expenses: MoneyNumber
    categories_count: int
    daily_average: MoneyNumber


class MessageOut(BaseModel):
    message: str
