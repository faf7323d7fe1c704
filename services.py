from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import (
    Category,
    CategoryIcon,
    Expense,
    User,
    amount_to_cents,
    cents_to_amount,
)
from schemas import CategoryIn, CategoryUpdate, ExpenseIn, ExpenseUpdate
from security import hash_password, verify_password_hash

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[tuple[str, CategoryIcon, str], ...] = (
    ("Food & Dining", CategoryIcon.utensils, "#EF4444"),
    ("Transportation", CategoryIcon.car, "#3B82F6"),
    ("Shopping", CategoryIcon.shopping_bag, "#8B5CF6"),
    ("Entertainment", CategoryIcon.film, "#F59E0B"),
    ("Bills & Utilities", CategoryIcon.receipt, "#10B981"),
    ("Healthcare", CategoryIcon.heart_pulse, "#EC4899"),
)

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "password"
DEMO_FULL_NAME = "Demo User"


class EmailAlreadyRegistered(ValueError):
    pass


class CategoryNotFound(ValueError):
    pass


def today_in_timezone(tz_name: Optional[str] = None) -> date:
    tz_name = tz_name or get_settings().timezone
    return datetime.now(ZoneInfo(tz_name)).date()


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def create(self, email: str, password: str, full_name: str) -> User:
        if self.get_by_email(email) is not None:
            raise EmailAlreadyRegistered("User already exists")
        return self.add(email, hash_password(password), full_name)

    def add(self, email: str, password_hash: str, full_name: str) -> User:
        """Insert a user whose password was already hashed by the caller."""
        if self.get_by_email(email) is not None:
            raise EmailAlreadyRegistered("User already exists")
        user = User(
            email=email,
            password_hash=password_hash,
            full_name=full_name.strip(),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def verify_password(self, email: str, password: str) -> Optional[User]:
        user = self.get_by_email(email)
        stored = user.password_hash if user is not None else None
        if not verify_password_hash(stored, password):
            return None
        return user


@dataclass
class CategoryWithStats:
    id: int
    user_id: int
    name: str
    icon: str
    color: str
    created_at: datetime
    expense_count: int
    total_amount: Decimal


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, category_id: int) -> Optional[Category]:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            return None
        return category

    def count(self) -> int:
        stmt = select(func.count(Category.id)).where(Category.user_id == self.user_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def list_with_stats(self) -> list[CategoryWithStats]:
        stmt = (
            select(
                Category,
                func.count(Expense.id).label("expense_count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total_cents"),
            )
            .outerjoin(
                Expense,
                and_(
                    Expense.category_id == Category.id,
                    Expense.user_id == self.user_id,
                ),
            )
            .where(Category.user_id == self.user_id)
            .group_by(Category.id)
            .order_by(Category.id)
        )
        return [
            CategoryWithStats(
                id=category.id,
                user_id=category.user_id,
                name=category.name,
                icon=category.icon,
                color=category.color,
                created_at=category.created_at,
                expense_count=int(expense_count),
                total_amount=cents_to_amount(int(total_cents)),
            )
            for category, expense_count, total_cents in self.session.execute(stmt)
        ]

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            name=data.name,
            icon=data.icon.value,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Optional[Category]:
        category = self.get(category_id)
        if category is None:
            return None
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            category.name = changes["name"]
        if "icon" in changes:
            category.icon = CategoryIcon(changes["icon"]).value
        if "color" in changes:
            category.color = changes["color"]
        self.session.commit()
        return category

    def delete(self, category_id: int) -> bool:
        category = self.get(category_id)
        if category is None:
            return False
        orphaned = self.session.execute(
            update(Expense)
            .where(Expense.category_id == category_id)
            .values(category_id=None)
        ).rowcount
        self.session.delete(category)
        self.session.commit()
        logger.info(
            f"category_deleted: user_id={self.user_id} category_id={category_id} "
            f"orphaned={orphaned}"
        )
        return True

    def seed_defaults(self) -> bool:
        if self.count() > 0:
            return False
        for name, icon, color in DEFAULT_CATEGORIES:
            self.session.add(
                Category(user_id=self.user_id, name=name, icon=icon.value, color=color)
            )
        self.session.commit()
        logger.info(f"default_categories_seeded: user_id={self.user_id}")
        return True


@dataclass
class ExpenseFilters:
    category_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _require_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        if CategoryService(self.session, self.user_id).get(category_id) is None:
            raise CategoryNotFound("Category not found")

    def get(self, expense_id: int) -> Optional[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
        )
        return self.session.scalar(stmt)

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if filters.category_id:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        if filters.start_date:
            stmt = stmt.where(Expense.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Expense.date <= filters.end_date)
        if filters.search:
            needle = filters.search.lower()
            stmt = stmt.where(
                or_(
                    func.lower(Expense.title).contains(needle, autoescape=True),
                    func.lower(func.coalesce(Expense.description, "")).contains(
                        needle, autoescape=True
                    ),
                )
            )
        return list(self.session.scalars(stmt).all())

    def create(self, data: ExpenseIn) -> Expense:
        self._require_category(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            category_id=data.category_id,
            title=data.title,
            amount_cents=amount_to_cents(data.amount),
            date=data.date,
            description=data.description,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Optional[Expense]:
        expense = self.get(expense_id)
        if expense is None:
            return None
        changes = data.model_dump(exclude_unset=True)
        if "category_id" in changes:
            self._require_category(changes["category_id"])
            expense.category_id = changes["category_id"]
        if "title" in changes:
            expense.title = changes["title"]
        if "amount" in changes:
            expense.amount_cents = amount_to_cents(changes["amount"])
        if "date" in changes:
            expense.date = changes["date"]
        if "description" in changes:
            expense.description = changes["description"]
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> bool:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            return False
        self.session.delete(expense)
        self.session.commit()
        return True


@dataclass
class ExpenseStats:
    total_expenses: Decimal
    weekly_expenses: Decimal
    categories_count: int
    daily_average: Decimal


class StatsService:
    WEEK_DAYS = 7
    AVERAGE_DAYS = 30

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _sum_cents(self, since: Optional[date] = None) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.user_id == self.user_id
        )
        if since is not None:
            stmt = stmt.where(Expense.date >= since)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def compute(self, today: Optional[date] = None) -> ExpenseStats:
        today = today or today_in_timezone()
        total = self._sum_cents()
        weekly = self._sum_cents(today - timedelta(days=self.WEEK_DAYS))
        recent = self._sum_cents(today - timedelta(days=self.AVERAGE_DAYS))
        daily_average = (cents_to_amount(recent) / self.AVERAGE_DAYS).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        return ExpenseStats(
            total_expenses=cents_to_amount(total),
            weekly_expenses=cents_to_amount(weekly),
            categories_count=CategoryService(self.session, self.user_id).count(),
            daily_average=daily_average,
        )


def seed_demo_user(session: Session) -> Optional[User]:
    users = UserService(session)
    if users.get_by_email(DEMO_EMAIL) is not None:
        return None
    user = users.create(DEMO_EMAIL, DEMO_PASSWORD, DEMO_FULL_NAME)
    CategoryService(session, user.id).seed_defaults()
    logger.info(f"demo_user_seeded: user_id={user.id}")
    return user
