from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from database import Store
from models import CategoryIcon, Expense
from schemas import CategoryIn, CategoryUpdate, ExpenseIn
from services import CategoryService, ExpenseService, UserService


def _user(session, email: str = "alice@example.com") -> int:
    return UserService(session).create(email, "secret1", "Alice").id


def test_category_stats_scenario_travel_flight() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        travel = CategoryService(session, user_id).create(
            CategoryIn(name="Travel", icon=CategoryIcon.plane, color="#3B82F6")
        )
        ExpenseService(session, user_id).create(
            ExpenseIn(
                title="Flight",
                amount=Decimal("500.00"),
                category_id=travel.id,
                date=date(2024, 6, 1),
            )
        )

        stats = CategoryService(session, user_id).list_with_stats()

        assert travel.id == 1
        assert [(c.name, c.expense_count, c.total_amount) for c in stats] == [
            ("Travel", 1, Decimal("500.00"))
        ]


def test_category_without_expenses_reports_zero() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        CategoryService(session, user_id).create(
            CategoryIn(name="Empty", icon=CategoryIcon.home, color="#10B981")
        )

        [stats] = CategoryService(session, user_id).list_with_stats()

        assert stats.expense_count == 0
        assert stats.total_amount == Decimal("0.00")
        assert str(stats.total_amount) == "0.00"


def test_category_stats_ignore_other_users() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        alice = _user(session)
        bob = _user(session, "bob@example.com")
        CategoryService(session, alice).create(
            CategoryIn(name="Food", icon=CategoryIcon.utensils, color="#EF4444")
        )
        CategoryService(session, bob).create(
            CategoryIn(name="Bob food", icon=CategoryIcon.utensils, color="#EF4444")
        )

        names = [c.name for c in CategoryService(session, alice).list_with_stats()]

        assert names == ["Food"]


def test_deleting_category_orphans_its_expenses() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        expenses = ExpenseService(session, user_id)
        food = categories.create(
            CategoryIn(name="Food", icon=CategoryIcon.utensils, color="#EF4444")
        )
        car = categories.create(
            CategoryIn(name="Car", icon=CategoryIcon.car, color="#3B82F6")
        )
        for day in (1, 2, 3):
            expenses.create(
                ExpenseIn(
                    title=f"Lunch {day}",
                    amount=Decimal("12.50"),
                    category_id=food.id,
                    date=date(2025, 1, day),
                )
            )
        fuel = expenses.create(
            ExpenseIn(
                title="Fuel",
                amount=Decimal("60.00"),
                category_id=car.id,
                date=date(2025, 1, 4),
            )
        )

        assert categories.delete(food.id) is True

        remaining = expenses.list()
        assert len(remaining) == 4
        assert sorted(e.title for e in remaining if e.category_id is None) == [
            "Lunch 1",
            "Lunch 2",
            "Lunch 3",
        ]
        assert expenses.get(fuel.id).category_id == car.id
        assert [c.name for c in categories.list_with_stats()] == ["Car"]

    with store.session() as session:
        orphaned = session.scalars(
            select(Expense).where(Expense.category_id.is_(None))
        ).all()
        assert len(orphaned) == 3


def test_update_applies_only_supplied_fields() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        category = categories.create(
            CategoryIn(name="Food", icon=CategoryIcon.utensils, color="#EF4444")
        )

        updated = categories.update(category.id, CategoryUpdate(name="  Groceries "))

        assert updated.name == "Groceries"
        assert updated.icon == "utensils"
        assert updated.color == "#EF4444"

        updated = categories.update(
            category.id, CategoryUpdate.model_validate({"icon": "shopping-bag"})
        )
        assert updated.icon == "shopping-bag"
        assert updated.name == "Groceries"


def test_other_user_cannot_update_or_delete_category() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        alice = _user(session)
        bob = _user(session, "bob@example.com")
        category = CategoryService(session, alice).create(
            CategoryIn(name="Food", icon=CategoryIcon.utensils, color="#EF4444")
        )

        bob_categories = CategoryService(session, bob)
        assert bob_categories.get(category.id) is None
        assert bob_categories.update(category.id, CategoryUpdate(name="Mine")) is None
        assert bob_categories.delete(category.id) is False
        assert bob_categories.update(999, CategoryUpdate(name="Nope")) is None
        assert bob_categories.delete(999) is False

        assert CategoryService(session, alice).get(category.id).name == "Food"


def test_seed_defaults_is_idempotent() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)

        assert categories.seed_defaults() is True
        assert categories.seed_defaults() is False

        names = [c.name for c in categories.list_with_stats()]
        assert names == [
            "Food & Dining",
            "Transportation",
            "Shopping",
            "Entertainment",
            "Bills & Utilities",
            "Healthcare",
        ]


def test_seed_defaults_skips_users_with_categories() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        categories.create(
            CategoryIn(name="Custom", icon=CategoryIcon.film, color="#F59E0B")
        )

        assert categories.seed_defaults() is False
        assert categories.count() == 1


def test_category_ids_are_not_reused() -> None:
    store = Store("sqlite://")

    with store.session() as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        first = categories.create(
            CategoryIn(name="First", icon=CategoryIcon.film, color="#F59E0B")
        )
        second = categories.create(
            CategoryIn(name="Second", icon=CategoryIcon.film, color="#F59E0B")
        )
        categories.delete(second.id)

        third = categories.create(
            CategoryIn(name="Third", icon=CategoryIcon.film, color="#F59E0B")
        )

        assert third.id > second.id > first.id


def test_blank_category_names_are_rejected() -> None:
    with pytest.raises(ValidationError):
        CategoryIn(name="   ", icon=CategoryIcon.car, color="#3B82F6")
    with pytest.raises(ValidationError):
        CategoryUpdate(name=" ")
    with pytest.raises(ValidationError):
        CategoryUpdate.model_validate({"name": None})

    assert CategoryIn(name=" Car ", icon=CategoryIcon.car, color="#3B82F6").name == "Car"
