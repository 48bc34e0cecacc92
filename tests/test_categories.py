from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from auth import NotAuthenticated
from database import Base
from defaults import DEFAULT_CATEGORY_MAPPINGS
from models import Transaction
from schemas import CategoryMappingIn
from services import (
    AllocationService,
    CategoryService,
    DuplicateMapping,
    StoreQueryFailed,
    TransactionRepository,
)

USER = "user-1"


def add_txn(session: Session, subcategory: str, amount_cents: int = 1_000, user_id=USER):
    session.add(
        Transaction(
            user_id=user_id,
            date=date(2024, 1, 5),
            occurred_at=datetime(2024, 1, 5, 12, 0),
            amount_cents=amount_cents,
            name="Purchase",
            subcategory=subcategory,
        )
    )


def test_adding_mapping_relabels_existing_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        for _ in range(5):
            add_txn(session, "FOOD_AND_DRINK_RESTAURANT")
        add_txn(session, "FOOD_AND_DRINK_GROCERIES")
        add_txn(session, "FOOD_AND_DRINK_RESTAURANT", user_id="someone-else")
        session.commit()

        result = CategoryService(session, USER).add_mapping(
            CategoryMappingIn(category="Dining", subcategory="FOOD_AND_DRINK_RESTAURANT")
        )
        assert result.relabeled == 5
        assert result.relabel_error is None

        mappings = CategoryService(session, USER).list_mappings()
        assert [(m.category, m.subcategory) for m in mappings] == [
            ("Dining", "FOOD_AND_DRINK_RESTAURANT")
        ]
        labeled = session.scalars(
            select(Transaction).where(Transaction.category == "Dining")
        ).all()
        assert len(labeled) == 5
        assert {t.user_id for t in labeled} == {USER}


def test_duplicate_and_blank_mappings_are_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        categories.add_mapping(CategoryMappingIn(category="Dining", subcategory="COFFEE"))

        with pytest.raises(DuplicateMapping):
            categories.add_mapping(
                CategoryMappingIn(category=" Dining ", subcategory="COFFEE")
            )
        with pytest.raises(ValueError, match="required"):
            categories.add_mapping(CategoryMappingIn(category="  ", subcategory="COFFEE"))

        # Matching is case-sensitive.
        categories.add_mapping(CategoryMappingIn(category="dining", subcategory="COFFEE"))
        assert categories.list_names() == ["Dining", "dining"]


def test_relabel_failure_keeps_mapping_and_reports_error(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    def boom(self, subcategory, category):
        raise StoreQueryFailed("Relabeling transactions failed")

    with Session(engine) as session:
        monkeypatch.setattr(TransactionRepository, "update_category_for_subcategory", boom)
        result = CategoryService(session, USER).add_mapping(
            CategoryMappingIn(category="Gas", subcategory="TRANSPORTATION_GAS")
        )
        assert result.relabeled == 0
        assert result.relabel_error == "Relabeling transactions failed"
        assert CategoryService(session, USER).list_names() == ["Gas"]


def test_remove_category_drops_all_its_labels() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        for label in ("COFFEE", "FAST_FOOD", "RESTAURANT"):
            categories.add_mapping(CategoryMappingIn(category="Dining", subcategory=label))
        categories.add_mapping(CategoryMappingIn(category="Gas", subcategory="GAS"))

        assert categories.remove_category("Dining") == 3
        assert categories.list_names() == ["Gas"]
        with pytest.raises(ValueError, match="Category not found"):
            categories.remove_category("Dining")


def test_list_groups_rolls_up_labels_and_rates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER)
        categories.add_mapping(CategoryMappingIn(category="Dining", subcategory="FAST_FOOD"))
        categories.add_mapping(CategoryMappingIn(category="Dining", subcategory="COFFEE"))
        categories.add_mapping(CategoryMappingIn(category="Auto", subcategory="GAS"))
        AllocationService(session, USER).upsert_allocation("Dining", 7_500)

        groups = categories.list_groups()
        assert [g.name for g in groups] == ["Auto", "Dining"]
        dining = groups[1]
        assert dining.subcategories == ["COFFEE", "FAST_FOOD"]
        assert dining.count == 2
        assert dining.weekly_allocation_cents == 7_500
        assert groups[0].weekly_allocation_cents == 0


def test_seed_defaults_skips_existing_pairs_and_relabels() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_txn(session, "FOOD_AND_DRINK_COFFEE")
        add_txn(session, "FOOD_AND_DRINK_COFFEE")
        add_txn(session, "SOMETHING_ELSE")
        session.commit()

        categories = CategoryService(session, USER)
        first, label = DEFAULT_CATEGORY_MAPPINGS[0]
        categories.add_mapping(CategoryMappingIn(category=first, subcategory=label))

        result = categories.seed_defaults()
        assert result.already_present == 1
        assert result.added == len(DEFAULT_CATEGORY_MAPPINGS) - 1
        assert result.relabeled == 2
        assert result.errors == {}
        assert len(categories.list_mappings()) == len(DEFAULT_CATEGORY_MAPPINGS)

        again = categories.seed_defaults()
        assert again.added == 0
        assert again.already_present == len(DEFAULT_CATEGORY_MAPPINGS)


def test_services_require_a_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(NotAuthenticated):
            CategoryService(session, None)
        with pytest.raises(NotAuthenticated):
            TransactionRepository(session, "")


def test_seed_defaults_reports_failed_batch_and_keeps_the_rest(monkeypatch) -> None:
    import services

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    real_commit = services._commit
    calls = []

    def flaky_commit(session, action):
        calls.append(action)
        if len(calls) == 2:
            session.rollback()
            raise StoreQueryFailed(f"{action} failed")
        real_commit(session, action)

    first_batch_label = DEFAULT_CATEGORY_MAPPINGS[0][1]
    second_batch_label = DEFAULT_CATEGORY_MAPPINGS[60][1]

    with Session(engine) as session:
        add_txn(session, first_batch_label)
        add_txn(session, second_batch_label)
        session.commit()

        monkeypatch.setattr(services, "_commit", flaky_commit)
        result = CategoryService(session, USER).seed_defaults()

        assert result.added == len(DEFAULT_CATEGORY_MAPPINGS) - 50
        assert len(result.errors) == 50
        assert result.errors[second_batch_label] == "Adding default categories failed"
        assert first_batch_label not in result.errors
        assert result.relabeled == 1

        labels = {m.subcategory for m in CategoryService(session, USER).list_mappings()}
        assert first_batch_label in labels
        assert second_batch_label not in labels
        categories = {
            t.subcategory: t.category for t in session.scalars(select(Transaction))
        }
        assert categories[first_batch_label] == DEFAULT_CATEGORY_MAPPINGS[0][0]
        assert categories[second_batch_label] is None


def test_relabel_without_matching_rows_changes_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        add_txn(session, "COFFEE")
        session.commit()

        repo = TransactionRepository(session, USER)
        assert repo.update_category_for_subcategory("TEA", "Drinks") == 0
        assert repo.update_category_for_subcategory("COFFEE", "Drinks") == 1
        assert repo.query()[0].category == "Drinks"
