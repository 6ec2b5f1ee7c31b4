"""
RecurrenceService: creation, materialization and the pause/resume/delete lifecycle.

The clock is pinned to 2024-05-15, so May 2024 is the current period.
"""

from datetime import date, datetime
import threading
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from ledger import errors, models
from ledger.services import RecurrenceService
from ledger.services.materializer import installment_amount

FIXED_NOW = datetime(2024, 5, 15, 9, 30)


def _payload(category: models.Category, **overrides):
    data = {
        "type": category.type.value,
        "amount": Decimal("1000"),
        "description": "Rent",
        "category_id": category.id,
        "frequency": "monthly",
        "start_date": date(2024, 3, 10),
    }
    data.update(overrides)
    return data


def _tagged(db, rule_id: int) -> list[models.Transaction]:
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.recurring_id == rule_id)
        .order_by(models.Transaction.date, models.Transaction.id)
        .all()
    )


def _service(db, now: datetime = FIXED_NOW) -> RecurrenceService:
    return RecurrenceService(db, clock=lambda: now)


class TestCreate:
    def test_materializes_through_current_period(self, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category), user_id=demo_user.id)

        assert rule.is_active
        assert isinstance(rule.state, models.Active)
        assert rule.day_of_month == 10
        assert rule.generated_through == date(2024, 5, 31)
        rows = _tagged(db_session, rule.id)
        assert [t.date for t in rows] == [date(2024, 3, 10), date(2024, 4, 10), date(2024, 5, 10)]
        assert all(t.amount == Decimal("1000.00") for t in rows)
        assert all(t.category_id == expense_category.id and t.user_id == demo_user.id for t in rows)

    def test_weekly_fills_current_month(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(expense_category, frequency="weekly", start_date=date(2024, 5, 1)),
            user_id=demo_user.id,
        )
        assert [t.date.day for t in _tagged(db_session, rule.id)] == [1, 8, 15, 22, 29]

    def test_future_start_creates_nothing_yet(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(expense_category, start_date=date(2024, 7, 1)), user_id=demo_user.id
        )
        assert _tagged(db_session, rule.id) == []

    def test_materialize_is_idempotent(self, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category), user_id=demo_user.id)

        result = svc.materializer.materialize(rule, rule.start_date, date(2024, 5, 31))
        db_session.commit()

        assert result.created == []
        assert len(result.existing) == 3
        assert len(_tagged(db_session, rule.id)) == 3

    def test_installments_split_total(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(
                expense_category,
                amount=Decimal("100"),
                description="Phone",
                start_date=date(2024, 4, 1),
                max_occurrences=3,
            ),
            user_id=demo_user.id,
        )
        rows = _tagged(db_session, rule.id)
        assert [t.amount for t in rows] == [Decimal("33.33"), Decimal("33.33")]
        assert [t.description for t in rows] == ["Phone (1/3)", "Phone (2/3)"]
        assert sum(installment_amount(Decimal("100"), 3, i) for i in range(3)) == Decimal("100")
        assert installment_amount(Decimal("100"), 3, 2) == Decimal("33.34")

    def test_installments_generate_exactly_n_rows(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(expense_category, amount=Decimal("100"), start_date=date(2024, 1, 15), max_occurrences=3),
            user_id=demo_user.id,
        )
        rows = _tagged(db_session, rule.id)
        assert [t.date for t in rows] == [date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15)]
        assert sum(t.amount for t in rows) == Decimal("100")
        assert rows[-1].amount == Decimal("33.34")

    def test_weekly_with_end_date_rows(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(
                expense_category,
                frequency="weekly",
                start_date=date(2024, 1, 1),
                end_date=date(2024, 1, 22),
            ),
            user_id=demo_user.id,
        )
        assert len(_tagged(db_session, rule.id)) == 4

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"amount": Decimal("0")}, "amount must be positive"),
            ({"amount": Decimal("-5")}, "amount must be positive"),
            ({"end_date": date(2024, 12, 31), "max_occurrences": 3}, "mutually exclusive"),
            ({"end_date": date(2024, 1, 1)}, "end_date must not be before start_date"),
            ({"max_occurrences": 0}, "max_occurrences must be a positive integer"),
            ({"frequency": "weekly", "day_of_month": 3}, "day_of_month only applies"),
            ({"frequency": "yearly", "day_of_month": 11}, "yearly recurrences"),
            ({"day_of_month": 32}, "between 1 and 31"),
            ({"frequency": "daily"}, "invalid frequency"),
            ({"amount": Decimal("0.01"), "max_occurrences": 2}, "too small"),
        ],
    )
    def test_rejects_invalid_definitions(self, db_session, demo_user, expense_category, overrides, message):
        with pytest.raises(errors.ValidationError) as exc:
            _service(db_session).create(_payload(expense_category, **overrides), user_id=demo_user.id)
        assert message in exc.value.detail
        assert db_session.query(models.RecurringTransaction).count() == 0

    def test_category_must_match_type(self, db_session, demo_user, income_category):
        with pytest.raises(errors.ValidationError):
            _service(db_session).create(_payload(income_category, type="expense"), user_id=demo_user.id)

    def test_category_of_other_user_rejected(self, db_session, expense_category):
        other = models.User(email="other@example.com")
        db_session.add(other)
        db_session.commit()
        with pytest.raises(errors.ValidationError):
            _service(db_session).create(_payload(expense_category), user_id=other.id)


class TestPauseResume:
    @pytest.fixture
    def rule(self, db_session, demo_user, expense_category):
        return _service(db_session).create(_payload(expense_category), user_id=demo_user.id)

    def test_pause_records_timestamp_and_keeps_rows(self, db_session, demo_user, rule):
        paused = _service(db_session).pause(demo_user.id, rule.id)
        assert not paused.is_active
        assert paused.paused_at == FIXED_NOW
        assert paused.state == models.Paused(paused_at=FIXED_NOW)
        assert len(_tagged(db_session, rule.id)) == 3

    def test_pause_twice_is_invalid(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        with pytest.raises(errors.InvalidStateError):
            svc.pause(demo_user.id, rule.id)

    def test_resume_active_is_invalid(self, db_session, demo_user, rule):
        with pytest.raises(errors.InvalidStateError):
            _service(db_session).resume(demo_user.id, rule.id)

    def test_resume_without_changes(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        result = svc.resume(demo_user.id, rule.id)

        assert result.recurrence.is_active
        assert result.recurrence.paused_at is None
        assert result.created == []
        assert result.resolution is None
        assert len(_tagged(db_session, rule.id)) == 3

    def test_resume_recreates_deleted_occurrence(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        may = _tagged(db_session, rule.id)[-1]
        db_session.delete(may)
        db_session.commit()

        result = svc.resume(demo_user.id, rule.id)
        assert [t.date for t in result.created] == [date(2024, 5, 10)]

    def test_resume_in_later_month_skips_paused_months(self, db_session, demo_user, rule):
        _service(db_session).pause(demo_user.id, rule.id)
        result = _service(db_session, datetime(2024, 7, 20, 8, 0)).resume(demo_user.id, rule.id)

        assert [t.date for t in result.created] == [date(2024, 7, 10)]
        dates = [t.date for t in _tagged(db_session, rule.id)]
        assert date(2024, 6, 10) not in dates
        assert result.recurrence.generated_through == date(2024, 7, 31)

    def test_modified_row_blocks_resume(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        may = _tagged(db_session, rule.id)[-1]
        may.amount = Decimal("1200")
        db_session.commit()

        with pytest.raises(errors.ConflictError) as exc:
            svc.resume(demo_user.id, rule.id)

        assert [t.id for t in exc.value.existing_transactions] == [may.id]
        assert exc.value.recurrence.id == rule.id
        db_session.refresh(rule)
        assert not rule.is_active
        assert len(_tagged(db_session, rule.id)) == 3

    def test_rows_from_other_periods_do_not_conflict(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        april = _tagged(db_session, rule.id)[1]
        april.amount = Decimal("1")
        db_session.commit()

        result = svc.resume(demo_user.id, rule.id)
        assert result.recurrence.is_active

    def test_resume_update_overwrites_modified_row(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        may = _tagged(db_session, rule.id)[-1]
        may.amount = Decimal("1200")
        may.description = "Rent + fee"
        db_session.commit()

        result = svc.resume(demo_user.id, rule.id, on_conflict="update")

        assert result.resolution.strategy == models.ConflictStrategy.UPDATE
        assert [t.id for t in result.resolution.updated] == [may.id]
        db_session.refresh(may)
        assert may.amount == Decimal("1000.00")
        assert may.description == "Rent"
        assert may.recurring_id == rule.id
        assert len(_tagged(db_session, rule.id)) == 3

    def test_resume_update_moves_row_back_to_schedule(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        may = _tagged(db_session, rule.id)[-1]
        may.date = date(2024, 5, 20)
        db_session.commit()

        svc.resume(demo_user.id, rule.id, on_conflict="update")

        db_session.refresh(may)
        assert may.date == date(2024, 5, 10)
        assert len(_tagged(db_session, rule.id)) == 3

    def test_resume_create_keeps_modified_row(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        may = _tagged(db_session, rule.id)[-1]
        may.amount = Decimal("1200")
        db_session.commit()

        result = svc.resume(demo_user.id, rule.id, on_conflict="create")

        assert result.resolution.strategy == models.ConflictStrategy.CREATE
        assert [t.date for t in result.created] == [date(2024, 5, 10)]
        may_rows = [t for t in _tagged(db_session, rule.id) if t.date == date(2024, 5, 10)]
        assert sorted(t.amount for t in may_rows) == [Decimal("1000.00"), Decimal("1200.00")]

    def test_unknown_strategy_rejected(self, db_session, demo_user, rule):
        svc = _service(db_session)
        svc.pause(demo_user.id, rule.id)
        with pytest.raises(errors.ValidationError):
            svc.resume(demo_user.id, rule.id, on_conflict="merge")
        db_session.refresh(rule)
        assert not rule.is_active

    def test_other_user_cannot_see_or_touch(self, db_session, rule):
        other = models.User(email="other@example.com")
        db_session.add(other)
        db_session.commit()
        svc = _service(db_session)
        with pytest.raises(errors.NotFoundError):
            svc.get(other.id, rule.id)
        with pytest.raises(errors.NotFoundError):
            svc.pause(other.id, rule.id)


class TestDelete:
    @pytest.fixture
    def rule(self, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category, start_date=date(2024, 4, 10)), user_id=demo_user.id)
        # a row in the next period as well, e.g. from an earlier roll-forward
        svc.materializer.materialize(rule, date(2024, 6, 1), date(2024, 6, 30))
        db_session.commit()
        return rule

    def _dates(self, db, user_id):
        return [
            (t.date, t.recurring_id)
            for t in db.query(models.Transaction)
            .filter(models.Transaction.user_id == user_id)
            .order_by(models.Transaction.date)
            .all()
        ]

    def test_future_only(self, db_session, demo_user, rule):
        result = _service(db_session).delete(demo_user.id, rule.id, "future_only")
        assert (result.deleted, result.detached) == (1, 2)
        assert self._dates(db_session, demo_user.id) == [(date(2024, 4, 10), None), (date(2024, 5, 10), None)]
        assert db_session.get(models.RecurringTransaction, rule.id) is None

    def test_future_and_current(self, db_session, demo_user, rule):
        result = _service(db_session).delete(demo_user.id, rule.id, models.DeleteMode.FUTURE_AND_CURRENT)
        assert (result.deleted, result.detached) == (2, 1)
        assert self._dates(db_session, demo_user.id) == [(date(2024, 4, 10), None)]

    def test_all(self, db_session, demo_user, rule):
        result = _service(db_session).delete(demo_user.id, rule.id, "all")
        assert result.deleted == 3
        assert self._dates(db_session, demo_user.id) == []

    def test_invalid_mode(self, db_session, demo_user, rule):
        with pytest.raises(errors.ValidationError):
            _service(db_session).delete(demo_user.id, rule.id, "everything")
        assert db_session.get(models.RecurringTransaction, rule.id) is not None

    def test_missing_rule(self, db_session, demo_user):
        with pytest.raises(errors.NotFoundError):
            _service(db_session).delete(demo_user.id, 999, "all")


class TestMaterializeDue:
    def test_rolls_into_new_month_once(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(_payload(expense_category), user_id=demo_user.id)

        june = _service(db_session, datetime(2024, 6, 3, 6, 0))
        assert june.materialize_due() == {rule.id: 1}
        assert june.materialize_due() == {}
        assert [t.date for t in _tagged(db_session, rule.id)][-1] == date(2024, 6, 10)
        db_session.refresh(rule)
        assert rule.generated_through == date(2024, 6, 30)

    def test_skips_paused(self, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category), user_id=demo_user.id)
        svc.pause(demo_user.id, rule.id)

        assert _service(db_session, datetime(2024, 6, 3)).materialize_due() == {}
        assert len(_tagged(db_session, rule.id)) == 3


class TestList:
    def test_filters_and_pagination(self, db_session, demo_user, expense_category, income_category):
        svc = _service(db_session)
        for start in (date(2024, 5, 1), date(2024, 5, 2)):
            svc.create(_payload(expense_category, start_date=start), user_id=demo_user.id)
        salary = svc.create(
            _payload(income_category, description="Salary", start_date=date(2024, 5, 25)), user_id=demo_user.id
        )
        svc.pause(demo_user.id, salary.id)

        page = svc.list_recurrences(user_id=demo_user.id, per_page=2)
        assert (page.total, page.total_pages, len(page.data)) == (3, 2, 2)
        assert svc.list_recurrences(user_id=demo_user.id, type="income").total == 1
        assert svc.list_recurrences(user_id=demo_user.id, is_active=False).data[0].id == salary.id
        assert svc.list_recurrences(user_id=demo_user.id, is_active=True).total == 2

    def test_preview(self, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category, max_occurrences=4), user_id=demo_user.id)
        assert svc.preview(demo_user.id, rule.id, date(2024, 1, 1), date(2024, 12, 31)) == [
            date(2024, 3, 10),
            date(2024, 4, 10),
            date(2024, 5, 10),
            date(2024, 6, 10),
        ]
        with pytest.raises(errors.ValidationError):
            svc.preview(demo_user.id, rule.id, date(2024, 2, 1), date(2024, 1, 1))


class TestInstallmentsAcrossPause:
    def test_paused_months_do_not_consume_installments(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(
                expense_category,
                amount=Decimal("100"),
                description="Phone",
                start_date=date(2024, 4, 10),
                max_occurrences=3,
            ),
            user_id=demo_user.id,
        )
        _service(db_session).pause(demo_user.id, rule.id)
        result = _service(db_session, datetime(2024, 7, 20)).resume(demo_user.id, rule.id)
        assert [(t.date, t.description) for t in result.created] == [(date(2024, 7, 10), "Phone (3/3)")]

        for month in (8, 9, 10):
            assert _service(db_session, datetime(2024, month, 2)).materialize_due() == {rule.id: 0}

        rows = _tagged(db_session, rule.id)
        assert [t.date for t in rows] == [date(2024, 4, 10), date(2024, 5, 10), date(2024, 7, 10)]
        assert [t.amount for t in rows] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(t.amount for t in rows) == Decimal("100")

    def test_resumed_installment_row_is_not_a_conflict(self, db_session, demo_user, expense_category):
        rule = _service(db_session).create(
            _payload(expense_category, amount=Decimal("100"), start_date=date(2024, 4, 10), max_occurrences=3),
            user_id=demo_user.id,
        )
        july = _service(db_session, datetime(2024, 7, 20))
        july.pause(demo_user.id, rule.id)
        july.resume(demo_user.id, rule.id)
        july.pause(demo_user.id, rule.id)

        result = july.resume(demo_user.id, rule.id)
        assert result.created == []
        assert len(_tagged(db_session, rule.id)) == 3


class TestConcurrency:
    def test_concurrent_resumes_run_one_at_a_time(self, engine, db_session, demo_user, expense_category):
        svc = _service(db_session)
        rule = svc.create(_payload(expense_category), user_id=demo_user.id)
        svc.pause(demo_user.id, rule.id)
        db_session.delete(_tagged(db_session, rule.id)[-1])
        db_session.commit()
        user_id, rule_id = demo_user.id, rule.id

        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        failures: list[BaseException] = []

        def worker():
            session = factory()
            try:
                barrier.wait()
                _service(session).resume(user_id, rule_id)
                outcomes.append("resumed")
            except errors.InvalidStateError:
                outcomes.append("invalid")
            except BaseException as exc:  # surfaced by the assertion below
                failures.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert failures == []
        assert sorted(outcomes) == ["invalid", "resumed"]
        db_session.expire_all()
        assert [t.date for t in _tagged(db_session, rule_id)].count(date(2024, 5, 10)) == 1
