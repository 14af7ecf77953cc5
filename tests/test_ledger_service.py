"""Tests for the balance ledger: conditional debits and permanent ownership."""

from __future__ import annotations

import pytest

from storybot.services.errors import (
    ConcurrentPurchaseConflict,
    InsufficientBalance,
    NotFound,
)
from storybot.services.ledger_service import BalanceLedger
from tests.fixtures.story_fixtures import CELLAR_DOOR, PICK_LOCK, STORY_ID

USER_ID = 1001


class TestBalance:
    async def test_unknown_user_has_zero_balance(self, session) -> None:
        assert await BalanceLedger(session).get_balance(42) == 0

    async def test_credit(self, session, make_user) -> None:
        await make_user(USER_ID, balance=5)

        balance = await BalanceLedger(session).credit(USER_ID, 10)

        assert balance == 15

    @pytest.mark.parametrize("amount", [0, -3])
    async def test_credit_must_be_positive(self, session, make_user, amount) -> None:
        await make_user(USER_ID, balance=5)

        with pytest.raises(ValueError):
            await BalanceLedger(session).credit(USER_ID, amount)

    async def test_credit_unknown_user(self, session) -> None:
        with pytest.raises(NotFound):
            await BalanceLedger(session).credit(42, 10)


class TestTryDebit:
    async def test_debit_when_covered(self, session, make_user) -> None:
        await make_user(USER_ID, balance=15)
        ledger = BalanceLedger(session)

        assert await ledger.try_debit(USER_ID, 15) is True
        await session.commit()

        assert await ledger.get_balance(USER_ID) == 0

    async def test_debit_rejected_entirely(self, session, make_user) -> None:
        """A debit that would go negative changes nothing."""
        await make_user(USER_ID, balance=10)
        ledger = BalanceLedger(session)

        assert await ledger.try_debit(USER_ID, 15) is False
        await session.commit()

        assert await ledger.get_balance(USER_ID) == 10

    async def test_negative_amount(self, session, make_user) -> None:
        await make_user(USER_ID, balance=10)

        with pytest.raises(ValueError):
            await BalanceLedger(session).try_debit(USER_ID, -1)


class TestPurchasePath:
    async def test_purchase_debits_and_records(self, session, story, make_user) -> None:
        await make_user(USER_ID, balance=20)
        ledger = BalanceLedger(session)

        purchase = await ledger.purchase_path(USER_ID, STORY_ID, PICK_LOCK, 15)

        assert purchase.price_paid == 15
        assert purchase.balance_after == 5
        assert await ledger.has_purchased(USER_ID, PICK_LOCK)
        assert await ledger.owned_choice_ids(USER_ID, [PICK_LOCK, CELLAR_DOOR]) == {PICK_LOCK}
        assert await ledger.count_purchases(USER_ID) == 1

    async def test_insufficient_balance(self, session, story, make_user) -> None:
        await make_user(USER_ID, balance=10)
        ledger = BalanceLedger(session)

        with pytest.raises(InsufficientBalance) as exc_info:
            await ledger.purchase_path(USER_ID, STORY_ID, PICK_LOCK, 15)

        assert exc_info.value.required == 15
        assert exc_info.value.available == 10
        assert await ledger.get_balance(USER_ID) == 10
        assert not await ledger.has_purchased(USER_ID, PICK_LOCK)

    async def test_second_purchase_rolls_back_debit(self, session, story, make_user) -> None:
        """The unique ownership row rolls the whole purchase back, debit included."""
        await make_user(USER_ID, balance=40)
        ledger = BalanceLedger(session)
        await ledger.purchase_path(USER_ID, STORY_ID, PICK_LOCK, 15)

        with pytest.raises(ConcurrentPurchaseConflict):
            await ledger.purchase_path(USER_ID, STORY_ID, PICK_LOCK, 15)

        assert await ledger.get_balance(USER_ID) == 25
        assert await ledger.count_purchases(USER_ID) == 1

    async def test_record_purchase_duplicate_is_silent(self, session, story, make_user) -> None:
        await make_user(USER_ID, balance=0)
        ledger = BalanceLedger(session)

        assert await ledger.record_purchase(USER_ID, STORY_ID, CELLAR_DOOR, 0) is True
        await session.commit()

        assert await ledger.record_purchase(USER_ID, STORY_ID, CELLAR_DOOR, 0) is False
        assert await ledger.count_purchases(USER_ID) == 1

    async def test_owned_choice_ids_empty_input(self, session) -> None:
        assert await BalanceLedger(session).owned_choice_ids(USER_ID, []) == set()
