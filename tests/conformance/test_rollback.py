"""
Rollback Conformance Tests

INVARIANT: An operation either fully succeeds or has no effect.

    - A rejected operation (any LendingError raised by the ledger) leaves
      the position record and the journal unchanged.
    - A Pool Ledger failure inside a market call discards the staged
      position change, so the position ledger and the Pool Ledger never
      disagree about collateral or debt.
    - A failed call moves no value: wallets, deposits, lent-out amounts and
      collected fees read the same before and after, including for
      liquidate, which moves value in two pools.

These tests inject Pool Ledger failures at arbitrary points in arbitrary
operation sequences and compare the two ledgers afterwards.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st

from lending import (
    AccountPositionLedger, MarketOrchestrator, MemoryAuditLog, PositionChanged,
    LendingError, PoolError,
)
from tests.fakes import FlakyPoolLedger
from tests.support import WETH, WETH_SHADOW, build_store, set_risk


ACCOUNTS = ("alice", "bob")

# Pool Ledger methods a failure can be injected into, per market operation
POOL_CALLS = {
    "deposit": ("deposit_for",),
    "withdraw": ("withdraw_for",),
    "borrow": ("borrow_for",),
    "repay": ("repay_for",),
    "liquidate": ("repay_for", "seize_for", "liquidate_for"),
}

# (ltv %, liquidation threshold %) the admin may switch WETH to mid-sequence
RISK_LEVELS = [(50, 70), (20, 30), (75, 80)]


@st.composite
def market_step(draw):
    """(operation, account, amount, failing Pool Ledger method or None)"""
    name = draw(st.sampled_from(sorted(POOL_CALLS)))
    return (
        name,
        draw(st.sampled_from(ACCOUNTS)),
        draw(st.integers(min_value=0, max_value=5_000)),
        draw(st.one_of(st.none(), st.sampled_from(POOL_CALLS[name]))),
    )


risk_step = st.tuples(st.just("risk"), st.sampled_from(RISK_LEVELS))


def build_market():
    audit = MemoryAuditLog()
    store = build_store(audit=audit)
    pools = FlakyPoolLedger()
    pools.supply_liquidity(WETH_SHADOW, 10 ** 9)
    # Wallets hold enough shadow tokens to repay any debt plus fees
    for account in ACCOUNTS:
        pools.mint(account, WETH_SHADOW, 10 ** 6)
    market = MarketOrchestrator(store, AccountPositionLedger(store), pools, audit)
    return market, pools, audit


def pool_state(pools):
    """Every balance the Pool Ledger holds for the test accounts."""
    return {
        'wallets': {(a, p): pools.balance_of(a, p) for a in ACCOUNTS for p in (WETH, WETH_SHADOW)},
        'deposits': {a: pools.deposit_of(a, WETH) for a in ACCOUNTS},
        'lent_out': (pools.lent_out(WETH), pools.lent_out(WETH_SHADOW)),
        'fees': pools.fees_collected(WETH_SHADOW),
    }


def run_step(market, name, account, amount):
    if name == "liquidate":
        target = ACCOUNTS[1 - ACCOUNTS.index(account)]
        return market.liquidate(account, target, "WETH", "asset", amount)
    return getattr(market, name)(account, "WETH", "asset", amount)


class TestRollbackProperties:
    """Ledger and Pool Ledger stay in agreement under injected failures."""

    @given(st.lists(st.one_of(market_step(), risk_step), min_size=1, max_size=30))
    @settings(max_examples=150)
    def test_failed_calls_have_no_effect(self, steps):
        """
        PROPERTY: After any sequence with injected Pool Ledger failures,
        recorded collateral equals deposited funds and recorded debt equals
        lent-out funds, and every failed call left both ledgers as they were.
        """
        market, pools, audit = build_market()

        for step in steps:
            if step[0] == "risk":
                ltv, threshold = step[1]
                set_risk(market.config, "WETH", ltv, threshold)
                continue
            name, account, amount, fail_at = step
            positions = {a: market.ledger.get_position(a, WETH) for a in ACCOUNTS}
            balances = pool_state(pools)
            journal_length = len(market.ledger.journal)
            events = len(audit.of_type(PositionChanged))
            if fail_at is not None:
                pools.fail_next(fail_at)
            try:
                run_step(market, name, account, amount)
            except LendingError as e:
                note(f"{name} {account} {amount} failed: {e!r}")
                assert {a: market.ledger.get_position(a, WETH) for a in ACCOUNTS} == positions
                assert pool_state(pools) == balances
                assert len(market.ledger.journal) == journal_length
                assert len(audit.of_type(PositionChanged)) == events
            finally:
                # An unused injection must not leak into the next step
                pools.clear_failures()

        for account in ACCOUNTS:
            position = market.ledger.get_position(account, WETH)
            assert position.collateral_amount == pools.deposit_of(account, WETH)
        assert market.ledger.total_debt(WETH) == pools.lent_out(WETH_SHADOW)

    @given(st.integers(min_value=1, max_value=10_000), st.integers(min_value=1, max_value=10_000))
    @settings(max_examples=50)
    def test_pool_failure_after_ledger_accept(self, deposit, withdraw):
        """
        PROPERTY: A withdraw the ledger accepts but the Pool Ledger refuses
        leaves the collateral untouched.
        """
        market, pools, _ = build_market()
        market.deposit("alice", "WETH", "asset", deposit)
        pools.fail_next("withdraw_for")
        try:
            market.withdraw("alice", "WETH", "asset", withdraw)
        except LendingError as e:
            if withdraw <= deposit:
                assert isinstance(e, PoolError)
        else:
            raise AssertionError("injected failure was not raised")
        assert market.ledger.get_position("alice", WETH).collateral_amount == deposit
        assert pools.deposit_of("alice", WETH) == deposit
