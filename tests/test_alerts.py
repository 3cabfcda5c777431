"""Threshold alerting and liquidation scanner tests."""

from decimal import Decimal

from tradeloop.config import AlertConfig, LiquidationConfig
from tradeloop.engine.alerts import LiquidationScanner, ThresholdAlerter, severity_for
from tradeloop.models import AccountHealth
from tradeloop.state import StateStore
from tests.venue_mocks import mid_book, snapshot

D = Decimal


def alert_config() -> AlertConfig:
    return AlertConfig(
        price_breakpoints=(D(1), D(5), D(10)),
        spread_breakpoints=(D("0.5"), D(1), D(2)),
        liquidity_breakpoints=(D(20), D(50), D(80)),
    )


def liq_config(**overrides) -> LiquidationConfig:
    params = dict(
        liquidation_threshold=D("1.0"),
        min_position_size=D(1),
        max_position_size=D(1000),
        gas_per_liquidation=D(5),
        health_breakpoints=(D(10), D(25), D(50)),
    )
    params.update(overrides)
    return LiquidationConfig(**params)


def test_severity_breakpoints():
    bp = (D(1), D(5), D(10))
    assert severity_for(D("0.5"), bp) is None
    assert severity_for(D(1), bp) == "medium"
    assert severity_for(D(7), bp) == "high"
    assert severity_for(D(10), bp) == "critical"


def test_price_move_raises_breach():
    alerter = ThresholdAlerter(alert_config())
    breaches = alerter.compare(mid_book("eth", 100), mid_book("eth", 106))
    price = [b for b in breaches if b.metric == "price"]
    assert len(price) == 1
    assert price[0].severity == "high"
    assert price[0].change == D(6)


def test_liquidity_drop_raises_breach():
    alerter = ThresholdAlerter(alert_config())
    before = snapshot("eth", [(99, 100)], [(101, 100)])
    after = snapshot("eth", [(99, 10)], [(101, 10)])
    (breach,) = alerter.compare(before, after)
    assert breach.metric == "liquidity"
    assert breach.severity == "critical"


def test_scan_compares_against_previous_snapshot_only():
    alerter = ThresholdAlerter(alert_config())
    state = StateStore()
    state.apply_snapshots({"eth": mid_book("eth", 100)})
    assert alerter.scan(state.fresh_snapshots(), state) == []
    state.apply_snapshots({"eth": mid_book("eth", 100)})
    assert alerter.scan(state.fresh_snapshots(), state) == []
    state.apply_snapshots({"eth": mid_book("eth", 102)})
    (breach,) = alerter.scan(state.fresh_snapshots(), state)
    assert breach.severity == "medium"


def test_liquidation_bonus_is_clamped():
    scanner = LiquidationScanner(liq_config())
    deep = AccountHealth("acct", "eth", D("0.5"), D(10), D(100))
    shallow = AccountHealth("acct", "eth", D("0.997"), D(10), D(100))
    assert scanner.estimated_bonus(deep) == D(150)
    assert scanner.estimated_bonus(shallow) == D(50)


def test_liquidation_scan_filters_unprofitable_candidates():
    scanner = LiquidationScanner(liq_config(gas_per_liquidation=D(60)))
    accounts = [
        AccountHealth("healthy", "eth", D("1.2"), D(10), D(100)),
        AccountHealth("tiny", "eth", D("0.5"), D("0.1"), D(100)),
        AccountHealth("risky", "eth", D("0.95"), D(10), D(100)),
        AccountHealth("deep", "eth", D("0.5"), D(10), D(100)),
    ]
    candidates = scanner.scan(accounts)
    assert [c.account for c in candidates] == ["deep"]
    assert candidates[0].risk_level == "low"
    assert scanner.candidate_severity(candidates[0]) == "critical"


def test_health_ratio_drop_breach():
    scanner = LiquidationScanner(liq_config())
    prior = {"acct": AccountHealth("acct", "eth", D("2.0"), D(10), D(100))}
    now = [AccountHealth("acct", "eth", D("1.4"), D(10), D(100))]
    (breach,) = scanner.health_breaches(now, prior)
    assert breach.metric == "health:acct"
    assert breach.change == D(30)
    assert breach.severity == "high"
