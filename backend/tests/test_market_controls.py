"""
Tests for the market control pipeline and regime resolution.
"""
from datetime import date, datetime

import pytest

from services.engine_config import EngineConfig
from services.market_controls import (
    MacroState,
    MarketControlPipeline,
    Regime,
    resolve_regime,
)


def _make_pipeline(**overrides):
    return MarketControlPipeline(EngineConfig(**overrides))


def _only(stage, **overrides):
    """Pipeline with every stage but `stage` switched off."""
    flags = {
        "mean_reversion_enabled": False,
        "valuation_enabled": False,
        "volatility_cap_enabled": False,
        "circuit_breaker_enabled": False,
    }
    flags[f"{stage}_enabled"] = True
    return _make_pipeline(**flags, **overrides)


class TestRegime:
    def test_cutover_year_is_historical(self):
        assert resolve_regime(datetime(2024, 12, 31, 23, 59), 2024) == Regime.HISTORICAL
        assert resolve_regime(date(2025, 1, 1), 2024) == Regime.SIMULATED
        assert resolve_regime(date(1990, 5, 1), 2024) == Regime.HISTORICAL


class TestHistoricalIdentity:
    @pytest.mark.parametrize("r", [-0.9, -0.2, 0.0, 0.03, 0.5, 2.0])
    def test_identity_before_cutover(self, r):
        pipeline = _make_pipeline()
        before = pipeline.state.to_dict()
        result = pipeline.apply(r, Regime.HISTORICAL)
        assert result.adjusted_return == r
        assert result.mean_reversion == result.circuit_breaker == 0.0
        assert pipeline.state.to_dict() == before


class TestStages:
    def test_mean_reversion_step(self):
        pipeline = _only("mean_reversion")
        mu = 0.07 / 252
        assert pipeline.apply(0.05, Regime.SIMULATED).adjusted_return == pytest.approx(0.05 - 0.15 * (0.05 - mu))

    def test_mean_reversion_historical_target(self):
        pipeline = _only("mean_reversion", control_period="weekly")
        assert pipeline.long_run_target(Regime.HISTORICAL) == pytest.approx(0.10 / 52)
        assert pipeline.long_run_target(Regime.SIMULATED) == pytest.approx(0.07 / 52)

    def test_valuation_only_dampens_gains(self):
        pipeline = _only("valuation")
        pipeline.state.current_pe = 40
        assert pipeline.apply(-0.05, Regime.SIMULATED).adjusted_return == -0.05
        assert pipeline.apply(0.05, Regime.SIMULATED, update_state=False).adjusted_return == pytest.approx(0.05 * 0.2)

    @pytest.mark.parametrize("pe,factor", [
        (10, 1.0), (16, 0.7), (20.5, 0.55), (25, 0.4), (30, 0.3), (35, 0.2), (60, 0.2),
    ])
    def test_valuation_bands(self, pe, factor):
        assert _make_pipeline().valuation_factor(pe) == pytest.approx(factor)

    @pytest.mark.parametrize("vol,cap", [
        (0.10, 0.40), (0.15, 0.40), (0.225, 0.325), (0.30, 0.25), (0.40, 0.20), (0.50, 0.15), (0.9, 0.15),
    ])
    def test_volatility_cap_bands(self, vol, cap):
        assert _make_pipeline().return_cap(vol) == pytest.approx(cap)

    def test_volatility_cap_is_symmetric(self):
        pipeline = _only("volatility_cap")
        pipeline.state.recent_volatility = 0.6
        assert pipeline.apply(0.5, Regime.SIMULATED, update_state=False).adjusted_return == pytest.approx(0.15)
        assert pipeline.apply(-0.5, Regime.SIMULATED, update_state=False).adjusted_return == pytest.approx(-0.15)

    @pytest.mark.parametrize("r", [-0.10, -0.04, 0.0, 0.07, 0.10])
    def test_circuit_breaker_passes_small_moves(self, r):
        assert _only("circuit_breaker").apply_circuit_breaker(r) == r

    @pytest.mark.parametrize("r,expected", [(0.30, 0.20), (-0.30, -0.20), (0.12, 0.11)])
    def test_circuit_breaker_dampens_only_excess(self, r, expected):
        assert _only("circuit_breaker").apply_circuit_breaker(r) == pytest.approx(expected)

    def test_weekly_threshold(self):
        pipeline = _only("circuit_breaker", control_period="weekly")
        assert pipeline.apply_circuit_breaker(0.15) == 0.15
        assert pipeline.apply_circuit_breaker(0.30) == pytest.approx(0.25)

    def test_stage_deltas_sum_to_total_change(self):
        pipeline = _make_pipeline()
        pipeline.state.current_pe = 28
        result = pipeline.apply(0.35, Regime.SIMULATED)
        total = result.mean_reversion + result.valuation_dampening + result.volatility_cap + result.circuit_breaker
        assert result.original_return + total == pytest.approx(result.adjusted_return)
        assert result.adjusted_return < 0.35


class TestMacroState:
    def test_state_update(self):
        pipeline = _make_pipeline()
        pipeline.update_macro_state(0.02)
        assert pipeline.state.current_pe == pytest.approx(16 * (1 + 0.02 - 0.05 / 252))
        expected_vol = (0.94 * 0.15 ** 2 + 0.06 * 0.02 ** 2 * 252) ** 0.5
        assert pipeline.state.recent_volatility == pytest.approx(expected_vol)
        assert list(pipeline.state.historical_returns) == [0.02]

    def test_clamps(self):
        pipeline = _make_pipeline()
        for _ in range(50):
            pipeline.update_macro_state(0.5)
        assert pipeline.state.current_pe == 50.0
        assert pipeline.state.recent_volatility == 1.0
        for _ in range(50):
            pipeline.update_macro_state(-0.5)
        assert pipeline.state.current_pe == 5.0

    def test_return_window_holds_ten(self):
        pipeline = _make_pipeline()
        for i in range(15):
            pipeline.update_macro_state(i / 1000)
        assert list(pipeline.state.historical_returns) == [i / 1000 for i in range(5, 15)]

    def test_daily_returns_folded_once_per_day(self):
        pipeline = _make_pipeline()
        pipeline.record_step(1, 0.01)
        pipeline.record_step(1, 0.03)
        assert len(pipeline.state.historical_returns) == 0
        pipeline.record_step(2, 0.0)
        assert list(pipeline.state.historical_returns) == [pytest.approx(0.02)]
        pipeline.close_period()
        assert len(pipeline.state.historical_returns) == 2

    def test_state_dict_round_trip(self):
        state = MacroState(current_pe=21.5, recent_volatility=0.2)
        state.historical_returns.extend([0.01, -0.02])
        assert MacroState.from_dict(state.to_dict()).to_dict() == state.to_dict()


class TestDiagnostics:
    def test_diagnostics_do_not_mutate_live_state(self):
        pipeline = _make_pipeline()
        before = pipeline.state.to_dict()
        results = pipeline.diagnostics([-0.3, 0.0, 0.3])
        assert len(results) == 3
        assert results[0]["adjusted_return"] > -0.3
        assert pipeline.state.to_dict() == before

    def test_reset(self):
        pipeline = _make_pipeline()
        pipeline.update_macro_state(0.1)
        pipeline.reset()
        assert pipeline.state.current_pe == 16.0
        assert pipeline.state.recent_volatility == 0.15
