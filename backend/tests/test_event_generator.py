"""
Tests for market event records, deterministic event generation and the scenario catalog.
"""
from datetime import datetime, timedelta

import pytest

from services.crash_scenarios import (
    all_scenarios,
    build_custom_event,
    build_scenario_event,
    summarize_scenario,
)
from services.early_warning import EarlyWarningSystem, MarketIndicators
from services.engine_config import EngineConfig
from services.event_generator import (
    SEVERITY_PROFILES,
    EventGenerator,
    build_cascading_stages,
    interval_probability,
    select_severity,
    volatility_decay_for,
)
from services.market_controls import Regime
from services.market_events import (
    CascadingStage,
    EventImpact,
    EventNotFoundError,
    EventStatus,
    EventType,
    MarketEvent,
    RecoveryPattern,
    Severity,
)
from services.price_impact import event_impact
from services.random_streams import DateSeededStreams


def _make_event(stages=None, duration=100):
    return MarketEvent(
        id="evt",
        name="Test Event",
        type=EventType.MARKET_CRASH,
        severity=Severity.MODERATE,
        activated_at=datetime(2030, 1, 1),
        impact=EventImpact(market=-0.2),
        cascading_stages=stages or [CascadingStage(0, 1.0), CascadingStage(10, 0.5), CascadingStage(50, 0.1)],
        recovery_pattern=RecoveryPattern("gradual", duration, 0.95),
    )


def _make_generator(config=None, seed=0, early_warning=None):
    return EventGenerator(config or EngineConfig(), DateSeededStreams(seed), early_warning)


class TestMarketEvent:
    def test_stepwise_stage_lookup(self):
        event = _make_event()
        assert event.stage_multiplier(0) == 1.0
        assert event.stage_multiplier(9.9) == 1.0
        assert event.stage_multiplier(10) == 0.5
        assert event.stage_multiplier(49) == 0.5
        assert event.stage_multiplier(80) == 0.1

    def test_unsorted_stages_rejected(self):
        with pytest.raises(ValueError):
            _make_event([CascadingStage(0, 1.0), CascadingStage(20, 0.5), CascadingStage(10, 0.2)])

    def test_first_stage_must_be_full_impact(self):
        with pytest.raises(ValueError):
            _make_event([CascadingStage(0, 0.8), CascadingStage(10, 0.5)])
        with pytest.raises(ValueError):
            _make_event([CascadingStage(1, 1.0)])

    def test_expiry(self):
        event = _make_event(duration=100)
        assert not event.is_expired(datetime(2030, 1, 1) + timedelta(days=100))
        assert event.is_expired(datetime(2030, 1, 1) + timedelta(days=101))
        assert event.ends_at == datetime(2030, 4, 11)

    def test_deactivate(self):
        event = _make_event()
        event.deactivate(datetime(2030, 2, 1))
        assert event.status == EventStatus.DEACTIVATED
        assert not event.applies_at(datetime(2030, 2, 2))

    def test_dict_round_trip(self):
        event = _make_event()
        assert MarketEvent.from_dict(event.to_dict()) == event


class TestGeneratorHelpers:
    def test_severity_bands(self):
        assert select_severity(0.05) == Severity.CATASTROPHIC
        assert select_severity(0.10) == Severity.SEVERE
        assert select_severity(0.5) == Severity.MODERATE
        assert select_severity(0.70) == Severity.MINOR
        assert select_severity(0.99) == Severity.MINOR

    def test_interval_probability(self):
        assert interval_probability(0.15, 365) == pytest.approx(0.15)
        assert interval_probability(0.15, 90) == pytest.approx(1 - 0.85 ** (90 / 365))
        assert interval_probability(0.0, 90) == 0.0

    def test_long_events_decay_slowly(self):
        assert volatility_decay_for(3650) > 0.999
        assert volatility_decay_for(30) < 0.96
        # Half the elevated volatility remains at half the duration
        assert volatility_decay_for(2000) ** 1000 == pytest.approx(0.5)

    def test_stage_counts(self):
        counts = {s: len(p.stage_fractions) for s, p in SEVERITY_PROFILES.items()}
        assert counts == {
            Severity.CATASTROPHIC: 13,
            Severity.SEVERE: 7,
            Severity.MODERATE: 5,
            Severity.MINOR: 4,
        }


class TestGenerateEvent:
    def setup_method(self):
        self.generator = _make_generator()
        self.moment = datetime(2031, 6, 15)

    def test_same_inputs_same_event(self):
        other = _make_generator()
        for event_type in EventType:
            a = self.generator.generate_event(self.moment, event_type, salt=3)
            b = other.generate_event(self.moment, event_type, salt=3)
            assert a.to_dict() == b.to_dict()

    def test_different_salt_or_date_changes_event(self):
        a = self.generator.generate_event(self.moment, EventType.MARKET_CRASH)
        b = self.generator.generate_event(self.moment, EventType.MARKET_CRASH, salt=1)
        assert a.id != b.id
        assert a.impact.market != b.impact.market
        c = self.generator.generate_event(self.moment + timedelta(days=1), EventType.MARKET_CRASH)
        assert a.impact.market != c.impact.market

    def test_generated_events_respect_profiles(self):
        for day in range(200):
            moment = self.moment + timedelta(days=day)
            for event_type in EventType:
                event = self.generator.generate_event(moment, event_type)
                profile = SEVERITY_PROFILES[event.severity]
                low, high = profile.impact_range
                assert -high <= event.impact.market <= -low
                assert profile.duration_range[0] <= event.recovery_pattern.duration_days <= profile.duration_range[1]
                assert len(event.cascading_stages) == len(profile.stage_fractions)
                offsets = [s.day_offset for s in event.cascading_stages]
                assert offsets == sorted(offsets)
                assert event.cascading_stages[0] == CascadingStage(0, 1.0)
                assert event.recovery_pattern.type == profile.recovery_type

    def test_sector_crash_hits_one_sector_hardest(self):
        event = self.generator.generate_event(self.moment, EventType.SECTOR_CRASH)
        impacts = sorted(event.impact.sector_impacts.values())
        assert impacts[0] == pytest.approx(event.impact.market * 1.5)
        assert impacts[1:] == pytest.approx([event.impact.market * 0.3] * 5)

    def test_generation_does_not_touch_state(self):
        self.generator.generate_event(self.moment, EventType.CORRECTION)
        assert self.generator.last_check_day is None
        assert self.generator.generated == []


class TestAdvance:
    def test_historical_regime_never_generates(self):
        generator = _make_generator(EngineConfig(annual_crash_probability=1.0))
        assert generator.advance(datetime(2020, 1, 1), Regime.HISTORICAL) == []
        assert generator.last_check_day is None

    def test_certain_crash_generated_and_cooldown_applies(self):
        config = EngineConfig(annual_crash_probability=1.0, check_interval_days=90, min_days_between_events=180)
        generator = _make_generator(config)
        first = generator.advance(datetime(2025, 6, 1), Regime.SIMULATED)
        assert len(first) == 1
        assert first[0].type == EventType.MARKET_CRASH

        # Inside the check interval: no roll
        assert generator.advance(datetime(2025, 7, 1), Regime.SIMULATED) == []
        # Interval elapsed but still cooling down
        assert generator.advance(datetime(2025, 9, 1), Regime.SIMULATED) == []
        # Cooldown consumed that interval, so the next roll waits another 90 days
        assert generator.advance(datetime(2025, 11, 1), Regime.SIMULATED) == []
        assert len(generator.advance(datetime(2025, 12, 1), Regime.SIMULATED)) == 1

    def test_priority_order(self):
        config = EngineConfig(
            annual_crash_probability=0.0,
            annual_correction_probability=1.0,
            annual_sector_crash_probability=1.0,
        )
        events = _make_generator(config).advance(datetime(2026, 3, 1), Regime.SIMULATED)
        assert [e.type for e in events] == [EventType.CORRECTION]

    def test_zero_probabilities_never_generate(self):
        config = EngineConfig(
            annual_crash_probability=0.0,
            annual_correction_probability=0.0,
            annual_sector_crash_probability=0.0,
        )
        generator = _make_generator(config)
        moment = datetime(2025, 1, 1)
        for _ in range(40):
            moment += timedelta(days=90)
            assert generator.advance(moment, Regime.SIMULATED) == []

    def test_disabled_generation(self):
        generator = _make_generator(EngineConfig(event_generation_enabled=False, annual_crash_probability=1.0))
        assert generator.advance(datetime(2027, 1, 1), Regime.SIMULATED) == []

    def test_replay_is_deterministic(self):
        def run():
            generator = _make_generator(seed=99)
            moment, events = datetime(2025, 1, 1), []
            for _ in range(120):
                moment += timedelta(days=30)
                events.extend(e.to_dict() for e in generator.advance(moment, Regime.SIMULATED))
            return events

        first = run()
        assert first == run()
        assert len(first) > 0

    def test_early_warning_raises_crash_probability(self):
        ews = EarlyWarningSystem()
        generator = _make_generator(EngineConfig(annual_crash_probability=0.2), early_warning=ews)
        hot = MarketIndicators(average_pe=40, volatility_ratio=3.0, return_6m=0.6, return_12m=1.2,
                               sector_returns_12m={"Technology": 0.9}, sentiment=0.9, liquidity=0.2)
        assert generator.crash_probability(hot, datetime(2026, 1, 1)) == pytest.approx(0.6)
        assert generator.crash_probability(None, datetime(2026, 1, 1)) == 0.2

    def test_snapshot_round_trip(self):
        generator = _make_generator(EngineConfig(annual_crash_probability=1.0))
        generator.advance(datetime(2025, 6, 1), Regime.SIMULATED)
        other = _make_generator()
        other.load_snapshot(generator.to_snapshot())
        assert other.last_check_day == generator.last_check_day
        assert other.last_event_day == generator.last_event_day


class TestScenarioCatalog:
    def test_all_scenarios_build(self):
        moment = datetime(2010, 1, 4)
        for scenario in all_scenarios():
            event = build_scenario_event(scenario["id"], moment)
            assert event.type in set(EventType)
            assert event.cascading_stages[0] == CascadingStage(0, 1.0)

    def test_type_aliases(self):
        moment = datetime(2030, 1, 1)
        assert build_scenario_event("flash_crash_2010", moment).type == EventType.MARKET_CRASH
        assert build_scenario_event("banking_crisis", moment).type == EventType.MARKET_CRASH

    def test_unknown_scenario(self):
        with pytest.raises(EventNotFoundError):
            build_scenario_event("no_such_crash", datetime(2030, 1, 1))

    def test_summary(self):
        summary = summarize_scenario(all_scenarios()[2])
        assert summary["id"] == "financial_crisis_2008"
        assert summary["historical"] is True
        assert summary["duration_days"] == 2375

    def test_custom_event_uses_severity_profile(self):
        event = build_custom_event("c1", datetime(2030, 1, 1), -0.45, severity=Severity.CATASTROPHIC)
        multipliers = [s.multiplier for s in event.cascading_stages]
        assert multipliers == list(SEVERITY_PROFILES[Severity.CATASTROPHIC].stage_multipliers)
        assert event.recovery_pattern.duration_days == 3650
        assert event.impact.sector_impacts == {}
        assert event.impact.volatility_multiplier == 7.5

    @pytest.mark.parametrize("duration", [1, 5, 10, 30])
    def test_short_custom_event_keeps_full_day_zero_impact(self, duration):
        start = datetime(2030, 1, 1)
        event = build_custom_event("c2", start, -0.45, severity=Severity.CATASTROPHIC, duration_days=duration)
        offsets = [s.day_offset for s in event.cascading_stages]
        assert offsets == sorted(set(offsets))
        assert event.stage_multiplier(0) == 1.0
        assert event_impact(event, "Technology", start) == pytest.approx(-0.45)
        assert event_impact(event, "Technology", start + timedelta(days=1)) == pytest.approx(-0.45 * 0.95)

    def test_stage_offsets_unchanged_for_profile_durations(self):
        profile = SEVERITY_PROFILES[Severity.MINOR]
        stages = build_cascading_stages(profile, 90)
        assert [s.day_offset for s in stages] == [0, 9, 27, 54]
