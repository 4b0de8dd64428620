"""
Tests for bounded engine configuration and atomic updates.
"""
import pytest

from services.engine_config import ConfigurationError, EngineConfig, apply_update


class TestDescribe:
    def test_every_key_described(self):
        schema = EngineConfig.describe()
        assert set(schema) == set(EngineConfig.model_fields)

    def test_bounds_and_types(self):
        schema = EngineConfig.describe()
        assert schema["garch_alpha"] == {"type": "float", "min": 0.0, "max": 1.0, "value": 0.09}
        assert schema["check_interval_days"]["type"] == "int"
        assert schema["valuation_enabled"]["type"] == "bool"
        assert schema["valuation_enabled"]["min"] is None
        assert schema["control_period"]["type"] == "choice"

    def test_describe_reports_current_values(self):
        config = apply_update(EngineConfig(), {"stress_multiplier": 2.0})
        assert EngineConfig.describe(config)["stress_multiplier"]["value"] == 2.0


class TestApplyUpdate:
    def setup_method(self):
        self.config = EngineConfig()

    def test_valid_update(self):
        updated = apply_update(self.config, {"garch_alpha": 0.1, "check_interval_days": 120})
        assert updated.garch_alpha == 0.1
        assert updated.check_interval_days == 120
        assert self.config.garch_alpha == 0.09

    def test_out_of_range_rejected_with_key_value_bound(self):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"max_correlation": 1.5})
        err = exc_info.value
        assert err.key == "max_correlation"
        assert err.value == 1.5
        assert "0.99" in err.bound

    def test_update_is_all_or_nothing(self):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"garch_alpha": 0.1, "garch_beta": -0.2})
        assert exc_info.value.key == "garch_beta"
        assert self.config.garch_alpha == 0.09

    @pytest.mark.parametrize("key,value", [
        ("garch_alpha", "0.1"),
        ("check_interval_days", 90.5),
        ("check_interval_days", True),
        ("valuation_enabled", "yes"),
        ("control_period", "monthly"),
    ])
    def test_type_mismatch_rejected(self, key, value):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {key: value})
        assert exc_info.value.key == key
        assert exc_info.value.value == value

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"leverage": 2})
        assert exc_info.value.key == "leverage"
        assert exc_info.value.bound == "unknown configuration key"

    def test_band_ordering_enforced(self):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"high_pe": 40.0})
        assert exc_info.value.key == "high_pe"

        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"normal_volatility": 0.35})
        assert exc_info.value.key == "normal_volatility"

    def test_daily_threshold_not_above_weekly(self):
        with pytest.raises(ConfigurationError) as exc_info:
            apply_update(self.config, {"daily_threshold": 0.25})
        assert exc_info.value.key == "daily_threshold"

    def test_non_stationary_garch_is_allowed(self):
        updated = apply_update(self.config, {"garch_alpha": 0.2, "garch_beta": 0.85})
        assert updated.garch_alpha + updated.garch_beta > 1

    def test_error_dict(self):
        err = ConfigurationError("drift", 0.5, "must be <= 0.01")
        assert err.to_dict() == {"key": "drift", "value": 0.5, "bound": "must be <= 0.01"}
        assert "drift" in str(err)
