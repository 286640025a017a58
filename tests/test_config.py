import config


def test_scoring_settings_defaults(monkeypatch):
    for name in ("SCORING_WEIGHTS", "MIN_SIGNAL_PROBABILITY", "CT_MAX_PER_DAY", "THRESH_AFTER_90M"):
        monkeypatch.delenv(name, raising=False)

    settings = config.load_scoring_settings()

    assert settings.weights == config.DEFAULT_WEIGHTS
    assert settings.min_trades_for_adjustment == 10
    assert settings.blacklist_duration_seconds == 24 * 60 * 60
    assert settings.counter_trend.max_per_day == 3
    assert settings.counter_trend.min_reversal_strength == 45
    assert settings.thresholds.default == 70
    assert settings.thresholds.fallback == 60
    assert settings.thresholds.emergency == 50
    assert settings.thresholds.fallback_after_minutes == 90
    assert settings.thresholds.emergency_after_minutes == 120


def test_weight_overrides_from_json(monkeypatch):
    monkeypatch.setenv("SCORING_WEIGHTS", '{"macd_bullish": 40, "RSI_OVERSOLD": "bad"}')

    settings = config.load_scoring_settings()

    assert settings.weights["MACD_BULLISH"] == 40.0
    assert settings.weights["RSI_OVERSOLD"] == config.DEFAULT_WEIGHTS["RSI_OVERSOLD"]


def test_invalid_env_values_fall_back(monkeypatch):
    monkeypatch.setenv("SCORING_WEIGHTS", "{not json")
    monkeypatch.setenv("CT_MAX_PER_DAY", "many")
    monkeypatch.setenv("CT_REQUIRE_VOLUME_SPIKE", "maybe")
    monkeypatch.setenv("THRESH_AFTER_90M", "55")

    settings = config.load_scoring_settings()

    assert settings.weights == config.DEFAULT_WEIGHTS
    assert settings.counter_trend.max_per_day == 3
    assert settings.counter_trend.require_volume_spike is True
    assert settings.thresholds.fallback == 55.0


def test_scanner_settings_from_env(monkeypatch):
    monkeypatch.setenv("SCAN_SYMBOLS", "SOL/USDT, ADA/USDT,")
    monkeypatch.setenv("SCAN_TIMEFRAMES", "1h,4h")
    monkeypatch.setenv("SELECTION_WINDOW_MINUTE", "75")
    monkeypatch.setenv("SCAN_MAX_CONCURRENCY", "0")

    settings = config.load_scanner_settings()

    assert settings.symbols == ("SOL/USDT", "ADA/USDT")
    assert settings.timeframes == ("1h", "4h")
    assert settings.selection.window_start_minute == 59
    assert settings.max_concurrency == 1
