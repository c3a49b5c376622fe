import pytest

from analytics_pipeline.config import AnalyticsConfig
from analytics_pipeline.errors import ConfigurationError, EventValidationError
from analytics_pipeline.logger import DebugLogger
from analytics_pipeline.models import (
    Event,
    Session,
    engagement_time_for,
    redact_for_logging,
    sanitize_params,
    validate_event_name,
)

pytestmark = pytest.mark.unit


def build_config(**overrides):
    options = {
        "endpoint": "https://collect.example.com/mp/collect",
        "measurement_id": "G-TEST123456",
        "api_secret": "secret-value",
    }
    options.update(overrides)
    return AnalyticsConfig(**options)


def test_valid_config_passes():
    build_config().validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"endpoint": "ftp://collect.example.com"},
        {"endpoint": "collect.example.com/mp"},
        {"measurement_id": ""},
        {"measurement_id": "G-XXXXXXXXXX"},
        {"api_secret": "placeholder_secret"},
        {"api_secret": "has space"},
        {"batch_size": 0},
        {"max_queue_size": 5, "batch_size": 10},
        {"flush_interval_ms": -1},
        {"max_batch_retries": 0},
        {"request_timeout_s": 0},
    ],
)
def test_invalid_config_is_rejected(overrides):
    config = build_config(**overrides)
    with pytest.raises(ConfigurationError):
        config.validate()
    assert config.is_valid() is False


def test_config_from_env_reads_prefixed_variables():
    config = AnalyticsConfig.from_env(
        {
            "ANALYTICS_ENDPOINT": "https://collect.example.com/mp/collect",
            "ANALYTICS_MEASUREMENT_ID": "G-TEST123456",
            "ANALYTICS_API_SECRET": "secret-value",
            "ANALYTICS_MAX_QUEUE_SIZE": "50",
            "ANALYTICS_BATCH_SIZE": "5",
            "ANALYTICS_FLUSH_INTERVAL_MS": "2000",
            "ANALYTICS_DEBUG": "true",
            "ANALYTICS_REQUEST_TIMEOUT_S": "2.5",
        }
    )
    assert config.max_queue_size == 50
    assert config.batch_size == 5
    assert config.flush_interval_ms == 2000
    assert config.debug is True
    assert config.request_timeout_s == 2.5
    assert config.session_timeout_minutes == 30
    assert config.is_valid() is True


def test_config_from_env_rejects_bad_numbers():
    with pytest.raises(ConfigurationError):
        AnalyticsConfig.from_env({"ANALYTICS_BATCH_SIZE": "ten"})


def test_config_from_empty_env_is_invalid():
    assert AnalyticsConfig.from_env({}).is_valid() is False


def test_validate_event_name_raises_for_bad_names():
    assert validate_event_name("page_view") == "page_view"
    with pytest.raises(EventValidationError):
        validate_event_name("_leading_underscore")


def test_sanitize_params_caps_parameter_count():
    params = {f"p{i}": i for i in range(40)}
    clean = sanitize_params(params)
    assert len(clean) == 25
    assert list(clean)[:3] == ["p0", "p1", "p2"]


def test_engagement_time_defaults_and_clamps():
    assert engagement_time_for("page_view", {}) == 1000
    assert engagement_time_for("prompt_copy", {}) == 500
    assert engagement_time_for("prompt_view", {"view_duration_ms": 4200}) == 4200
    assert engagement_time_for("unknown_event", {}) == 1000
    assert engagement_time_for("page_view", {"engagement_time_msec": -5}) == 1
    assert engagement_time_for("page_view", {"engagement_time_msec": 10**12}) == 86_400_000


def test_event_wire_format_keeps_identity_params_authoritative():
    event = Event(
        name="page_view",
        params={"session_id": "spoofed", "page_title": "Home"},
        timestamp=1.0,
        client_id="c",
        session_id="real",
        engagement_time_msec=1000,
    )
    wire = event.to_wire()
    assert wire["params"]["session_id"] == "real"
    assert wire["params"]["page_title"] == "Home"
    assert wire["params"]["engagement_time_msec"] == 1000


def test_session_record_round_trip_rejects_garbage():
    session = Session(session_id="s-1", started_at=10.0, last_activity_at=20.0)
    assert Session.from_record(session.to_record()) == session
    assert Session.from_record({"session_id": "s-1", "started_at": "x"}) is None
    assert Session.from_record(None) is None


def test_redact_for_logging_masks_secrets():
    redacted = redact_for_logging({"api_key": "k", "Password": "p", "query": "q" * 120})
    assert redacted["api_key"] == "[REDACTED]"
    assert redacted["Password"] == "[REDACTED]"
    assert redacted["query"].endswith("...")


def test_debug_logger_is_bounded_and_gated():
    logger = DebugLogger(enabled=False, max_entries=3)
    logger.log("queue", "hidden")
    assert logger.entries == []
    logger.set_enabled(True)
    for index in range(5):
        logger.log("queue", f"entry {index}")
    assert logger.entries == [
        "> [queue] entry 2",
        "> [queue] entry 3",
        "> [queue] entry 4",
    ]


def test_config_from_env_reads_opt_out_and_blocked_events():
    config = AnalyticsConfig.from_env(
        {"ANALYTICS_ENABLED": "false", "ANALYTICS_BLOCKED_EVENTS": "debug_event, test_event,,"}
    )
    assert config.enabled is False
    assert config.blocked_events == ("debug_event", "test_event")


@pytest.mark.parametrize("value", [10 ** 400, -(10 ** 400)])
def test_oversized_ints_sanitise_to_zero(value):
    assert sanitize_params({"count": value}) == {"count": 0}
    assert engagement_time_for("page_view", {"engagement_time_msec": value}) == 1000
