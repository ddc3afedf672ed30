import math

import pytest  # type: ignore[import-not-found]

from tally.core.environment import (
    EU_OTLP_ENDPOINT,
    US_OTLP_ENDPOINT,
    get_environment_name,
    get_otlp_endpoint,
    get_otlp_trace_endpoint,
    get_sample_rate,
    get_service_name,
)
from tally.core.settings import Settings


def _settings(**kwargs) -> Settings:  # type: ignore[no-untyped-def]
    base = {"ENVIRONMENT": None, "DEPLOY_BRANCH": None}
    return Settings(_env_file=None, **{**base, **kwargs})  # type: ignore[call-arg]


@pytest.mark.parametrize(
    ("env", "branch", "expected"),
    [
        ("staging", "main", "staging"),
        (None, "main", "production"),
        (None, "master", "production"),
        (None, "feature/x", "preview"),
        (None, None, "development"),
    ],
)
def test_environment_name(env: str | None, branch: str | None, expected: str) -> None:
    assert get_environment_name(_settings(ENVIRONMENT=env, DEPLOY_BRANCH=branch)) == expected


def test_service_name_includes_environment() -> None:
    assert get_service_name(_settings(ENVIRONMENT="preview")) == "tally-preview"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("0.25", 0.25), ("1", 1.0), ("5", 1.0), ("-1", 0.0), ("abc", 0.1), (None, 0.1), ("nan", 0.1)],
)
def test_sample_rate(raw: str | None, expected: float) -> None:
    rate = get_sample_rate(raw)
    assert not math.isnan(rate)
    assert rate == expected


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("https://app.posthog.com", US_OTLP_ENDPOINT),
        ("https://us.posthog.com", US_OTLP_ENDPOINT),
        ("https://posthog.com", US_OTLP_ENDPOINT),
        ("https://eu.posthog.com", EU_OTLP_ENDPOINT),
        ("https://eu.i.posthog.com", "https://eu.i.posthog.com"),
        ("https://posthog.internal.example", "https://posthog.internal.example"),
        ("not a url", US_OTLP_ENDPOINT),
    ],
)
def test_otlp_endpoint(host: str, expected: str) -> None:
    assert get_otlp_endpoint(host) == expected


def test_explicit_otlp_host_wins() -> None:
    assert get_otlp_endpoint("https://app.posthog.com", "https://otel.example") == "https://otel.example"
    assert (
        get_otlp_trace_endpoint("https://app.posthog.com", "https://otel.example/v1/traces")
        == "https://otel.example/v1/traces"
    )


def test_trace_endpoint_appends_path() -> None:
    assert get_otlp_trace_endpoint("https://eu.posthog.com") == f"{EU_OTLP_ENDPOINT}/v1/traces"
