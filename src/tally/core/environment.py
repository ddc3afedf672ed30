"""
Derived configuration.

Small pure functions over `Settings`: environment naming, sampling and the
PostHog ingestion endpoints. PostHog serves dashboards and event capture on
`app.`/`eu.` hosts but OTLP ingestion on the `*.i.posthog.com` hosts.
"""

from __future__ import annotations

import math
from urllib.parse import urlsplit

from tally.core.settings import Settings

DEFAULT_SAMPLE_RATE = 0.1
DEFAULT_SERVICE_NAME = "tally"
US_OTLP_ENDPOINT = "https://us.i.posthog.com"
EU_OTLP_ENDPOINT = "https://eu.i.posthog.com"

_EU_HOSTS = {"eu.posthog.com", "app.eu.posthog.com"}
_US_HOSTS = {"app.posthog.com", "us.posthog.com", "posthog.com"}


def get_environment_name(settings: Settings) -> str:
    if settings.ENVIRONMENT:
        return settings.ENVIRONMENT
    if settings.DEPLOY_BRANCH:
        if settings.DEPLOY_BRANCH in ("main", "master"):
            return "production"
        return "preview"
    return "development"


def get_service_name(settings: Settings) -> str:
    """Service name used on OTLP log resources: tally-<environment>."""
    return f"{DEFAULT_SERVICE_NAME}-{get_environment_name(settings)}"


def get_sample_rate(raw: str | float | None) -> float:
    try:
        rate = float(raw) if raw is not None else DEFAULT_SAMPLE_RATE
    except (TypeError, ValueError):
        return DEFAULT_SAMPLE_RATE
    if math.isnan(rate):
        return DEFAULT_SAMPLE_RATE
    return max(0.0, min(1.0, rate))


def get_otlp_endpoint(posthog_host: str, posthog_otlp_host: str | None = None) -> str:
    if posthog_otlp_host:
        return posthog_otlp_host

    hostname = (urlsplit(posthog_host).hostname or "").lower()
    if not hostname:
        return US_OTLP_ENDPOINT
    if hostname.endswith(".i.posthog.com"):
        return posthog_host
    if hostname in _EU_HOSTS:
        return EU_OTLP_ENDPOINT
    if hostname in _US_HOSTS:
        return US_OTLP_ENDPOINT
    # Self-hosted: OTLP lives on the same host.
    return posthog_host


def get_otlp_trace_endpoint(
    posthog_host: str, posthog_otlp_host: str | None = None
) -> str:
    # An explicit OTLP host is taken as the full traces URL.
    if posthog_otlp_host:
        return posthog_otlp_host
    return f"{get_otlp_endpoint(posthog_host).rstrip('/')}/v1/traces"
