"""Engine configuration objects.

Explicit configuration for the earnings engine. No defaults that move money.

Pattern:
    engine = EarningsEngine(
        collector_id=...,
        store=SqlRowStore(session),
        gateway=TrendiPayGateway(GatewayConfig(...)),
        config=EngineConfig(...),
    )

Rules:
    1. No env vars here. Settings.from_env() feeds these explicitly.
    2. No globals. Each engine instance has its own config.
    3. Immutable after creation (frozen dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from collector_earnings.config import Settings


@dataclass(frozen=True)
class SplitConfig:
    """
    Split calculator constants.

    Attributes:
        request_fee: Fixed platform fee excluded from the shareable amount.
        default_deadhead_share: Share used when deadhead distance is unknown.
        min_deadhead_share / max_deadhead_share: Share at <=5 km / >=10 km.
        urgent_loading: Urgency loading embedded in an urgent bill (0.30).
        urgent_collector_share: Collector cut of the urgent portion.
        distance_rate: Per-km rate as a fraction of the base portion.
        distance_cap_ratio: Distance bonus cap as a fraction of shareable.
        surge_cap_ratio: Surge uplift cap as a fraction of the gross fee.
        surge_collector_share: Collector cut of the surge uplift.
        strict: Raise CalculationOverrunError instead of clamping.
    """

    request_fee: Decimal = Decimal("1.00")
    default_deadhead_share: Decimal = Decimal("0.87")
    min_deadhead_share: Decimal = Decimal("0.85")
    max_deadhead_share: Decimal = Decimal("0.92")
    free_distance_km: Decimal = Decimal("5")
    max_distance_km: Decimal = Decimal("10")
    urgent_loading: Decimal = Decimal("0.30")
    urgent_collector_share: Decimal = Decimal("0.75")
    distance_rate: Decimal = Decimal("0.06")
    distance_cap_ratio: Decimal = Decimal("0.10")
    surge_cap_ratio: Decimal = Decimal("0.20")
    surge_collector_share: Decimal = Decimal("0.75")
    recyclables_collector_share: Decimal = Decimal("0.60")
    recyclables_customer_share: Decimal = Decimal("0.25")
    recyclables_platform_share: Decimal = Decimal("0.15")
    strict: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.request_fee < 0:
            raise ValueError("request_fee cannot be negative")
        if not self.min_deadhead_share <= self.default_deadhead_share <= self.max_deadhead_share:
            raise ValueError("default_deadhead_share must sit between min and max share")
        if self.max_deadhead_share > 1:
            raise ValueError("max_deadhead_share cannot exceed 1")
        if self.free_distance_km >= self.max_distance_km:
            raise ValueError("free_distance_km must be below max_distance_km")
        recyclables = (
            self.recyclables_collector_share
            + self.recyclables_customer_share
            + self.recyclables_platform_share
        )
        if recyclables != 1:
            raise ValueError("recyclables shares must sum to 1")


@dataclass(frozen=True)
class CacheConfig:
    """
    Offline cache policy.

    Attributes:
        fresh_ttl: Max age served as fresh while online.
        offline_ttl: Max age served at all (stale while online, or offline).
        history_limit: Recent transactions kept alongside the snapshot.
        refresh_on_stale: Schedule a background refresh on a stale hit.
    """

    fresh_ttl: timedelta = timedelta(minutes=5)
    offline_ttl: timedelta = timedelta(hours=24)
    history_limit: int = 50
    refresh_on_stale: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.fresh_ttl <= timedelta(0):
            raise ValueError("fresh_ttl must be positive")
        if self.offline_ttl < self.fresh_ttl:
            raise ValueError("offline_ttl cannot be shorter than fresh_ttl")
        if self.history_limit < 0:
            raise ValueError("history_limit cannot be negative")


@dataclass(frozen=True)
class GatewayConfig:
    """
    Payment gateway configuration.

    Attributes:
        api_url: Gateway base URL.
        api_key / merchant_id / terminal_id: Credentials.
        callback_base_url: Base URL the gateway calls back on.
        webhook_secret: Shared HMAC secret for callbacks.
        sandbox: If True, unsigned callbacks are tolerated. Default True.
        timeout_seconds: Request timeout. Default 30.
        retry_attempts: Retries on transient failures only. Default 3.
        retry_delay_seconds: Wait between retries. Default 2.
        currency: Currency code. Default GHS.
    """

    api_url: str = "https://api.trendipay.com"
    api_key: str = ""
    merchant_id: str = ""
    terminal_id: str = ""
    callback_base_url: str = "http://localhost:8000"
    webhook_secret: str | None = None
    sandbox: bool = True
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 2.0
    currency: str = "GHS"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.retry_attempts < 0 or self.retry_attempts > 5:
            raise ValueError("retry_attempts must be between 0 and 5")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayConfig:
        """Build gateway config from environment settings."""
        return cls(
            api_url=settings.gateway_api_url,
            api_key=settings.gateway_api_key,
            merchant_id=settings.gateway_merchant_id,
            terminal_id=settings.gateway_terminal_id,
            callback_base_url=settings.gateway_callback_base_url,
            webhook_secret=settings.gateway_webhook_secret,
            sandbox=not settings.is_production,
        )


@dataclass(frozen=True)
class DisbursementConfig:
    """
    Cash-out configuration.

    Attributes:
        max_retries: Retries allowed on a failed disbursement. Default 3.
        minimum_amount: Smallest amount the gateway accepts (one unit).
        description_template: Narrative sent to the gateway.
    """

    max_retries: int = 3
    minimum_amount: Decimal = Decimal("1.00")
    description_template: str = "Collector payout {reference}"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.minimum_amount <= 0:
            raise ValueError("minimum_amount must be positive")


@dataclass(frozen=True)
class TelemetryConfig:
    """
    Telemetry configuration.

    Attributes:
        retention: Events retained in the log (oldest dropped first).
    """

    retention: int = 500

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.retention < 1 or self.retention > 100_000:
            raise ValueError("retention must be between 1 and 100000")


@dataclass(frozen=True)
class EngineConfig:
    """
    Complete engine configuration.

    Example:
        config = EngineConfig(
            split=SplitConfig(),
            cache=CacheConfig(fresh_ttl=timedelta(minutes=2)),
            gateway=GatewayConfig(api_key="...", sandbox=False, webhook_secret="..."),
        )
    """

    split: SplitConfig = field(default_factory=SplitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    disbursement: DisbursementConfig = field(default_factory=DisbursementConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)


def validate_production_config(
    config: EngineConfig,
    *,
    gateway_enabled: bool = True,
) -> list[str]:
    """
    Validate that a configuration is safe for production.

    gateway_enabled is False when the app would pay out through the stub.

    Returns a list of warnings/errors. Empty list = safe.
    """
    issues: list[str] = []

    if not gateway_enabled:
        issues.append("CRITICAL: TrendiPay is disabled. Cash-outs would never move money.")

    if config.gateway.sandbox:
        issues.append("WARNING: Gateway is in sandbox mode")

    if not config.gateway.webhook_secret:
        issues.append("CRITICAL: webhook_secret is not set. Callbacks cannot be verified.")

    if not config.gateway.api_key or not config.gateway.merchant_id:
        issues.append("CRITICAL: Gateway credentials not configured")

    if config.split.strict:
        issues.append("WARNING: strict split calculation aborts batches on overrun")

    if config.disbursement.max_retries > 3:
        issues.append("WARNING: max_retries above 3 risks duplicate money movement")

    return issues
