from pydantic import BaseModel, Field

# --- Geo ---


class GeoRules(BaseModel):
    cache_ttl_seconds: int = 3600
    cloud_providers: list[str] = Field(
        default_factory=lambda: [
            "amazon",
            "google",
            "microsoft",
            "digitalocean",
            "linode",
            "vultr",
            "ovh",
            "alibaba",
        ]
    )
    mobile_carriers: list[str] = Field(
        default_factory=lambda: [
            "verizon",
            "at&t",
            "sprint",
            "t-mobile",
            "vodafone",
            "orange",
            "telefonica",
            "china mobile",
            "airtel",
        ]
    )
    vpn_providers: list[str] = Field(
        default_factory=lambda: [
            "nordvpn",
            "expressvpn",
            "surfshark",
            "cyberghost",
            "private internet access",
            "protonvpn",
            "mullvad",
            "windscribe",
        ]
    )
    proxy_providers: list[str] = Field(
        default_factory=lambda: ["proxy", "anonymizer", "hide my ass", "hidemyass"]
    )


# --- Rate limits ---


class RateLimitWindow(BaseModel):
    max_requests: int
    window_seconds: int


class RateLimitRules(BaseModel):
    ip: RateLimitWindow = Field(
        default_factory=lambda: RateLimitWindow(max_requests=100, window_seconds=60)
    )
    session: RateLimitWindow = Field(
        default_factory=lambda: RateLimitWindow(max_requests=50, window_seconds=60)
    )
    project: RateLimitWindow = Field(
        default_factory=lambda: RateLimitWindow(max_requests=1000, window_seconds=60)
    )
    prune_after_seconds: int = 3600


# --- Fraud ---


class FraudWeights(BaseModel):
    ip: float = 0.25
    behavior: float = 0.20
    device: float = 0.15
    network: float = 0.20
    pattern: float = 0.10
    velocity: float = 0.10


class ThreatThresholds(BaseModel):
    critical: int = 80
    high: int = 60
    medium: int = 40
    low: int = 20


class ActionThresholds(BaseModel):
    block: int = 80
    challenge: int = 60
    monitor: int = 40


class FraudRules(BaseModel):
    weights: FraudWeights = Field(default_factory=FraudWeights)
    threat_levels: ThreatThresholds = Field(default_factory=ThreatThresholds)
    actions: ActionThresholds = Field(default_factory=ActionThresholds)
    unseen_base_score: int = 30
    suspicious_score: int = 60
    blocked_score: int = 80
    min_user_agent_length: int = 20
    denylisted_ip_prefixes: list[str] = Field(
        default_factory=lambda: ["192.168.", "10.", "172.16.", "127."]
    )
    datacenter_asns: list[int] = Field(
        default_factory=lambda: [15169, 16509, 8075, 14061, 20473, 16276]
    )
    suspicious_asns: list[int] = Field(
        default_factory=lambda: [13335, 9009, 60068, 201011, 24940]
    )
    headless_markers: list[str] = Field(
        default_factory=lambda: ["HeadlessChrome", "PhantomJS", "Nightmare", "Selenium"]
    )
    standard_resolutions: list[str] = Field(
        default_factory=lambda: [
            "1920x1080",
            "1366x768",
            "1440x900",
            "1536x864",
            "1280x720",
            "1600x900",
            "2560x1440",
            "3840x2160",
            "375x667",
            "414x896",
            "360x640",
            "412x915",
            "390x844",
            "393x852",
            "428x926",
            "384x854",
        ]
    )
    suspicious_utm_tokens: list[str] = Field(
        default_factory=lambda: ["bot", "crawler", "scraper"]
    )
    pattern_rules: list[str] = Field(
        default_factory=lambda: [
            "rapid_country_switching",
            "suspicious_utm_source",
            "no_client_metrics",
        ]
    )


# --- Bots ---


class BotWeights(BaseModel):
    user_agent: float = 0.3
    origin_verified: float = 0.3
    behavior: float = 0.2
    honeypot: float = 0.1
    fingerprint: float = 0.1


class BotRules(BaseModel):
    weights: BotWeights = Field(default_factory=BotWeights)
    honeypot_field: str = "honeypot"
    interval_sample_size: int = 10
    user_agent_patterns: list[str] = Field(
        default_factory=lambda: [
            "bot",
            "crawler",
            "spider",
            "scraper",
            "facebookexternalhit",
            "whatsapp",
            "telegram",
            "slackbot",
            "discord",
            "curl",
            "wget",
            "python",
            "java",
            "perl",
            "ruby",
            "go-http-client",
            "axios",
            "node-fetch",
        ]
    )
    crawler_patterns: list[str] = Field(
        default_factory=lambda: [
            "googlebot",
            "bingbot",
            "yandexbot",
            "baiduspider",
            "duckduckbot",
            "slurp",
            "facebookexternalhit",
            "linkedinbot",
            "whatsapp",
            "telegram",
        ]
    )
    headless_markers: list[str] = Field(default_factory=lambda: ["HeadlessChrome"])


# --- Aggregation ---


class AggregationRules(BaseModel):
    top_n_hourly: int = 10
    top_n_daily: int = 20
    retention_days: int = 90
    max_workers: int = 4
    suspicious_score: int = 60
    blocked_score: int = 80


# --- Ops ---


class OpsRules(BaseModel):
    required_env: list[str] = Field(default_factory=list)


class Rules(BaseModel):
    geo: GeoRules = Field(default_factory=GeoRules)
    rate_limits: RateLimitRules = Field(default_factory=RateLimitRules)
    fraud: FraudRules = Field(default_factory=FraudRules)
    bots: BotRules = Field(default_factory=BotRules)
    aggregation: AggregationRules = Field(default_factory=AggregationRules)
    ops: OpsRules = Field(default_factory=OpsRules)
