import os
from dataclasses import dataclass, field

from tokenlens.derived import EfficiencyTiers

DEFAULT_CORS_ORIGINS: "tuple[str, ...]" = (
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:8080",
)


def _env_float(name: "str", default: "float") -> "float":
    value = os.environ.get(name, "")
    return float(value) if value else default


@dataclass
class Config:
    # listen_address: format ":3002" or
    # "0.0.0.0:3002"
    listen_address: "str" = ":3002"
    # collection interval in seconds
    refresh_interval: "int" = 120
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    # may include a runner, e.g. "npx ccusage"
    ccusage_command: "str" = "ccusage"
    # per report, in seconds
    ccusage_timeout: "float" = 30.0

    efficiency_tiers: "EfficiencyTiers" = field(default_factory=EfficiencyTiers)
    # origins allowed to call the API from a browser
    cors_origins: "list[str]" = field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS)
    )

    # set by the export sub-command
    command: "str" = "serve"
    daily_file: "str" = ""
    sessions_file: "str" = ""
    output_dir: "str" = "public"

    @classmethod
    def from_env(cls) -> "Config":
        origins = os.environ.get("TOKENLENS_CORS_ORIGINS", "")
        defaults = EfficiencyTiers()
        return cls(
            ccusage_command=os.environ.get("CCUSAGE_COMMAND", "") or "ccusage",
            ccusage_timeout=_env_float("CCUSAGE_TIMEOUT", 30.0),
            cors_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins
                else list(DEFAULT_CORS_ORIGINS)
            ),
            efficiency_tiers=EfficiencyTiers(
                excellent=_env_float("TOKENLENS_EFFICIENCY_EXCELLENT", defaults.excellent),
                good=_env_float("TOKENLENS_EFFICIENCY_GOOD", defaults.good),
                fair=_env_float("TOKENLENS_EFFICIENCY_FAIR", defaults.fair),
            ),
        )
