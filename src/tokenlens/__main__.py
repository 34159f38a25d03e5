import json
from pathlib import Path

import structlog
import uvicorn

from tokenlens.api import create_app
from tokenlens.cli import parse_args
from tokenlens.collector import Collector
from tokenlens.config import Config
from tokenlens.errors import TokenlensError
from tokenlens.export import write_sample_files
from tokenlens.logging import setup_logging
from tokenlens.metrics import MetricsUpdater
from tokenlens.source.ccusage import CCUsageSource
from tokenlens.store import SnapshotStore

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':3002' or '0.0.0.0:3002'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _load_json(path: "str") -> "object":
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def export(config: "Config") -> "None":
    try:
        write_sample_files(
            Path(config.output_dir),
            _load_json(config.daily_file),
            _load_json(config.sessions_file),
            config.efficiency_tiers,
        )
    except (OSError, json.JSONDecodeError, TokenlensError) as e:
        raise SystemExit(f"export failed: {e}") from e


def serve(config: "Config") -> "None":
    store = SnapshotStore()
    source = CCUsageSource(config.ccusage_command, config.ccusage_timeout)
    collector = Collector(
        source, MetricsUpdater(), store, config.refresh_interval
    )
    app = create_app(
        collector,
        store,
        tiers=config.efficiency_tiers,
        cors_origins=config.cors_origins,
    )

    host, port = _parse_listen_address(config.listen_address)
    logger.info("api_server_starting", host=host, port=port)
    # logging is already configured; keep uvicorn from replacing it
    uvicorn.run(app, host=host, port=port, log_config=None)


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    if config.command == "export":
        export(config)
    else:
        serve(config)


if __name__ == "__main__":
    main()
