import argparse

from tokenlens.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="tokenlens",
        description="Claude usage analytics dashboard backed by ccusage",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":3002",
        help="Address to listen on (default: :3002)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=120,
        help="Refresh interval in seconds (default: 120)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the dashboard API (default)")
    export = subparsers.add_parser(
        "export",
        help="Write sample-projects/weekly/monthly.json from saved ccusage reports",
    )
    export.add_argument(
        "--daily",
        dest="daily_file",
        required=True,
        help="Path to the output of `ccusage daily --json`",
    )
    export.add_argument(
        "--sessions",
        dest="sessions_file",
        required=True,
        help="Path to the output of `ccusage session --json`",
    )
    export.add_argument(
        "--out",
        dest="output_dir",
        default="public",
        help="Directory to write the sample files to (default: public)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.log_level = args.log_level
    config.log_format = args.log_format
    config.command = args.command or "serve"
    if config.command == "export":
        config.daily_file = args.daily_file
        config.sessions_file = args.sessions_file
        config.output_dir = args.output_dir
    return config
