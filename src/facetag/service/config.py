from __future__ import annotations

from argparse import ArgumentParser
from typing import ClassVar

from ..common.config import BaseConfig


class ServiceConfig(BaseConfig):
    """Unified facetag service configuration and CLI arguments."""

    _instance: ClassVar[ServiceConfig | None] = None

    # CLI Fields (mapped from argparse)
    host: str = "0.0.0.0"
    port: int = 8002
    reload: bool = False
    log_level: str = "info"

    @classmethod
    def get_config(cls) -> ServiceConfig:
        """Get or create the unified ServiceConfig singleton."""
        if cls._instance is None:
            cls._instance = cls._from_cli_args()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    @classmethod
    def build_parser(cls) -> ArgumentParser:
        parser = ArgumentParser(prog="facetag")
        parser.add_argument("--no-auth", action="store_true", help="Disable authentication")
        parser.add_argument("--port", "-p", type=int, default=8002)
        parser.add_argument("--host", default="0.0.0.0")
        parser.add_argument("--reload", action="store_true", help="Enable uvicorn reload (dev)")
        parser.add_argument(
            "--mqtt-url",
            default=None,
            help="MQTT broker URL (e.g. mqtt://localhost:1883); status broadcasts are off without it",
        )
        parser.add_argument(
            "--database-url", default=None, help="SQLAlchemy URL (defaults to FACETAG_DIR/facetag.db)"
        )
        parser.add_argument(
            "--log-level",
            default="info",
            choices=["critical", "error", "warning", "info", "debug", "trace"],
        )

        # Providers
        parser.add_argument("--aws-region", default=None)
        parser.add_argument("--rekognition-collection", default=None)
        parser.add_argument("--s3-bucket", default=None)
        parser.add_argument("--cloudflare-account-id", default=None)
        parser.add_argument("--cloudflare-stream-token", default=None)
        parser.add_argument("--cloudflare-customer-domain", default=None)

        # Analysis
        parser.add_argument("--rendition-max-attempts", type=int, default=None)
        parser.add_argument("--rendition-poll-interval", type=float, default=None)
        parser.add_argument("--sample-window", type=float, default=None)
        parser.add_argument("--sample-stride", type=float, default=None)
        parser.add_argument("--match-threshold", type=float, default=None)
        parser.add_argument("--on-demand-threshold", type=float, default=None)
        parser.add_argument("--confirm-threshold", type=float, default=None)
        parser.add_argument("--candidate-threshold", type=float, default=None)
        return parser

    @classmethod
    def _from_cli_args(cls, argv: list[str] | None = None) -> ServiceConfig:
        """Parse CLI arguments and return a ServiceConfig instance."""
        # Unknown args are ignored so reloaders and test runners can pass their own
        args, _ = cls.build_parser().parse_known_args(argv)

        # Unset optional flags fall back to the field defaults (and their env lookups)
        config_dict = {k: v for k, v in vars(args).items() if v is not None}
        config = cls.model_validate(config_dict)
        config.finalize_base()
        return config
