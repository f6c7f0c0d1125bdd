from __future__ import annotations

import os
from argparse import Namespace
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BaseConfig(BaseModel, Namespace):
    """Base configuration shared by the HTTP service and the analysis pipeline, compliant with Namespace."""

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    def __init__(self, **kwargs):
        # Satisfy both BaseModel and Namespace
        BaseModel.__init__(self, **kwargs)
        Namespace.__init__(self)

    # Paths (populated after CLI parsing by finalize_base)
    data_dir: Path | None = None
    local_media_dir: Path | None = None
    public_key_path: Path | None = None
    database_url: str | None = None

    # Auth
    no_auth: bool = False

    # MQTT configuration
    mqtt_url: str | None = None

    # Recognition provider (AWS Rekognition); credentials come from the boto3 environment
    aws_region: str = Field(default_factory=lambda: os.getenv("AWS_REGION", "ap-northeast-1"))
    rekognition_collection: str = Field(
        default_factory=lambda: os.getenv("AWS_REKOGNITION_COLLECTION", "kindergarten-faces")
    )
    s3_bucket: str = Field(
        default_factory=lambda: os.getenv("AWS_S3_BUCKET", "kindergarten-platform-assets")
    )

    # Delivery provider (Cloudflare Stream)
    cloudflare_account_id: str | None = Field(
        default_factory=lambda: os.getenv("CLOUDFLARE_ACCOUNT_ID")
    )
    cloudflare_stream_token: str | None = Field(
        default_factory=lambda: os.getenv("CLOUDFLARE_STREAM_TOKEN")
    )
    cloudflare_customer_domain: str = Field(
        default_factory=lambda: os.getenv(
            "CLOUDFLARE_CUSTOMER_DOMAIN", "customer-8wrsqatwg42wd1l7.cloudflarestream.com"
        )
    )
    delivery_timeout: float = 30.0

    # Rendition readiness polling
    rendition_max_attempts: int = 20
    rendition_poll_interval: float = 30.0
    rendition_poll_backoff: float = 1.0  # 1.0 keeps a fixed interval
    rendition_poll_max_interval: float = 120.0

    # Frame sampling
    sample_window: float = 30.0
    sample_stride: float = 2.0
    sample_width: int = 640

    # Similarity thresholds (0-100)
    match_threshold: float = 80.0
    on_demand_threshold: float = 70.0
    confirm_threshold: float = 70.0
    candidate_threshold: float = 10.0

    # Low-confidence candidate sweep
    sweep_window: float = 900.0
    sweep_stride: float = 0.5
    sweep_width: int = 1280
    sweep_tag_duration: float = 3.0
    sweep_min_face_px: int = 40
    sweep_frame_delay: float = 0.1

    def finalize_base(self):
        """Finalize base configuration after CLI parsing."""
        from .utils import ensure_data_dir

        data_dir = ensure_data_dir(create_if_missing=True)
        self.data_dir = data_dir
        self.local_media_dir = data_dir / "public"
        self.public_key_path = data_dir / "keys" / "public_key.pem"
        if not self.database_url:
            self.database_url = f"sqlite:///{data_dir}/facetag.db"
