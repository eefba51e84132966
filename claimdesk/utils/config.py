"""Configuration management for the claims desk."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .logging import DEFAULT_FORMAT

load_dotenv()

LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}


@dataclass
class StorageConfig:
    """Storage locations configuration."""
    data_dir: str
    uploads_dir: str
    backend: str = "local"  # "local" | "s3"
    s3_bucket: str = ""
    s3_prefix: str = "claims"
    s3_region: str = "us-east-1"


@dataclass
class ServicesConfig:
    """External HTTP service endpoints."""
    render_base_url: str
    image_upload_url: str
    document_upload_url: str = ""
    timeout: Optional[float] = None


@dataclass
class AutosaveConfig:
    """Debounce delays and editing-session lifetime, in seconds."""
    standard_delay: float = 2.0
    assessment_delay: float = 1.0
    session_idle_timeout: float = 1800.0


@dataclass
class ReportConfig:
    """Report payload defaults."""
    default_company: str = "Insurance Company"
    first_page_background: str = ""
    other_pages_background: str = ""
    configs: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    format: str
    file: str


@dataclass
class Config:
    """Main configuration class."""
    storage: StorageConfig
    services: ServicesConfig
    autosave: AutosaveConfig
    report: ReportConfig
    logging: LoggingConfig

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load configuration from file and environment variables.

        Environment variables override config file values:
        - CLAIMDESK_DATA_DIR
        - CLAIMDESK_STORAGE_BACKEND
        - RENDER_SERVICE_URL
        - IMAGE_UPLOAD_URL
        - DOCUMENT_UPLOAD_URL
        - S3_BUCKET
        - AWS_REGION
        - LOG_LEVEL

        Args:
            config_path: Path to YAML configuration file; defaults to
                CLAIMDESK_CONFIG or config.yaml

        Returns:
            Config instance with loaded settings

        Raises:
            ConfigError: If the file is missing or malformed
        """
        config_path = config_path or os.getenv("CLAIMDESK_CONFIG", "config.yaml")
        if not os.path.exists(config_path):
            raise ConfigError.missing(config_path)

        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        try:
            return cls.from_dict(config_data)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError.invalid(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "Config":
        """Build a Config from already-parsed YAML data, applying env overrides."""
        storage_data = config_data.get("storage", {}) or {}
        data_dir = os.getenv("CLAIMDESK_DATA_DIR", storage_data.get("data_dir", "data"))
        s3_data = storage_data.get("s3", {}) or {}

        storage_config = StorageConfig(
            data_dir=data_dir,
            uploads_dir=storage_data.get("uploads_dir") or os.path.join(data_dir, "uploads"),
            backend=os.getenv("CLAIMDESK_STORAGE_BACKEND", storage_data.get("backend", "local")),
            s3_bucket=os.getenv("S3_BUCKET", s3_data.get("bucket", "")),
            s3_prefix=s3_data.get("prefix", "claims"),
            s3_region=os.getenv("AWS_REGION", s3_data.get("region", "us-east-1")),
        )

        services_data = config_data["services"]
        timeout = services_data.get("timeout")
        services_config = ServicesConfig(
            render_base_url=os.getenv(
                "RENDER_SERVICE_URL", services_data["render_base_url"]
            ).rstrip("/"),
            image_upload_url=os.getenv("IMAGE_UPLOAD_URL", services_data["image_upload_url"]),
            document_upload_url=os.getenv(
                "DOCUMENT_UPLOAD_URL", services_data.get("document_upload_url", "")
            ),
            timeout=float(timeout) if timeout is not None else None,
        )

        autosave_data = config_data.get("autosave", {}) or {}
        autosave_config = AutosaveConfig(
            standard_delay=float(autosave_data.get("standard_delay", 2.0)),
            assessment_delay=float(autosave_data.get("assessment_delay", 1.0)),
            session_idle_timeout=float(autosave_data.get("session_idle_timeout", 1800.0)),
        )

        report_data = config_data.get("report", {}) or {}
        assets = report_data.get("assets", {}) or {}
        report_config = ReportConfig(
            default_company=report_data.get("default_company", "Insurance Company"),
            first_page_background=assets.get("first_page_background", ""),
            other_pages_background=assets.get("other_pages_background", ""),
            configs=report_data.get("configs", {}) or {},
        )

        logging_data = config_data.get("logging", {}) or {}
        logging_config = LoggingConfig(
            level=os.getenv("LOG_LEVEL", logging_data.get("level", "INFO")),
            format=logging_data.get("format", DEFAULT_FORMAT),
            file=logging_data.get("file", ""),
        )

        return cls(
            storage=storage_config,
            services=services_config,
            autosave=autosave_config,
            report=report_config,
            logging=logging_config,
        )

    def validate(self) -> List[str]:
        """
        Validate configuration and return human-readable problems.

        Endpoints that resolve to a loopback host are reported because a
        deployed instance cannot reach them.
        """
        problems: List[str] = []

        if self.storage.backend not in ("local", "s3"):
            problems.append(f"storage.backend must be 'local' or 's3', got '{self.storage.backend}'")
        if self.storage.backend == "s3" and not self.storage.s3_bucket:
            problems.append("S3_BUCKET is not set (required when storage.backend is 's3').")

        endpoints = {
            "services.render_base_url": self.services.render_base_url,
            "services.image_upload_url": self.services.image_upload_url,
            "services.document_upload_url": self.services.document_upload_url,
        }
        for key, url in endpoints.items():
            if not url:
                if key != "services.document_upload_url":
                    problems.append(f"{key} is not set.")
                continue
            host = urlparse(url).hostname
            if host in LOCAL_HOSTS:
                problems.append(f"{key} points at a loopback host ({url}).")

        if self.autosave.standard_delay < 0 or self.autosave.assessment_delay < 0:
            problems.append("autosave delays must not be negative.")
        if self.autosave.session_idle_timeout <= 0:
            problems.append("autosave.session_idle_timeout must be positive.")

        return problems
