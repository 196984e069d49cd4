"""
Common Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class BaseAppConfig(BaseSettings):
    """
    Common application settings.
    """

    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_CONFIG_PATH: str = Field(
        default="/app/config/executor_log.yaml", description="YAML logging config path"
    )

    # ===== Cluster API Defaults =====
    KUBE_REQUEST_TIMEOUT: float = Field(
        default=30.0, description="Timeout in seconds for a single cluster API call"
    )
    KUBE_IN_CLUSTER: bool = Field(
        default=True, description="Load in-cluster config first, falling back to kubeconfig"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )
