"""
Configuration Management Module

Environment-driven settings for the microfinance back-office, loaded with
pydantic-settings. Every field can be overridden with an ``MFI_`` variable.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Back-office configuration"""
    
    # Storage
    database_url: str = "sqlite:///microfinance.db"
    use_sqlite: bool = True
    
    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None
    
    # Business rules
    business_timezone: str = "Asia/Kolkata"  # payment timestamps are truncated in this zone
    currency_code: str = "INR"
    max_loans_per_customer: int = 15
    default_loan_days: int = 30
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "MFI_"
        env_file = ".env"
        case_sensitive = False
    
    @property
    def sqlite_path(self) -> str:
        """Filesystem path behind a ``sqlite:///`` database URL"""
        prefix = "sqlite:///"
        if self.database_url.startswith(prefix):
            return self.database_url[len(prefix):] or ":memory:"
        return ":memory:"


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config
