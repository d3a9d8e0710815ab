"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class TokenLedgerConfig(BaseSettings):
    """Token ledger configuration"""
    
    # Genesis configuration
    deployer: str = "deployer"  # Initial holder of the minter role
    
    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "token_ledger.db"
    
    # Default token metadata
    token_name: str = "USDCx"
    token_symbol: str = "USDCx"
    token_decimals: int = 6
    token_uri: Optional[str] = None
    
    # Business rules configuration
    max_batch_size: int = 200
    verify_invariants: bool = False  # Recompute supply after every commit
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "TOKEN_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = TokenLedgerConfig()


def get_config() -> TokenLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TokenLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = TokenLedgerConfig()
    return config
