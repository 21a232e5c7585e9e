"""
config.py: DeedChain Global Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    APP_NAME: str = "DeedChain API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # API Server
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    CLIENT_URL: str = "http://localhost:3000"
    ALLOWED_HOSTS: List[str] = ["localhost", "127.0.0.1"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./deedchain.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Auth
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_IN: str = "7d"

    # Blockchain
    BLOCKCHAIN_BACKEND: str = "simulation"
    BLOCKCHAIN_RPC_URL: str = "http://127.0.0.1:8545"
    PRIVATE_KEY: str = ""
    DEED_NFT_ADDRESS: str = ""
    LAND_REGISTRY_ADDRESS: str = ""
    CONFIRMATIONS_REQUIRED: int = 2
    GAS_LIMIT: int = 500_000
    TX_TIMEOUT: int = 120
    ANCHOR_ON_UPLOAD: bool = False

    # IPFS
    IPFS_BACKEND: str = "simulation"
    WEB3_STORAGE_TOKEN: str = ""
    WEB3_STORAGE_API_URL: str = "https://api.web3.storage"
    IPFS_GATEWAY_TEMPLATE: str = "https://{cid}.ipfs.dweb.link"
    IPFS_TIMEOUT: int = 30

    # Job queues
    QUEUE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    JOB_ATTEMPTS: int = 3
    JOB_BACKOFF_MS: int = 5000
    IPFS_JOB_BACKOFF_MS: int = 3000

    # Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_FROM: str = ""
    ADMIN_EMAIL: str = ""

    # Dev seed (scripts/seed.py)
    ADMIN_WALLET_ADDRESS: str = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

    # Security
    RATE_LIMIT_MAX: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    TRUST_PROXY_HEADERS: bool = False           # key rate limits on X-Forwarded-For
    TRUSTED_PROXY_IPS: List[str] = []           # IPs or CIDRs allowed to set it; empty = any peer
    MAX_FILE_SIZE: int = 10 * 1024 * 1024

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "deedchain.log"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
