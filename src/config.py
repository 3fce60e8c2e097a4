from pydantic import validator
from pydantic_settings import BaseSettings
from typing import Optional, Dict, Any


class Settings(BaseSettings):
    # Database
    DB_USER: str = "user"
    DB_PASSWORD: str = "password"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "token_metadata"
    DATABASE_URL: Optional[str] = None

    @validator("DATABASE_URL", pre=True, always=True)
    def assemble_db_connection(cls, v: Optional[str], values: Dict[str, Any]) -> Any:
        if isinstance(v, str):
            return v
        return (
            f"postgresql+psycopg2://{values.get('DB_USER')}:{values.get('DB_PASSWORD')}@"
            f"{values.get('DB_HOST')}:{values.get('DB_PORT')}/{values.get('DB_NAME')}"
        )

    DB_POOL_SIZE: int = 10

    # API
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 3000

    # Cache Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TTL: int = 30

    # Job queue
    JOB_QUEUE_CONCURRENCY_LIMIT: int = 5
    JOB_QUEUE_MAX_RETRIES: int = 5
    JOB_QUEUE_STRICT_MODE: bool = False  # Retry recoverable errors forever
    JOB_QUEUE_RETRY_AFTER: int = 5  # seconds, doubled on every retry
    JOB_QUEUE_MAX_RETRY_AFTER: int = 3600
    JOB_QUEUE_CLAIM_TIMEOUT: int = 120  # a queued job older than this is reclaimable
    JOB_QUEUE_POLL_INTERVAL: float = 2.0
    JOB_QUEUE_CLAIM_SCAN_FACTOR: int = 4

    # Metadata fetch
    METADATA_FETCH_TIMEOUT: float = 10.0
    METADATA_MAX_PAYLOAD_BYTE_SIZE: int = 1_000_000
    METADATA_FETCH_MAX_REDIRECTIONS: int = 5
    METADATA_RATE_LIMITED_HOST_RETRY_AFTER: int = 3600
    METADATA_MAX_NFT_CONTRACT_TOKEN_COUNT: int = 50_000

    # Dynamic tokens (SIP-019)
    METADATA_DYNAMIC_TOKEN_REFRESH_INTERVAL: int = 86_400
    DYNAMIC_SWEEP_MIN_INTERVAL: int = 60

    # Gateways
    PUBLIC_GATEWAY_IPFS: str = "https://cloudflare-ipfs.com"
    PUBLIC_GATEWAY_ARWEAVE: str = "https://arweave.net"

    # Monitoring
    LOG_LEVEL: str = "INFO"

    # Service Version
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
