import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _default_log_level() -> str:
    environment = os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development"))
    return "ERROR" if environment == "production" else "DEBUG"


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", os.getenv("PORT", "5000")))
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    # Database settings
    mongo_uri: str = os.getenv("MONGO_URI", "mongodb://localhost:27017/Libra")
    database_name: str = os.getenv("DATABASE_NAME", "Libra")

    # Connection pool
    max_pool_size: int = int(os.getenv("MONGO_MAX_POOL_SIZE", "10"))
    min_pool_size: int = int(os.getenv("MONGO_MIN_POOL_SIZE", "5"))
    max_idle_time_ms: int = int(os.getenv("MONGO_MAX_IDLE_TIME_MS", "45000"))

    # Timeouts
    server_selection_timeout_ms: int = int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000"))
    socket_timeout_ms: int = int(os.getenv("MONGO_SOCKET_TIMEOUT_MS", "45000"))
    connect_timeout_ms: int = int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "10000"))
    wait_queue_timeout_ms: int = int(os.getenv("MONGO_WAIT_QUEUE_TIMEOUT_MS", "5000"))

    # Reliability
    retry_writes: bool = _env_bool("MONGO_RETRY_WRITES", "True")
    retry_reads: bool = _env_bool("MONGO_RETRY_READS", "True")
    write_concern: str = os.getenv("MONGO_WRITE_CONCERN", "majority")

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Security
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "10"))

    # Application
    app_name: str = os.getenv("APP_NAME", "Libra Library API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development"))
    log_level: str = os.getenv("LOG_LEVEL", _default_log_level())

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
