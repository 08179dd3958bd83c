from pydantic_settings import BaseSettings
from typing import List, Any
import json
from pathlib import Path


def parse_csv_list(v: Any) -> List[str]:
    """Parse a list setting from a JSON array or comma-separated string"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in v.split(',') if item.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Buildora"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./buildora.db"
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 1800

    # ==========================================
    # Redis (session cache)
    # ==========================================
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Cache TTL classes (seconds)
    CACHE_TTL_DEFAULT: int = 900  # 15 minutes - generic blobs
    CACHE_TTL_SESSION: int = 1800  # 30 minutes - session state and change log
    CACHE_TTL_FILE_SET: int = 7200  # 2 hours - project file snapshots

    # ==========================================
    # Claude AI (code generation + summarization)
    # ==========================================
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = ""  # Empty means use default Anthropic URL
    CLAUDE_GENERATION_MODEL: str = "claude-sonnet-4-20250514"
    CLAUDE_SUMMARY_MODEL: str = "claude-3-5-haiku-20241022"
    CLAUDE_MAX_TOKENS: int = 25000
    CLAUDE_SUMMARY_MAX_TOKENS: int = 800
    CLAUDE_TEMPERATURE: float = 0.1
    CLAUDE_REQUEST_TIMEOUT: int = 300
    CLAUDE_CONNECT_TIMEOUT: int = 60
    CLAUDE_MAX_RETRIES: int = 3
    CLAUDE_RETRY_BASE_DELAY: float = 2.0
    CLAUDE_RETRY_MAX_DELAY: float = 30.0

    # ==========================================
    # AST modification engine (remote service)
    # ==========================================
    MODIFIER_API_URL: str = ""  # Empty disables targeted edits (full regeneration is used)
    MODIFIER_TIMEOUT: int = 240

    # ==========================================
    # Object storage (S3 / MinIO)
    # ==========================================
    USE_MINIO: bool = False
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    MINIO_ENDPOINT: str = "localhost:9000"
    STORAGE_PUBLIC_BASE_URL: str = ""  # Overrides the generated object URL prefix
    SOURCE_ARCHIVE_CONTAINER: str = "source-zips"
    STORAGE_MAX_RETRIES: int = 3

    # ==========================================
    # Remote build / hosting platform
    # ==========================================
    BUILD_API_URL: str = "http://localhost:8088"
    BUILD_API_TOKEN: str = ""
    BUILD_TIMEOUT: int = 600
    BUILD_POLL_INTERVAL: float = 5.0
    DEPLOY_TIMEOUT: int = 300
    BUILD_RESOURCE_GROUP: str = ""
    BUILD_CONTAINER_ENV: str = ""
    BUILD_REGISTRY_NAME: str = ""

    # ==========================================
    # Workspaces
    # ==========================================
    WORKSPACE_ROOT: str = "/tmp/buildora/temp-builds"
    TEMPLATE_DIR: str = ""  # Defaults to <backend>/templates/react-base
    WORKSPACE_CLEANUP_TIMEOUT_SECONDS: int = 300  # 5 minutes
    ARCHIVE_EXCLUDED_DIRS_STR: str = "node_modules,.git,dist"
    CACHED_FILE_EXTENSIONS_STR: str = ".tsx,.ts,.jsx,.js,.css,.json,.html"

    # ==========================================
    # Project identity resolution
    # ==========================================
    RESOLVER_RECENT_WINDOW_SECONDS: int = 60
    RESOLVER_REPLAY_WINDOW_SECONDS: float = 2.0
    RESOLVER_CLAIM_TTL_SECONDS: int = 30
    RESOLVER_CLAIM_WAIT_SECONDS: float = 3.0
    PROJECTS_KEEP_LATEST: int = 10  # Older projects of a user are archived

    # ==========================================
    # Conversation context
    # ==========================================
    CONTEXT_WINDOW_SIZE: int = 5
    CONTEXT_MODIFICATION_ENTRIES: int = 5
    DEFAULT_CONVERSATION_SCOPE: str = "global"

    # ==========================================
    # Pipeline
    # ==========================================
    PROGRESS_CHUNK_BYTES: int = 4096
    PIPELINE_TOTAL_STEPS: int = 10

    # ==========================================
    # CORS
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:5173,http://localhost:3000"

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return parse_csv_list(self.CORS_ORIGINS_STR)

    @property
    def ARCHIVE_EXCLUDED_DIRS(self) -> List[str]:
        return parse_csv_list(self.ARCHIVE_EXCLUDED_DIRS_STR)

    @property
    def CACHED_FILE_EXTENSIONS(self) -> List[str]:
        return parse_csv_list(self.CACHED_FILE_EXTENSIONS_STR)

    @property
    def BASE_DIR(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent

    @property
    def TEMPLATE_PATH(self) -> Path:
        if self.TEMPLATE_DIR:
            return Path(self.TEMPLATE_DIR)
        return self.BASE_DIR / "templates" / "react-base"

    @property
    def WORKSPACE_PATH(self) -> Path:
        return Path(self.WORKSPACE_ROOT)

    def is_dev_mode(self) -> bool:
        return self.ENVIRONMENT != "production"


# Create settings instance
settings = Settings()
