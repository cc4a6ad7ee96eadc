"""Configuration from environment variables."""

import os


class Config:
    """Application configuration from environment variables."""

    # Analysis provider
    ANTHROPIC_API_KEY: str = os.environ.get("ANTHROPIC_API_KEY", "")
    CLAUDE_MODEL: str = os.environ.get("CLAUDE_MODEL", "claude-sonnet-4-5-20250929")
    MAX_RETRIES: int = int(os.environ.get("MAX_RETRIES", "3"))
    INITIAL_RETRY_DELAY: float = float(os.environ.get("INITIAL_RETRY_DELAY", "60"))

    # Ownership ledger
    # Minimum parcel size used when a runsheet gives no total acreage
    DEFAULT_TOTAL_ACRES: float = float(os.environ.get("DEFAULT_TOTAL_ACRES", "80"))
    # "exact" or "substring" (legacy owner lookup)
    NAME_MATCH_MODE: str = os.environ.get("NAME_MATCH_MODE", "exact")

    # Checkpoints
    CHECKPOINT_DIR: str = os.environ.get("CHECKPOINT_DIR", ".runsheet-checkpoints")
    DOCUMENTS_API_URL: str = os.environ.get("DOCUMENTS_API_URL", "")
    PROCESSING_API_KEY: str = os.environ.get("PROCESSING_API_KEY", "")

    # Service
    PORT: int = int(os.environ.get("PORT", "8080"))
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    def validate(self) -> list[str]:
        """Validate required configuration. Returns list of missing items."""
        missing = []
        if not self.ANTHROPIC_API_KEY:
            missing.append("ANTHROPIC_API_KEY")
        if self.NAME_MATCH_MODE not in ("exact", "substring"):
            missing.append("NAME_MATCH_MODE (exact|substring)")
        if self.DOCUMENTS_API_URL and not self.PROCESSING_API_KEY:
            missing.append("PROCESSING_API_KEY")
        return missing


CONFIG = Config()
