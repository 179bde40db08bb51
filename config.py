# /conquistas/config.py
import os
from dataclasses import dataclass, field
from typing import List


@dataclass
class Config:
    DATABASE_URL: str
    SECRET_KEY: str
    PORT: int
    CONQUISTAS_STORAGE: str
    DATA_DIR: str
    DATA_PATH: str
    UPLOAD_DIR: str
    PUBLIC_BASE_URL: str = ""
    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024
    POLL_INTERVAL: float = 5.0
    SYNC_IDLE_TTL: float = 1800.0
    MAX_SYNC_SESSIONS: int = 1000
    ADMIN_EMAILS: List[str] = field(default_factory=list)
    TOKEN_TTL_MINUTES: int = 60
    LOG_LEVEL: str = "INFO"

    @staticmethod
    def from_env():
        root = os.path.dirname(os.path.abspath(__file__))
        data_dir = os.environ.get("DATA_DIR") or os.path.join(root, "data")
        admins = os.environ.get("ADMIN_EMAILS", "")
        return Config(
            DATABASE_URL=os.environ.get("DATABASE_URL", ""),
            SECRET_KEY=os.environ.get("SECRET_KEY", ""),
            PORT=int(os.environ.get("PORT", "10000") or "10000"),
            CONQUISTAS_STORAGE=os.environ.get("CONQUISTAS_STORAGE", "auto"),
            DATA_DIR=data_dir,
            DATA_PATH=os.path.join(data_dir, "data.json"),
            UPLOAD_DIR=os.environ.get("UPLOAD_DIR") or os.path.join(data_dir, "uploads"),
            PUBLIC_BASE_URL=os.environ.get("PUBLIC_BASE_URL", "").rstrip("/"),
            MAX_IMAGE_BYTES=int(os.environ.get("MAX_IMAGE_BYTES", str(5 * 1024 * 1024))),
            POLL_INTERVAL=float(os.environ.get("POLL_INTERVAL", "5") or "5"),
            SYNC_IDLE_TTL=float(os.environ.get("SYNC_IDLE_TTL", "1800") or "1800"),
            MAX_SYNC_SESSIONS=int(os.environ.get("MAX_SYNC_SESSIONS", "1000") or "1000"),
            ADMIN_EMAILS=[e.strip().lower() for e in admins.split(",") if e.strip()],
            TOKEN_TTL_MINUTES=int(os.environ.get("TOKEN_TTL_MINUTES", "60") or "60"),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    @staticmethod
    def for_data_dir(data_dir: str, **overrides):
        """Config rooted at an explicit directory (tests, one-off scripts)."""
        cfg = Config(
            DATABASE_URL="",
            SECRET_KEY="",
            PORT=10000,
            CONQUISTAS_STORAGE="json",
            DATA_DIR=data_dir,
            DATA_PATH=os.path.join(data_dir, "data.json"),
            UPLOAD_DIR=os.path.join(data_dir, "uploads"),
        )
        for k, v in overrides.items():
            setattr(cfg, k, v)
        return cfg


class FlaskConfigAdaptor(dict):
    """Expose dataclass instance but keep under key 'CONFIG' for Flask."""
    def __init__(self, config: Config = None):
        super().__init__()
        config = config or Config.from_env()
        self["CONFIG"] = config
        self["SECRET_KEY"] = config.SECRET_KEY
        self["MAX_CONTENT_LENGTH"] = config.MAX_IMAGE_BYTES * 2


def flask_config(config: Config = None) -> FlaskConfigAdaptor:
    # Usage in app.py: app.config.from_mapping(flask_config())
    return FlaskConfigAdaptor(config)
