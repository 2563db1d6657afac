import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .auth import DEFAULT_USERS, UserRecord, load_users
from .framing import MAX_LINE_SIZE, MAX_UPLOAD_SIZE

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 9000
MAX_ACTIVE_CONNECTIONS = 6
INACTIVITY_MS = 2 * 60 * 1000
STATS_INTERVAL_S = 60.0


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_active_connections: int = MAX_ACTIVE_CONNECTIONS
    inactivity_ms: int = INACTIVITY_MS
    files_dir: str = "server_files"
    stats_log_file: Optional[str] = "server_stats.txt"
    message_log_file: Optional[str] = "messages.log"
    stats_interval: float = STATS_INTERVAL_S
    max_upload_bytes: int = MAX_UPLOAD_SIZE
    max_line_bytes: int = MAX_LINE_SIZE
    users: Dict[str, UserRecord] = field(default_factory=lambda: dict(DEFAULT_USERS))

    @property
    def inactivity_s(self) -> float:
        return self.inactivity_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """Defaults overridden by TFSP_* environment variables."""
        env = os.environ if env is None else env
        cfg = cls()
        cfg.host = env.get("TFSP_HOST", cfg.host)
        cfg.port = int(env.get("TFSP_PORT", cfg.port))
        cfg.max_active_connections = int(env.get("TFSP_MAX_CONNECTIONS", cfg.max_active_connections))
        cfg.inactivity_ms = int(env.get("TFSP_INACTIVITY_MS", cfg.inactivity_ms))
        cfg.files_dir = env.get("TFSP_FILES_DIR", cfg.files_dir)
        cfg.stats_log_file = env.get("TFSP_STATS_LOG", cfg.stats_log_file) or None
        cfg.message_log_file = env.get("TFSP_MESSAGE_LOG", cfg.message_log_file) or None
        cfg.stats_interval = float(env.get("TFSP_STATS_INTERVAL", cfg.stats_interval))
        cfg.max_upload_bytes = int(env.get("TFSP_MAX_UPLOAD_BYTES", cfg.max_upload_bytes))
        users_file = env.get("TFSP_USERS_FILE")
        if users_file:
            cfg.users = load_users(users_file)
        return cfg
