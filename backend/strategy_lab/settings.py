"""
Service settings read from environment variables
"""
import os
from typing import List, Optional

from pydantic import BaseModel

from strategy_lab import DEFAULT_CAPITAL

DEFAULT_CORS_ORIGINS = "http://localhost:4200,http://localhost:5173,http://127.0.0.1:4200"


class Settings(BaseModel):
    """Runtime settings for the HTTP service"""
    logLevel: str = "INFO"
    logFile: Optional[str] = None
    defaultCapital: float = DEFAULT_CAPITAL
    maxResults: int = 50
    corsOrigins: List[str] = DEFAULT_CORS_ORIGINS.split(",")
    host: str = "0.0.0.0"
    port: int = 4000

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            logLevel=env.get("STRATEGY_LAB_LOG_LEVEL", "INFO"),
            logFile=env.get("STRATEGY_LAB_LOG_FILE") or None,
            defaultCapital=float(env.get("STRATEGY_LAB_DEFAULT_CAPITAL", DEFAULT_CAPITAL)),
            maxResults=int(env.get("STRATEGY_LAB_MAX_RESULTS", 50)),
            corsOrigins=[
                origin.strip()
                for origin in env.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
                if origin.strip()
            ],
            host=env.get("STRATEGY_LAB_HOST", "0.0.0.0"),
            port=int(env.get("STRATEGY_LAB_PORT", 4000)),
        )
