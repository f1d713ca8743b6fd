import os
from dataclasses import dataclass

OVERALL_SCOPES = ("contributing", "all_weighted")


@dataclass(frozen=True)
class EngineSettings:
    """Constants of the scoring model. Not environment driven except overall_scope."""

    score_scale: int = 4000
    log_capacity: int = 5
    overall_scope: str = "contributing"

    def __post_init__(self) -> None:
        if self.overall_scope not in OVERALL_SCOPES:
            raise ValueError(
                f"overall_scope must be one of {OVERALL_SCOPES}, got {self.overall_scope!r}"
            )
        if self.log_capacity <= 0:
            raise ValueError("log_capacity must be positive")


@dataclass(frozen=True)
class Config:
    database_url: str
    listen_database_url: str = ""
    poll_interval_seconds: float = 5.0
    batch_size: int = 10
    max_retries: int = 3
    health_port: int = 8081
    log_format: str = "json"
    reference_ttl_seconds: float = 86400.0
    overall_scope: str = "contributing"

    def __post_init__(self) -> None:
        if not self.listen_database_url:
            object.__setattr__(self, "listen_database_url", self.database_url)

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        return cls(
            database_url=database_url,
            listen_database_url=os.environ.get(
                "RANKING_WORKER_LISTEN_DATABASE_URL", database_url
            ),
            poll_interval_seconds=float(os.environ.get("RANKING_POLL_INTERVAL", "5.0")),
            batch_size=int(os.environ.get("RANKING_BATCH_SIZE", "10")),
            max_retries=int(os.environ.get("RANKING_MAX_RETRIES", "3")),
            health_port=int(os.environ.get("RANKING_HEALTH_PORT", "8081")),
            log_format=os.environ.get("RANKING_LOG_FORMAT", "json"),
            reference_ttl_seconds=float(
                os.environ.get("RANKING_REFERENCE_TTL_SECONDS", "86400")
            ),
            overall_scope=os.environ.get("RANKING_OVERALL_SCOPE", "contributing"),
        )

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(overall_scope=self.overall_scope)
