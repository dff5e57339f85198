import os

from pydantic import BaseModel, Field, ValidationError, field_validator

ENV_PREFIX = "TRACKER_PROBE_"

ENV_FIELDS = {
    "UDP_TIMEOUT": "udp_timeout_sec",
    "HTTP_TIMEOUT": "http_timeout_sec",
    "NUMWANT": "numwant",
    "LOG_LEVEL": "log_level",
    "TIMEZONE": "timezone",
}


class Settings(BaseModel):
    model_config = {"frozen": True}

    udp_timeout_sec: float = Field(default=5.0, gt=0, description="Таймаут чтения UDP ответа, секунды")
    http_timeout_sec: float = Field(default=5.0, gt=0, description="Таймаут HTTP announce, секунды")
    numwant: int = Field(default=50, ge=1, description="numwant в каждом announce")
    log_level: str = Field(default="INFO", description="Уровень логирования")
    timezone: str = Field(default="Europe/Moscow", description="Часовой пояс времени в логах")

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls) -> "Settings":
        """ Настройки из переменных окружения TRACKER_PROBE_* """
        fields = {field: os.environ[ENV_PREFIX + name] for name, field in ENV_FIELDS.items()
                  if ENV_PREFIX + name in os.environ}
        try:
            return cls(**fields)
        except ValidationError as exception:
            env_names = {field: ENV_PREFIX + name for name, field in ENV_FIELDS.items()}
            names = sorted({env_names[error["loc"][0]] for error in exception.errors() if error["loc"]})
            raise ValueError(f"Неверные переменные окружения {', '.join(names)}: {exception}") from None

    def override(self, **changes) -> "Settings":
        changes = {key: value for key, value in changes.items() if value is not None}
        return self.model_validate({**self.model_dump(), **changes})


settings = Settings.from_env()
