import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///school_portal.db")
    )
    db_timeout_seconds: int = field(default_factory=lambda: _env_int("DB_TIMEOUT_SECONDS", 5))
    jwt_secret: str = field(default_factory=lambda: os.getenv("JWT_SECRET", "dev_jwt_secret"))
    jwt_algorithm: str = field(default_factory=lambda: os.getenv("JWT_ALGORITHM", "HS256"))
    jwt_exp_minutes: int = field(default_factory=lambda: _env_int("JWT_EXP_MINUTES", 720))
    smtp_host: str = field(default_factory=lambda: os.getenv("SMTP_SERVER", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: _env_int("SMTP_PORT", 465))
    smtp_username: str = field(default_factory=lambda: os.getenv("SMTP_EMAIL", ""))
    smtp_password: str = field(
        default_factory=lambda: os.getenv("SMTP_PASSWORD", "").replace(" ", "")
    )
    mail_sender_name: str = field(default_factory=lambda: os.getenv("MAIL_SENDER_NAME", "Scuola"))
    mail_default_subject: str = field(
        default_factory=lambda: os.getenv("MAIL_DEFAULT_SUBJECT", "Comunicazione scuola")
    )
    admin_username: str = field(default_factory=lambda: os.getenv("ADMIN_USERNAME", "admin"))
    admin_password: str = field(default_factory=lambda: os.getenv("ADMIN_PASSWORD", "ChangeMe@123"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        )
    )

    @property
    def mail_configured(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)


def load_settings() -> Settings:
    return Settings()
