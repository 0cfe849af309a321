import os
from dataclasses import dataclass, field


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class Settings:
    jwt_secret: str = os.getenv("TUITION_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("TUITION_JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("TUITION_JWT_EXP_MINUTES", "60"))
    bcrypt_rounds: int = int(os.getenv("TUITION_BCRYPT_ROUNDS", "12"))
    min_password_length: int = int(os.getenv("TUITION_MIN_PASSWORD_LENGTH", "8"))
    init_admin_username: str = os.getenv("INIT_ADMIN_USERNAME", "admin")
    init_admin_password: str = os.getenv("INIT_ADMIN_PASSWORD", "")
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _split_origins(os.getenv("TUITION_CORS_ORIGINS", "*"))
    )


settings = Settings()
