import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _get_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer.") from exc


def _get_list_env(name: str, default: list[str]) -> list[str]:
    raw_value = os.getenv(name)
    if not raw_value:
        return default
    return [item.strip() for item in raw_value.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fincontrol.db")
FRONTEND_ORIGINS = _get_list_env(
    "FRONTEND_ORIGIN",
    ["http://localhost:3000", "http://localhost:4200", "http://localhost:5173"],
)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SHOPPING_EXPENSE_CATEGORY = os.getenv("SHOPPING_EXPENSE_CATEGORY", "Groceries")
MAX_INSTALLMENTS = _get_int_env("MAX_INSTALLMENTS", 48)


def setup_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger(__name__).info("Logging configured at %s.", LOG_LEVEL)
