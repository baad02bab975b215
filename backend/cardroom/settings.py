"""
Waitlist policy configuration.

Policy constants are read from the environment (``.env`` supported via
python-dotenv). Services take a ``WaitlistPolicy`` so tests can pass their own.
"""
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class WaitlistPolicy:
    checkin_window_minutes: int = 90
    response_window_minutes: int = 5
    position_epsilon: float = 0.001
    expiry_interval_seconds: int = 60
    expiry_warning_minutes: int = 10
    cancel_other_entries_on_seat: bool = True


def load_policy() -> WaitlistPolicy:
    """Build a policy from environment variables, falling back to defaults."""
    return WaitlistPolicy(
        checkin_window_minutes=int(os.getenv("WAITLIST_CHECKIN_WINDOW_MINUTES", "90")),
        response_window_minutes=int(os.getenv("WAITLIST_RESPONSE_WINDOW_MINUTES", "5")),
        position_epsilon=float(os.getenv("WAITLIST_POSITION_EPSILON", "0.001")),
        expiry_interval_seconds=int(os.getenv("WAITLIST_EXPIRY_INTERVAL_SECONDS", "60")),
        expiry_warning_minutes=int(os.getenv("WAITLIST_EXPIRY_WARNING_MINUTES", "10")),
        cancel_other_entries_on_seat=_env_bool("WAITLIST_CANCEL_OTHER_ENTRIES_ON_SEAT", True),
    )


@lru_cache(maxsize=1)
def get_policy() -> WaitlistPolicy:
    return load_policy()
