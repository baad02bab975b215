"""
Per-status display policy and deadline helpers.

The countdown minutes here come from the waitlist policy so the staff UI
countdown and the expiry job always agree on a deadline.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from cardroom.models.waitlist_entry import (
    STATUS_CALLEDIN,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_NOTIFIED,
    STATUS_SEATED,
    STATUS_WAITING,
    WaitlistEntry,
)
from cardroom.settings import WaitlistPolicy, get_policy


@dataclass(frozen=True)
class WaitlistStatusConfig:
    label: str
    description: str
    show_countdown: bool
    countdown_minutes: Optional[int] = None
    actions: List[str] = field(default_factory=list)


def build_status_config(policy: Optional[WaitlistPolicy] = None) -> Dict[str, WaitlistStatusConfig]:
    policy = policy or get_policy()
    return {
        STATUS_WAITING: WaitlistStatusConfig(
            label="Waiting",
            description="Player is checked in and waiting for a seat",
            show_countdown=False,
            actions=["assign", "cancel"],
        ),
        STATUS_CALLEDIN: WaitlistStatusConfig(
            label="Called In",
            description=f"Player has {policy.checkin_window_minutes} minutes to check in",
            show_countdown=True,
            countdown_minutes=policy.checkin_window_minutes,
            actions=["checkin", "notify", "assign", "cancel"],
        ),
        STATUS_NOTIFIED: WaitlistStatusConfig(
            label="Notified",
            description=f"Player has {policy.response_window_minutes} minutes to respond",
            show_countdown=True,
            countdown_minutes=policy.response_window_minutes,
            actions=["assign", "recall", "cancel"],
        ),
        STATUS_SEATED: WaitlistStatusConfig(
            label="Seated",
            description="Player is seated at a table",
            show_countdown=False,
        ),
        STATUS_CANCELLED: WaitlistStatusConfig(
            label="Cancelled",
            description="Entry was cancelled",
            show_countdown=False,
            actions=["rejoin"],
        ),
        STATUS_EXPIRED: WaitlistStatusConfig(
            label="Expired",
            description="Time limit exceeded",
            show_countdown=False,
            actions=["rejoin"],
        ),
    }


def get_status_config(status: Optional[str], policy: Optional[WaitlistPolicy] = None) -> WaitlistStatusConfig:
    """Config for ``status``; unknown or missing statuses fall back to calledin."""
    configs = build_status_config(policy)
    return configs.get(status or STATUS_CALLEDIN, configs[STATUS_CALLEDIN])


def deadline_anchor(status: str, notified_at: Optional[datetime], created_at: Optional[datetime]) -> Optional[datetime]:
    """calledin counts from creation, notified from the notification."""
    if status == STATUS_CALLEDIN:
        return created_at
    if status == STATUS_NOTIFIED:
        return notified_at
    return None


def get_target_time(
    status: str,
    notified_at: Optional[datetime],
    created_at: Optional[datetime],
    policy: Optional[WaitlistPolicy] = None,
) -> Optional[datetime]:
    config = get_status_config(status, policy)
    if not config.countdown_minutes:
        return None
    anchor = deadline_anchor(status, notified_at, created_at)
    if anchor is None:
        return None
    return anchor + timedelta(minutes=config.countdown_minutes)


def entry_deadline(entry: WaitlistEntry, policy: Optional[WaitlistPolicy] = None) -> Optional[datetime]:
    return get_target_time(entry.status, entry.notified_at, entry.created_at, policy)


def should_show_in_active_list(status: Optional[str]) -> bool:
    return status in (STATUS_WAITING, STATUS_CALLEDIN, STATUS_NOTIFIED)


def should_show_in_expired_list(status: Optional[str]) -> bool:
    return status in (STATUS_CANCELLED, STATUS_EXPIRED)
