from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from pilot_telemetry.events import DomainEvent


class GameMode(StrEnum):
    tutorial = "tutorial"
    free_play = "free_play"
    challenge = "challenge"
    daily_run = "daily_run"
    weekly_special = "weekly_special"


@dataclass(frozen=True, slots=True)
class EventSpec:
    name: str
    required: frozenset[str] = frozenset()


def _spec(name: str, *required: str) -> EventSpec:
    return EventSpec(name=name, required=frozenset(required))


# Known game events and the attributes each one must carry.
# Names outside this table are accepted as custom events without checks.
EVENT_SPECS: dict[str, EventSpec] = {
    s.name: s
    for s in [
        # Game
        _spec("game_started", "mode", "environment"),
        _spec("game_completed", "mode", "score", "duration", "environment"),
        _spec("game_paused", "duration"),
        _spec("game_resumed"),
        _spec("game_abandoned", "reason", "duration"),
        # User interactions
        _spec("airplane_customized", "fold_type", "color_scheme"),
        _spec("challenge_shared", "challenge_id"),
        _spec("achievement_unlocked", "achievement_id"),
        _spec("leaderboard_viewed", "category"),
        _spec("settings_changed", "setting", "value"),
        # Game Center
        _spec("game_center_authenticated"),
        _spec("game_center_auth_failed", "error"),
        _spec("leaderboard_score_submitted", "category", "score"),
        _spec("achievement_progress_updated", "achievement_id", "progress"),
        # Performance
        _spec("low_frame_rate_detected", "fps", "scene"),
        _spec("high_memory_usage_detected", "memory_mb"),
        _spec("slow_scene_transition", "from_scene", "to_scene", "duration"),
        _spec("app_launch_completed", "duration"),
        _spec("performance_metric", "metric_name", "value", "unit", "category"),
        # Errors
        _spec("error_occurred", "category", "message"),
        _spec("crash_recovered", "context"),
        # Network
        _spec("network_connectivity_changed", "is_connected"),
        _spec("network_request_failed", "endpoint", "error"),
        _spec("offline_mode_activated"),
        # Feature usage
        _spec("screen_view", "screen_name"),
        _spec("tutorial_started"),
        _spec("tutorial_completed", "duration"),
        _spec("tutorial_skipped", "step"),
        _spec("daily_run_started"),
        _spec("weekly_special_viewed"),
        _spec("challenge_code_entered", "is_valid"),
        _spec("daily_run_generated", "difficulty"),
        _spec("daily_run_completed", "score"),
        _spec("ab_test_assigned", "test", "group"),
        # Privacy & compliance
        _spec("privacy_policy_accepted"),
        _spec("compliance_validation", "is_compliant"),
    ]
}


def validate_event(event: DomainEvent) -> None:
    spec = EVENT_SPECS.get(event.name)
    if spec is None:
        return

    present = {k for k, v in event.attributes.items() if v is not None}
    missing = spec.required - present
    if missing:
        raise ValueError(f"Event '{event.name}' missing attributes: {','.join(sorted(missing))}")


@dataclass(frozen=True, slots=True)
class PerformanceMetric:
    name: str
    value: float
    unit: str
    category: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    additional_info: dict[str, str] | None = None

    def to_domain_event(self) -> DomainEvent:
        attrs: dict[str, object] = {
            "metric_name": self.name,
            "value": self.value,
            "unit": self.unit,
            "category": self.category,
            "timestamp": self.timestamp,
        }
        if self.additional_info:
            attrs.update(self.additional_info)
        return DomainEvent(name="performance_metric", attributes=attrs)
