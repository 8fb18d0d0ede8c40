from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Mapping

LOGGER = logging.getLogger("poker_settings")

# Wire key -> attribute name.
SETTING_KEYS = {
    "autoRebuy": "auto_rebuy",
    "rebuyAmount": "rebuy_amount",
    "showdownDuration": "showdown_duration",
    "handEndDelay": "hand_end_delay",
    "minChipsToPlay": "min_chips_to_play",
    "maxRebuyCount": "max_rebuy_count",
    "blindIncreaseInterval": "blind_increase_interval",
}

# Floors applied to out-of-range values. rebuyAmount falls back to its default.
MINIMUMS = {
    "showdown_duration": 5_000,
    "hand_end_delay": 1_000,
    "min_chips_to_play": 0,
    "max_rebuy_count": -1,
    "blind_increase_interval": 0,
}
DEFAULT_REBUY_AMOUNT = 1_000


@dataclass
class RoomSettings:
    auto_rebuy: bool = False
    rebuy_amount: int = DEFAULT_REBUY_AMOUNT
    showdown_duration: int = 7_000
    hand_end_delay: int = 3_000
    min_chips_to_play: int = 10
    max_rebuy_count: int = -1
    blind_increase_interval: int = 0

    def update(self, changes: Mapping[str, object]) -> Dict[str, object]:
        """Merge a partial wire-format settings map; returns the effective settings."""
        for key, value in changes.items():
            attr = SETTING_KEYS.get(key)
            if attr is None:
                LOGGER.warning("Ignoring unknown setting %r", key)
                continue
            setattr(self, attr, self._coerce(attr, value))
        return self.to_payload()

    def _coerce(self, attr: str, value: object) -> object:
        if attr == "auto_rebuy":
            if isinstance(value, str):
                return value.strip().casefold() in ("1", "true", "yes", "on")
            return bool(value)

        try:
            number = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            number = None

        if attr == "rebuy_amount":
            if number is None or number <= 0:
                LOGGER.warning("Rebuy amount must be positive (got %r); using %s", value, DEFAULT_REBUY_AMOUNT)
                return DEFAULT_REBUY_AMOUNT
            return number

        minimum = MINIMUMS[attr]
        if number is None or number < minimum:
            LOGGER.warning("Setting %s=%r below minimum; clamping to %s", attr, value, minimum)
            return minimum
        return number

    def to_payload(self) -> Dict[str, object]:
        values = asdict(self)
        return {key: values[attr] for key, attr in SETTING_KEYS.items()}
