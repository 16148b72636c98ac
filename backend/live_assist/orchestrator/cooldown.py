from __future__ import annotations


class CooldownManager:
    """Rate limiter keyed by signal name."""

    def __init__(self):
        self.last_fired: dict[str, float] = {}

    def can_fire(self, key: str, now: float, cooldown: float) -> bool:
        last = self.last_fired.get(key)
        if last is None or (float(now) - last) >= float(cooldown):
            self.last_fired[key] = float(now)
            return True
        return False

    def reset(self) -> None:
        self.last_fired.clear()
