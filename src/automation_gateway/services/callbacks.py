"""Process-wide event suppression."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CallbackFilter:
    """Decide whether an event type may be dispatched at all."""

    disabled: frozenset[str] = field(default_factory=frozenset)

    def is_enabled(self, data_type: str) -> bool:
        """Return true when events of this type should reach subscribers."""
        return data_type not in self.disabled
