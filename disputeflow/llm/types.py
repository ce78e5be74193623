"""LLM response types"""

from dataclasses import dataclass, field


@dataclass
class LLMResponse:
    """Unified LLM response."""
    content: str | None
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.content or "").strip()
