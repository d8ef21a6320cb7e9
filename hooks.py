from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


EVENTS = (
    "program_start",
    "before_instruction",
    "after_call",
    "on_error",
    "program_end",
)

StepRule = Callable[[Any, "StepContext"], None]


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None
    function: Optional[str]


@dataclass
class HookRegistry:
    """Host callbacks fired by the interpreter, by event name or every N steps."""

    # event -> handlers, highest priority first
    _events: Dict[str, List[Tuple[int, Callable[..., None]]]] = field(default_factory=dict)
    # (name, every_n, rule)
    _step_rules: List[Tuple[str, int, StepRule]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'")
        handlers = self._events.setdefault(event, [])
        handlers.append((priority, handler))
        handlers.sort(key=lambda item: item[0], reverse=True)

    def handlers(self, event: str) -> List[Tuple[int, Callable[..., None]]]:
        return list(self._events.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        for _priority, handler in self.handlers(event):
            handler(*args)

    def has_handlers(self, event: str) -> bool:
        return bool(self._events.get(event))

    def add_step_rule(self, name: str, every_n: int, rule: StepRule) -> None:
        if every_n <= 0:
            raise ValueError("every_n must be >= 1")
        self._step_rules.append((name, every_n, rule))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for _name, every_n, rule in self._step_rules:
            if ctx.step_index % every_n == 0:
                rule(interpreter, ctx)

    @property
    def step_rules(self) -> List[str]:
        return [name for name, _every_n, _rule in self._step_rules]

    def every_n_steps(self, every_n: int, *, name: str = "") -> Callable[[StepRule], StepRule]:
        def deco(fn: StepRule) -> StepRule:
            self.add_step_rule(name or fn.__name__, every_n, fn)
            return fn

        return deco
