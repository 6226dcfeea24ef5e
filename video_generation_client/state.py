from typing import Any, Callable, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Observable(Generic[T]):
    """Single-writer value holder that notifies subscribers when the value changes"""

    def __init__(self, initial: T):
        self._value = initial
        self._subscribers: List[Callable[[T], Any]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for callback in list(self._subscribers):
            callback(value)

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        """Registers a callback and returns a function that removes it"""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class StateSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    video_url: Optional[str]
    is_loading: bool
    error: Optional[str]
    elapsed_seconds: int
    total_generation_seconds: Optional[int]


class GenerationState:
    def __init__(self):
        self.prompt: Observable[str] = Observable("")
        self.video_url: Observable[Optional[str]] = Observable(None)
        self.is_loading: Observable[bool] = Observable(False)
        self.error: Observable[Optional[str]] = Observable(None)
        self.elapsed_seconds: Observable[int] = Observable(0)
        self.total_generation_seconds: Observable[Optional[int]] = Observable(None)

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            prompt=self.prompt.value,
            video_url=self.video_url.value,
            is_loading=self.is_loading.value,
            error=self.error.value,
            elapsed_seconds=self.elapsed_seconds.value,
            total_generation_seconds=self.total_generation_seconds.value,
        )
