"""Fan-out strategies for running one plan over many images."""

from ..core.exceptions import InternalError
from ..core.protocols import FanOutStrategy
from .asyncio_processor import AsyncioFanOut
from .multithread import ThreadPoolFanOut

STRATEGIES = {
    AsyncioFanOut.name: AsyncioFanOut,
    ThreadPoolFanOut.name: ThreadPoolFanOut,
}


def get_strategy(name: str = "asyncio", concurrency: int = 8) -> FanOutStrategy:
    """Build the fan-out strategy registered under ``name``."""
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise InternalError(f"Unknown batch strategy: {name}") from None
    return strategy_cls(concurrency=concurrency)


__all__ = [
    "AsyncioFanOut",
    "ThreadPoolFanOut",
    "STRATEGIES",
    "get_strategy",
]
