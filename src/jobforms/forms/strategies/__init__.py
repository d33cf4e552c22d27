from __future__ import annotations
from typing import Callable, Dict, Type
import time

from ...config import DetectionConfig
from ...models import Platform
from ..scorer import ConfidenceScorer
from .common import PlatformStrategy, StrategyResult
from .custom import CustomStrategy
from .indeed import IndeedStrategy
from .linkedin import LinkedInStrategy
from .workday import WorkdayStrategy


STRATEGIES: Dict[Platform, Type] = {
    Platform.LINKEDIN: LinkedInStrategy,
    Platform.INDEED: IndeedStrategy,
    Platform.WORKDAY: WorkdayStrategy,
    Platform.CUSTOM: CustomStrategy,
}


def create_strategy(
    platform: Platform,
    scorer: ConfidenceScorer,
    config: DetectionConfig,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> PlatformStrategy:
    try:
        cls = STRATEGIES[platform]
    except KeyError:
        raise ValueError(f"no detection strategy for platform {platform!r}") from None
    return cls(scorer, config, clock=clock)


__all__ = [
    "CustomStrategy",
    "IndeedStrategy",
    "LinkedInStrategy",
    "PlatformStrategy",
    "StrategyResult",
    "WorkdayStrategy",
    "create_strategy",
]
