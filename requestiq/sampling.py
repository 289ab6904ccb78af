"""
Request Sampler

Decides which requests are recorded:
- slow requests (duration > slow threshold) always
- everything else with probability `rate`

and which paths are never looked at. Exclusion patterns are exact paths
or globs where `*` matches any run of characters, e.g. "/_next/*".
"""

from __future__ import annotations

import random
import re
from typing import Callable, Optional

from requestiq.core.config import SamplingConfig


def compile_path_pattern(pattern: str) -> re.Pattern[str]:
    """ "/_next/*" -> ^/_next/.*$ """
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


class RequestSampler:
    """
    Usage:
        sampler = RequestSampler(SamplingConfig(rate=0.25))
        if not sampler.should_exclude_path(path) and sampler.should_sample(path, 12.5):
            ...
    """

    __slots__ = ("_config", "_rng", "_exact", "_patterns")

    def __init__(
        self,
        config: Optional[SamplingConfig] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config or SamplingConfig()
        self._rng = rng
        self._exact = frozenset(p for p in self._config.exclude_paths if "*" not in p)
        self._patterns = tuple(
            compile_path_pattern(p) for p in self._config.exclude_paths if "*" in p
        )

    @property
    def config(self) -> SamplingConfig:
        return self._config

    def should_sample(self, path: str, duration: Optional[float] = None) -> bool:
        if duration is not None and duration > self._config.slow_threshold_ms:
            return True
        return self._rng() < self._config.rate

    def should_exclude_path(self, path: str) -> bool:
        if path in self._exact:
            return True
        return any(p.match(path) for p in self._patterns)
