"""
Unit Tests: Request Sampler
"""

import pytest

from requestiq.core.config import SamplingConfig
from requestiq.sampling import RequestSampler, compile_path_pattern


class TestPathPatterns:

    @pytest.mark.parametrize("pattern,path,matches", [
        ("/_next/*", "/_next/static/app.js", True),
        ("/_next/*", "/_next/", True),
        ("/_next/*", "/_nextjs", False),
        ("/api/*/health", "/api/v1/health", True),
        ("/a.b", "/aXb", False),
        ("/favicon.ico", "/favicon.ico", True),
    ])
    def test_glob(self, pattern, path, matches):
        assert bool(compile_path_pattern(pattern).match(path)) is matches


class TestRequestSampler:

    def test_default_exclusions(self):
        sampler = RequestSampler()

        assert sampler.should_exclude_path("/favicon.ico")
        assert sampler.should_exclude_path("/_next/data/x.json")
        assert sampler.should_exclude_path("/api/auth/session")
        assert not sampler.should_exclude_path("/api/users")
        assert not sampler.should_exclude_path("/favicon.ico.bak")

    def test_custom_exclusions(self):
        sampler = RequestSampler(SamplingConfig(exclude_paths=("/health", "/static/*")))

        assert sampler.should_exclude_path("/health")
        assert sampler.should_exclude_path("/static/a.css")
        assert not sampler.should_exclude_path("/favicon.ico")

    def test_rate_uses_rng(self):
        config = SamplingConfig(rate=0.25)

        assert RequestSampler(config, rng=lambda: 0.1).should_sample("/a", 5)
        assert not RequestSampler(config, rng=lambda: 0.25).should_sample("/a", 5)

    def test_slow_requests_always_sampled(self):
        sampler = RequestSampler(SamplingConfig(rate=0.0), rng=lambda: 0.99)

        assert sampler.should_sample("/a", 1000.5)
        assert not sampler.should_sample("/a", 1000)
        assert not sampler.should_sample("/a")

    @pytest.mark.parametrize("rate,sampled", [(0.0, False), (1.0, True)])
    def test_rate_bounds(self, rate, sampled):
        sampler = RequestSampler(SamplingConfig(rate=rate), rng=lambda: 0.999)

        assert sampler.should_sample("/a", 1) is sampled


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
