"""
CLI Tests

Only commands that need no Redis server are exercised.
"""

import json
import logging

import pytest

from requestiq.__main__ import build_parser, main


@pytest.fixture(autouse=True)
def restore_root_logger(monkeypatch):
    for key in ("REQUESTIQ_REDIS_URL", "REQUESTIQ_SAMPLING_EXCLUDE_PATHS"):
        monkeypatch.delenv(key, raising=False)
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    yield
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]


class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args(["top"])

        assert args.kind == "paths"
        assert args.limit == 10
        assert args.hours == 1.0
        assert args.granularity == "minute"

    def test_rejects_unknown_metric(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["timeseries", "--metric", "bytes"])


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_bad_redis_url(self, capsys):
        assert main(["--redis-url", "http://cache", "query"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_environment(self, monkeypatch, capsys):
        monkeypatch.setenv("REQUESTIQ_SAMPLING_RATE", "7")

        assert main(["demo"]) == 2

    def test_demo_json(self, capsys):
        assert main(["--json", "demo", "--requests", "200", "--seed", "3"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["available"] is True
        assert 0 < data["totalRequests"] <= 200
        assert data["complete"] is True

    def test_demo_summary(self, capsys):
        assert main(["demo", "--requests", "50"]) == 0

        assert "Recorded" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
