from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

from congresso_etl.cli import build_options, main, parse_args
from congresso_etl.config import ApiConfig, StoreConfig, rate_policy_from_env, safe_int, validate_config
from congresso_etl.windows import IncrementalWindow


class TestEnvironment:
    def test_api_overrides(self):
        cfg = ApiConfig.from_env(
            {
                "CAMARA_API_BASE_URL": "http://localhost:9000/api/v2/",
                "ETL_MAX_RETRIES": "5",
                "ETL_RETRY_DELAY": "0,5",
            }
        )
        assert cfg.camara_root == "http://localhost:9000/api/v2"
        assert cfg.retry.max_attempts == 5
        assert cfg.retry.base_delay == 0.5

    def test_defaults_when_unset(self):
        cfg = ApiConfig.from_env({})
        assert cfg.retry.max_attempts == 3
        assert cfg.retry.base_delay == 2.0
        assert StoreConfig.from_env({}).batch_size == 500

    def test_rate_policy(self):
        rate = rate_policy_from_env({"FIRESTORE_PAUSE_BETWEEN_BATCHES": "1.5"})
        assert rate.between_batches == 1.5
        assert rate.between_chunks == 2.0

    def test_out_of_range_settings_are_reported(self):
        problems = validate_config(
            ApiConfig.from_env({"ETL_MAX_RETRIES": "0"}),
            StoreConfig.from_env({"FIRESTORE_BATCH_SIZE": "900"}),
        )
        assert len(problems) == 2


def test_safe_int():
    assert safe_int(" 42 ") == 42
    assert safe_int("4.2") is None
    assert safe_int(None) is None
    assert safe_int(True) is None


class TestWindows:
    def test_trailing_months_crosses_year(self):
        w = IncrementalWindow.trailing_months(datetime(2024, 1, 20), 2)
        assert w.start == date(2023, 11, 1)
        assert w.months() == [(2023, 11), (2023, 12), (2024, 1)]

    def test_trailing_days(self):
        w = IncrementalWindow.trailing_days(datetime(2024, 3, 15, 23, 59), 60)
        assert w.as_params() == {"dataInicio": "2024-01-15", "dataFim": "2024-03-15"}
        assert w.contains(date(2024, 1, 15))
        assert not w.contains(date(2024, 1, 14))
        assert not w.contains(None)


class TestCli:
    def test_build_options(self):
        args = parse_args(
            ["--term", "56", "--domain", "discursos", "--party", "PSOL", "--limit", "5", "--incremental"]
        )
        opts = build_options(args)
        assert opts.term == 56
        assert opts.domain == "discursos"
        assert opts.party == "PSOL"
        assert opts.limit == 5
        assert opts.mode == "incremental"
        assert opts.show_progress is True

    def test_invalid_term_exits_with_one(self, tmp_path: Path):
        code = main(
            [
                "--term",
                "99",
                "--destination",
                "memory",
                "--logs-dir",
                str(tmp_path),
                "--no-progress",
            ]
        )
        assert code == 1
