"""
Unit tests for output classification and log parsing.
"""

from expo_supervisor.classifier import (
    LogLevel,
    detect_level,
    extract_build_progress,
    extract_dev_server_url,
    extract_errors,
    extract_metro_progress,
    extract_port,
    extract_urls,
    extract_warnings,
    is_build_complete,
    is_dev_server_ready,
    latest_progress,
    summarize,
)


class TestDetectLevel:
    def test_error(self):
        assert detect_level("ERROR: build failed") == LogLevel.ERROR

    def test_fatal(self):
        assert detect_level("Fatal exception in thread") == LogLevel.ERROR

    def test_warning(self):
        assert detect_level("WARNING: deprecated") == LogLevel.WARN

    def test_debug(self):
        assert detect_level("[debug] resolving module") == LogLevel.DEBUG

    def test_info_default(self):
        assert detect_level("Starting Metro Bundler") == LogLevel.INFO

    def test_error_takes_precedence(self):
        assert detect_level("warning: an error occurred") == LogLevel.ERROR

    def test_level_values(self):
        assert LogLevel.WARN.value == "warn"
        assert LogLevel.ERROR == "error"


class TestUrls:
    def test_extract_urls_expo_first(self):
        urls = extract_urls("Metro http://192.168.1.5:8081 or exp://192.168.1.5:8081")
        assert [u.url for u in urls] == ["exp://192.168.1.5:8081", "http://192.168.1.5:8081"]
        assert [u.kind for u in urls] == ["expo", "metro"]

    def test_extract_urls_deduplicates(self):
        urls = extract_urls("exp://a:1 exp://a:1")
        assert len(urls) == 1

    def test_dev_server_url_prefers_expo(self):
        lines = [
            "Waiting on http://localhost:8081",
            "Metro waiting on exp://192.168.0.10:19000",
        ]
        assert extract_dev_server_url(lines) == "exp://192.168.0.10:19000"

    def test_dev_server_url_falls_back_to_localhost(self):
        assert extract_dev_server_url(["Web is waiting on http://localhost:19006"]) == (
            "http://localhost:19006"
        )

    def test_dev_server_url_missing(self):
        assert extract_dev_server_url(["Starting project"]) is None

    def test_extract_port(self):
        assert extract_port("exp://192.168.0.10:19000") == 19000
        assert extract_port("http://localhost") is None


class TestProgress:
    def test_metro_bundling(self):
        assert extract_metro_progress("iOS Bundling 45.5% (120/300)") == 45.5

    def test_metro_complete(self):
        assert extract_metro_progress("Bundling complete 1234ms") == 100.0

    def test_metro_none(self):
        assert extract_metro_progress("hello") is None

    def test_xcode_progress(self):
        progress = extract_build_progress("▸ Compiling AppDelegate.m")
        assert progress.stage == "Compiling AppDelegate.m"

    def test_gradle_progress(self):
        progress = extract_build_progress("> Task :app:BUILD assembleDebug")
        assert progress is not None
        assert progress.percentage is None

    def test_step_counter(self):
        progress = extract_build_progress("[3/4] Linking")
        assert progress.percentage == 75

    def test_latest_progress_scans_backwards(self):
        lines = ["Bundling 10%", "[1/2] step", "noise"]
        assert latest_progress(lines) == 50.0
        assert latest_progress(["noise"]) is None


class TestCompletion:
    def test_dev_server_ready(self):
        assert is_dev_server_ready(["Starting", "Metro waiting on exp://127.0.0.1:19000"])
        assert is_dev_server_ready(["Logs for your project will appear below."])
        assert not is_dev_server_ready(["Starting Metro Bundler"])

    def test_ready_only_looks_at_recent_lines(self):
        lines = ["Metro waiting on exp://1.2.3.4:19000"] + ["noise"] * 25
        assert not is_dev_server_ready(lines)

    def test_build_succeeded(self):
        assert is_build_complete(["...", "** BUILD SUCCEEDED **"]) == (True, True)
        assert is_build_complete(["BUILD SUCCESSFUL in 42s"]) == (True, True)

    def test_build_failed(self):
        assert is_build_complete(["BUILD FAILED"]) == (True, False)

    def test_build_running(self):
        assert is_build_complete(["Compiling"]) == (False, None)


class TestSummaries:
    def test_extract_errors_and_warnings(self):
        lines = ["  Error: missing module  ", "warn: slow", "ok"]
        assert extract_errors(lines) == ["Error: missing module"]
        assert extract_warnings(lines) == ["warn: slow"]

    def test_summarize(self):
        lines = [
            "Metro waiting on exp://10.0.0.2:8081",
            "ERROR something broke",
            "WARN deprecated api",
            "Bundling 80%",
        ]
        summary = summarize(lines)
        assert summary["total"] == 4
        assert summary["errors"] == 1
        assert summary["warnings"] == 1
        assert summary["urls"] == ["exp://10.0.0.2:8081"]
        assert summary["progress"] == 80.0
