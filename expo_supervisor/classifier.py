"""
Output classification for child process logs.

Labels chunks of Expo, Metro and native build output by severity and pulls
out the few structured facts the tool layer needs: dev server URLs, bundling
and build progress, and build completion.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"


# Patterns for Expo/Metro/native build output
EXPO_URL = re.compile(r"exp://[^\s]+")
HTTP_URL = re.compile(r"http://[^\s]+")
EXPO_DEV_URL = re.compile(r"exp://[\d.]+:\d+")
METRO_DEV_URL = re.compile(r"http://[\d.]+:\d+")
LOCALHOST_URL = re.compile(r"http://localhost:\d+")
METRO_BUNDLING = re.compile(r"Bundling\s+(\d+(?:\.\d+)?)%")
METRO_COMPLETE = re.compile(r"Bundling complete")
EXPO_READY = re.compile(r"Metro.*waiting on")
XCODE_PROGRESS = re.compile(r"▸\s*(.*)")
GRADLE_PROGRESS = re.compile(r">.*(CONFIGURE|BUILD)")
GRADLE_TASK = re.compile(r">.*:(.*)")
STEP_COUNTER = re.compile(r"\[(\d+)/(\d+)\]")

READY_WINDOW = 20


@dataclass
class ExtractedURL:
    url: str
    kind: str  # "expo" or "metro"


@dataclass
class BuildProgress:
    stage: str
    message: str
    percentage: Optional[int] = None


def detect_level(text: str) -> LogLevel:
    """Classify a chunk of output by the words it contains."""
    lower = text.lower()
    if "error" in lower or "fatal" in lower:
        return LogLevel.ERROR
    if "warn" in lower:
        return LogLevel.WARN
    if "debug" in lower:
        return LogLevel.DEBUG
    return LogLevel.INFO


def extract_urls(line: str) -> list[ExtractedURL]:
    """Extract exp:// and http:// URLs from a line, expo URLs first."""
    urls = []
    seen = set()
    for pattern, kind in ((EXPO_URL, "expo"), (HTTP_URL, "metro")):
        for url in pattern.findall(line):
            if url not in seen:
                seen.add(url)
                urls.append(ExtractedURL(url=url, kind=kind))
    return urls


def extract_dev_server_url(lines: list[str]) -> Optional[str]:
    """Find the URL a device should connect to, preferring exp:// URLs."""
    for pattern in (EXPO_DEV_URL, METRO_DEV_URL, LOCALHOST_URL):
        for line in lines:
            match = pattern.search(line)
            if match:
                return match.group(0)
    return None


def extract_port(url: str) -> Optional[int]:
    match = re.search(r":(\d+)", url.split("//", 1)[-1])
    return int(match.group(1)) if match else None


def extract_metro_progress(line: str) -> Optional[float]:
    """Return the Metro bundling percentage reported on a line, if any."""
    match = METRO_BUNDLING.search(line)
    if match:
        return float(match.group(1))
    if METRO_COMPLETE.search(line):
        return 100.0
    return None


def extract_build_progress(line: str) -> Optional[BuildProgress]:
    """Parse Xcode, Gradle, or [n/total] style native build progress."""
    message = line.strip()

    match = XCODE_PROGRESS.search(line)
    if match:
        return BuildProgress(stage=match.group(1).strip(), message=message)

    if GRADLE_PROGRESS.search(line):
        task = GRADLE_TASK.search(line)
        return BuildProgress(stage=task.group(1) if task else "Building", message=message)

    match = STEP_COUNTER.search(line)
    if match:
        completed, total = int(match.group(1)), int(match.group(2))
        percentage = round(completed / total * 100) if total else None
        return BuildProgress(stage="Building", message=message, percentage=percentage)

    return None


def is_dev_server_ready(lines: list[str]) -> bool:
    recent = "\n".join(lines[-READY_WINDOW:])
    return bool(EXPO_READY.search(recent)) or "Logs for your project" in recent


def is_build_complete(lines: list[str]) -> tuple[bool, Optional[bool]]:
    """
    Detect native build completion in the most recent output.

    Returns (complete, success); success is None while the build is running.
    """
    recent = "\n".join(lines[-READY_WINDOW:])
    if "BUILD SUCCEEDED" in recent or "BUILD SUCCESSFUL" in recent:
        return True, True
    if "BUILD FAILED" in recent:
        return True, False
    return False, None


def extract_errors(lines: list[str]) -> list[str]:
    return [line.strip() for line in lines if detect_level(line) == LogLevel.ERROR]


def extract_warnings(lines: list[str]) -> list[str]:
    return [line.strip() for line in lines if "warn" in line.lower()]


def latest_progress(lines: list[str]) -> Optional[float]:
    """Most recent bundling or build percentage, scanning backwards."""
    for line in reversed(lines):
        progress = extract_metro_progress(line)
        if progress is not None:
            return progress
        build = extract_build_progress(line)
        if build and build.percentage is not None:
            return float(build.percentage)
    return None


def summarize(lines: list[str]) -> dict:
    """Counts of errors and warnings, unique URLs, and latest progress."""
    urls = []
    for line in lines:
        for extracted in extract_urls(line):
            if extracted.url not in urls:
                urls.append(extracted.url)

    return {
        "total": len(lines),
        "errors": len(extract_errors(lines)),
        "warnings": len(extract_warnings(lines)),
        "urls": urls,
        "progress": latest_progress(lines),
    }
