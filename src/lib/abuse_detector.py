"""
Abuse detection for letter-generation requests.

Scores each request for:
- Excessive frequency and bursts from one identifier
- Duplicate submissions, including the same payload from many identifiers
- Bot-like timing (perfectly regular or superhuman inter-arrival times)
- Junk content (too short, keyboard mashing, gibberish, spam markers,
  coordinates outside Portugal or placeholder coordinates)

Scores from the independent analyses are summed and clamped to 100. A request
is abusive at ``abusive_threshold`` (50); at ``block_threshold`` (80) the
identifier is blocked until an administrator unblocks it (or until the
optional ``block_ttl_seconds`` elapses).

Usage:
    detector = AbuseDetector(AbuseDetectionConfig())
    analysis = detector.analyze_request("1.2.3.4", payload)
    if analysis.is_abusive:
        return 429, analysis.reasons
"""

from __future__ import annotations

import json
import math
import re
import statistics
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.config.security import AbuseDetectionConfig
from src.lib.logging import hash_identifier

logger = structlog.get_logger(__name__)

SPAM_INDICATORS = ("test", "teste", "spam", "xxx", "asdf", "qwerty")
PLACEHOLDER_COORDINATES = ((0.0, 0.0), (90.0, 0.0))

BLOCKED_REASON = "IP address is blocked due to previous abuse"
AUTO_BLOCK_REASON = "Identifier automatically blocked due to high abuse score"

_REPEATED_CHARS = re.compile(r"(.)\1{10,}")
_VOWELS = re.compile(r"[aeiouáéíóú]", re.IGNORECASE)
_CONSONANTS = re.compile(r"[bcdfghjklmnpqrstvwxyz]", re.IGNORECASE)

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class RequestSignature:
    """Occurrences of one normalized payload."""

    hash: str
    count: int
    first_seen: float
    last_seen: float
    identifiers: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class AbuseAnalysis:
    """Verdict for one analyzed request."""

    is_abusive: bool
    reasons: list[str]
    risk_score: int
    recommendations: list[str]
    auto_blocked: bool = False


@dataclass(frozen=True)
class AbuseMetrics:
    """Aggregate counters for the admin dashboard."""

    total_requests: int
    unique_requests: int
    duplicate_requests: int
    suspicious_patterns: int
    blocked_requests: int
    blocked_identifiers: int
    average_request_interval_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "unique_requests": self.unique_requests,
            "duplicate_requests": self.duplicate_requests,
            "suspicious_patterns": self.suspicious_patterns,
            "blocked_requests": self.blocked_requests,
            "blocked_identifiers": self.blocked_identifiers,
            "average_request_interval_ms": round(self.average_request_interval_ms, 3),
        }


@dataclass
class _Findings:
    score: int = 0
    reasons: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def add(self, weight: int, reason: str, recommendation: str | None = None) -> None:
        self.score += weight
        self.reasons.append(reason)
        if recommendation:
            self.recommendations.append(recommendation)


# =============================================================================
# Abuse Detector
# =============================================================================


class AbuseDetector:
    """
    Heuristic abuse scorer with an in-memory blocklist.

    Timing histories, payload signatures and the blocklist are guarded by one
    lock so the signature increment and blocklist update of a request are
    atomic with respect to concurrent requests.
    """

    def __init__(
        self,
        config: AbuseDetectionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or AbuseDetectionConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._signatures: dict[str, RequestSignature] = {}
        self._request_times: dict[str, list[float]] = {}
        self._blocked: dict[str, float] = {}  # identifier -> blocked at

        self._total_requests = 0
        self._duplicate_requests = 0
        self._suspicious_patterns = 0
        self._blocked_requests = 0

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_request(self, identifier: str, payload: Mapping[str, Any]) -> AbuseAnalysis:
        """
        Score a request and record it for future analysis.

        A blocked identifier short-circuits to a score of 100 without any
        further analysis or recording. Otherwise every request is recorded,
        abusive or not, so detection state survives denials.

        Args:
            identifier: Opaque client identifier (IP address)
            payload: Report payload (category, description, location, urgency)

        Returns:
            AbuseAnalysis
        """
        cfg = self.config
        request_hash = self.hash_request(payload)
        content = self._analyze_content(payload)

        with self._lock:
            now = self._clock()
            if self._is_blocked_locked(identifier, now):
                self._blocked_requests += 1
                return AbuseAnalysis(
                    is_abusive=True,
                    reasons=[BLOCKED_REASON],
                    risk_score=100,
                    recommendations=["Contact administrator to appeal block"],
                )

            findings = _Findings()
            self._analyze_frequency(identifier, now, findings)
            self._analyze_duplicates(identifier, request_hash, now, findings)
            self._analyze_timing(identifier, findings)
            findings.score += content.score
            findings.reasons.extend(content.reasons)
            findings.recommendations.extend(content.recommendations)

            self._record(identifier, request_hash, now)

            auto_blocked = cfg.auto_block and findings.score >= cfg.block_threshold
            if auto_blocked:
                self._blocked[identifier] = now
                findings.reasons.append(AUTO_BLOCK_REASON)

            risk_score = min(findings.score, 100)
            is_abusive = risk_score >= cfg.abusive_threshold
            if is_abusive:
                self._suspicious_patterns += 1

        if auto_blocked:
            logger.error(
                "identifier_auto_blocked",
                client=hash_identifier(identifier),
                risk_score=risk_score,
            )
        elif is_abusive:
            logger.warning(
                "abuse_detected",
                client=hash_identifier(identifier),
                risk_score=risk_score,
                reason_count=len(findings.reasons),
            )

        return AbuseAnalysis(
            is_abusive=is_abusive,
            reasons=findings.reasons,
            risk_score=risk_score,
            recommendations=findings.recommendations,
            auto_blocked=auto_blocked,
        )

    def _analyze_frequency(self, identifier: str, now: float, findings: _Findings) -> None:
        cfg = self.config
        times = self._request_times.setdefault(identifier, [])
        times.append(now)

        last_minute = [t for t in times if now - t < 60]
        last_hour = [t for t in times if now - t < 3600]

        if len(last_minute) > cfg.max_requests_last_minute:
            findings.add(cfg.weight_minute_excess, "Excessive requests in last minute", "Slow down request rate")
        if len(last_hour) > cfg.max_requests_last_hour:
            findings.add(
                cfg.weight_hour_excess,
                "Excessive requests in last hour",
                "Implement proper rate limiting on client side",
            )

        if len(last_minute) >= cfg.burst_min_requests:
            intervals = _intervals_ms(last_minute)
            if statistics.fmean(intervals) < cfg.burst_mean_interval_ms:
                findings.add(cfg.weight_burst, "Automated request pattern detected", "Requests appear to be automated")

    def _analyze_duplicates(
        self,
        identifier: str,
        request_hash: str,
        now: float,
        findings: _Findings,
    ) -> None:
        cfg = self.config
        signature = self._signatures.get(request_hash)
        if signature is None:
            return

        signature.count += 1
        signature.last_seen = now
        signature.identifiers.add(identifier)
        since_first = now - signature.first_seen

        if signature.count > cfg.duplicate_hour_count and since_first < 3600:
            findings.add(
                cfg.weight_duplicate_hour,
                "Identical request repeated multiple times",
                "Avoid submitting duplicate requests",
            )
        if signature.count > cfg.duplicate_minute_count and since_first < 60:
            findings.add(
                cfg.weight_duplicate_minute,
                "Duplicate request spam detected",
                "Ensure proper client-side deduplication",
            )
        if (
            len(signature.identifiers) >= cfg.coordinated_min_sources
            and signature.count > cfg.coordinated_min_count
        ):
            findings.add(
                cfg.weight_coordinated,
                "Coordinated duplicate requests from multiple sources",
                "Suspicious distributed pattern",
            )

    def _analyze_timing(self, identifier: str, findings: _Findings) -> None:
        cfg = self.config
        times = self._request_times.get(identifier, [])
        if len(times) < cfg.bot_min_history:
            return

        intervals = _intervals_ms(times[-cfg.bot_window:])
        if len(intervals) >= 3:
            mean = statistics.fmean(intervals)
            stddev = statistics.pstdev(intervals)
            if stddev < cfg.bot_stddev_ms and mean < cfg.bot_mean_interval_ms:
                findings.add(
                    cfg.weight_regular_pattern,
                    "Perfectly regular request pattern suggests automation",
                    "Request timing appears non-human",
                )

        too_fast = sum(1 for interval in intervals[-5:] if interval < cfg.bot_fast_interval_ms)
        if too_fast >= cfg.bot_fast_min_count:
            findings.add(
                cfg.weight_superhuman_speed,
                "Request speed exceeds human capability",
                "Requests are too fast to be manual",
            )

    def _analyze_content(self, payload: Mapping[str, Any]) -> _Findings:
        cfg = self.config
        findings = _Findings()

        description = payload.get("description")
        if isinstance(description, str) and description:
            if len(description) < cfg.min_description_length:
                findings.add(cfg.weight_short_description, "Description too short to be legitimate")

            if _REPEATED_CHARS.search(description):
                findings.add(
                    cfg.weight_repeated_chars,
                    "Description contains repeated characters",
                    "Provide meaningful description",
                )

            vowels = len(_VOWELS.findall(description))
            consonants = len(_CONSONANTS.findall(description))
            if consonants > 0 and vowels / consonants < cfg.min_vowel_ratio:
                findings.add(cfg.weight_gibberish, "Description appears to be gibberish")

            lowered = description.lower()
            for indicator in SPAM_INDICATORS:
                if indicator in lowered:
                    findings.add(cfg.weight_spam_indicator, f"Description contains spam indicator: {indicator}")

        location = payload.get("location")
        if isinstance(location, Mapping):
            lat = location.get("lat")
            lng = location.get("lng")
            if _is_number(lat) and _is_number(lng):
                if not (
                    cfg.region_lat_min <= lat <= cfg.region_lat_max
                    and cfg.region_lng_min <= lng <= cfg.region_lng_max
                ):
                    findings.add(cfg.weight_outside_region, "Location coordinates outside Portugal")
                if (lat, lng) in PLACEHOLDER_COORDINATES:
                    findings.add(cfg.weight_placeholder_coords, "Fake/placeholder coordinates detected")

        return findings

    def _record(self, identifier: str, request_hash: str, now: float) -> None:
        self._total_requests += 1
        signature = self._signatures.get(request_hash)
        if signature is None:
            self._signatures[request_hash] = RequestSignature(
                hash=request_hash,
                count=1,
                first_seen=now,
                last_seen=now,
                identifiers={identifier},
            )
            return

        self._duplicate_requests += 1
        signature.count += 1
        signature.last_seen = now
        signature.identifiers.add(identifier)

    # ------------------------------------------------------------------
    # Payload hashing
    # ------------------------------------------------------------------

    @staticmethod
    def hash_request(payload: Mapping[str, Any]) -> str:
        """
        Hash a normalized projection of the payload.

        Category id, lower-cased trimmed description, coordinates rounded to
        4 decimals and urgency are serialized as compact JSON and fed through
        a 32-bit polynomial rolling hash, rendered in base 36. Near-identical
        resubmissions collide on purpose.
        """
        projection: dict[str, Any] = {}

        category = _category_id(payload.get("category"))
        if category is not None:
            projection["category"] = category

        description = payload.get("description")
        if isinstance(description, str):
            projection["description"] = description.lower().strip()

        location = payload.get("location")
        if isinstance(location, Mapping):
            for key in ("lat", "lng"):
                value = location.get(key)
                if _is_number(value):
                    projection[key] = f"{value:.4f}"

        urgency = payload.get("urgency")
        if urgency is not None:
            projection["urgency"] = urgency

        key = json.dumps(projection, separators=(",", ":"), ensure_ascii=False)

        h = 0
        for char in key:
            h = (h * 31 + ord(char)) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
        return _to_base36(h)

    # ------------------------------------------------------------------
    # Blocklist
    # ------------------------------------------------------------------

    def block_identifier(self, identifier: str) -> None:
        with self._lock:
            self._blocked[identifier] = self._clock()
        logger.warning("identifier_blocked", client=hash_identifier(identifier))

    def unblock_identifier(self, identifier: str) -> bool:
        """Remove ``identifier`` from the blocklist. Returns True if it was blocked."""
        with self._lock:
            was_blocked = self._blocked.pop(identifier, None) is not None
        if was_blocked:
            logger.info("identifier_unblocked", client=hash_identifier(identifier))
        return was_blocked

    def is_blocked(self, identifier: str) -> bool:
        with self._lock:
            return self._is_blocked_locked(identifier, self._clock())

    def blocked_identifiers(self) -> list[str]:
        with self._lock:
            now = self._clock()
            return [i for i in list(self._blocked) if self._is_blocked_locked(i, now)]

    def _is_blocked_locked(self, identifier: str, now: float) -> bool:
        blocked_at = self._blocked.get(identifier)
        if blocked_at is None:
            return False
        ttl = self.config.block_ttl_seconds
        if ttl is not None and now - blocked_at >= ttl:
            del self._blocked[identifier]
            logger.info("identifier_block_expired", client=hash_identifier(identifier))
            return False
        return True

    # ------------------------------------------------------------------
    # Metrics & maintenance
    # ------------------------------------------------------------------

    def get_metrics(self) -> AbuseMetrics:
        with self._lock:
            total_interval = 0.0
            interval_count = 0
            for times in self._request_times.values():
                for interval in _intervals_ms(times):
                    total_interval += interval
                    interval_count += 1

            return AbuseMetrics(
                total_requests=self._total_requests,
                unique_requests=len(self._signatures),
                duplicate_requests=self._duplicate_requests,
                suspicious_patterns=self._suspicious_patterns,
                blocked_requests=self._blocked_requests,
                blocked_identifiers=len(self._blocked),
                average_request_interval_ms=total_interval / interval_count if interval_count else 0.0,
            )

    def sweep(self, now: float | None = None) -> int:
        """
        Drop signatures and timing histories older than the retention window.

        Keys are snapshotted first and each entry is pruned under a short
        lock acquisition. Entries are evicted only once strictly older than
        the window, never early.

        Returns:
            Number of signatures and histories removed
        """
        now = self._clock() if now is None else now
        cutoff = now - self.config.history_retention_seconds
        removed = 0

        with self._lock:
            signature_keys = list(self._signatures)
            history_keys = list(self._request_times)

        for key in signature_keys:
            with self._lock:
                signature = self._signatures.get(key)
                if signature is not None and signature.last_seen < cutoff:
                    del self._signatures[key]
                    removed += 1

        for key in history_keys:
            with self._lock:
                times = self._request_times.get(key)
                if times is None:
                    continue
                recent = [t for t in times if t >= cutoff]
                if recent:
                    self._request_times[key] = recent
                else:
                    del self._request_times[key]
                    removed += 1

        with self._lock:
            for identifier in list(self._blocked):
                self._is_blocked_locked(identifier, now)

        if removed:
            logger.debug("abuse_detector_swept", removed=removed)
        return removed


def _intervals_ms(times: list[float]) -> list[float]:
    return [(b - a) * 1000 for a, b in zip(times, times[1:])]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _category_id(category: Any) -> Any:
    if isinstance(category, Mapping):
        return category.get("id")
    return category


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return sign + "".join(reversed(digits))


__all__ = [
    "AUTO_BLOCK_REASON",
    "AbuseAnalysis",
    "AbuseDetector",
    "AbuseMetrics",
    "BLOCKED_REASON",
    "RequestSignature",
    "SPAM_INDICATORS",
]
