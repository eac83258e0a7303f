import time
import hashlib
import json
import re
import unicodedata


# High-performance in-memory cache with TTL
class PerformanceCache:
    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self.cache = {}
        self.access_times = {}

    def _generate_key(self, data):
        """Generate cache key from data"""
        if isinstance(data, dict):
            sorted_data = json.dumps(data, sort_keys=True, ensure_ascii=False)
        else:
            sorted_data = str(data)
        return hashlib.md5(sorted_data.encode("utf-8")).hexdigest()

    def get(self, data):
        """Get cached data if not expired"""
        key = self._generate_key(data)
        if key in self.cache:
            cached_time = self.access_times.get(key, 0)
            if time.time() - cached_time < self.ttl_seconds:
                return self.cache[key]
            # Expired, remove from cache
            del self.cache[key]
            del self.access_times[key]
        return None

    def set(self, data, value):
        key = self._generate_key(data)
        self.cache[key] = value
        self.access_times[key] = time.time()


# Performance monitoring
class PerformanceMonitor:
    def __init__(self, label: str):
        self.label = label
        self.start_time = None
        self.checkpoints = {}

    def start(self):
        self.start_time = time.time()
        self.checkpoints = {}
        return self

    def checkpoint(self, name: str):
        if self.start_time:
            self.checkpoints[name] = time.time() - self.start_time

    def get_summary(self):
        if not self.start_time:
            return {}
        return {
            "total_time": time.time() - self.start_time,
            "checkpoints": self.checkpoints,
        }

    def report(self):
        summary = self.get_summary()
        if not summary:
            return
        print(f"⚡ {self.label}: total {summary['total_time']:.2f}s")
        for checkpoint, time_taken in summary["checkpoints"].items():
            print(f"   {checkpoint}: {time_taken:.2f}s")


def ensure_utf8(text):
    """Normalize Bangla text to NFC so lookups and comparisons are stable."""
    if not text:
        return text
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="ignore")
    return unicodedata.normalize("NFC", text)


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")


def sanitize_text(value, max_length: int = 5000) -> str:
    """Strip control characters, cut to ``max_length`` and trim. Non-strings become ''."""
    if not value or not isinstance(value, str):
        return ""
    return ensure_utf8(_CONTROL_CHARS.sub("", value)[:max_length].strip())
