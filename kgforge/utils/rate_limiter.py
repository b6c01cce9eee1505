# -*- coding: utf-8 -*-
"""
Thread-safe sliding-window rate limiter for LLM calls.

Extraction and inference workers share one limiter per client, so the
provider's requests-per-minute ceiling holds across the whole worker pool.
"""

import threading
import time
from collections import deque
from typing import Dict


class RateLimiter:
    """
    Sliding-window limiter: at most max_calls per window seconds.

    The lock is only held to inspect and record timestamps; waiting happens
    outside it so other threads can keep checking.

    Usage:
        limiter = RateLimiter(max_calls_per_minute=2900)
        limiter.acquire()   # blocks while the window is full
        client.chat.completions.create(...)
    """

    def __init__(self, max_calls_per_minute: int = 2900, window: float = 60.0):
        if max_calls_per_minute < 1:
            raise ValueError("max_calls_per_minute must be >= 1")
        self.max_calls = max_calls_per_minute
        self.window = window
        self.calls = deque()
        self.lock = threading.Lock()

        self.total_calls = 0
        self.total_wait_time = 0.0

    def acquire(self) -> float:
        """
        Block until a call slot is free, then claim it.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while True:
            with self.lock:
                now = time.monotonic()
                while self.calls and now - self.calls[0] >= self.window:
                    self.calls.popleft()

                if len(self.calls) < self.max_calls:
                    self.calls.append(now)
                    self.total_calls += 1
                    self.total_wait_time += waited
                    return waited

                sleep_for = self.window - (now - self.calls[0]) + 0.01

            time.sleep(sleep_for)
            waited += sleep_for

    def get_stats(self) -> Dict:
        with self.lock:
            now = time.monotonic()
            in_window = sum(1 for t in self.calls if now - t < self.window)
            return {
                'total_calls': self.total_calls,
                'total_wait_time_sec': round(self.total_wait_time, 2),
                'current_window_usage': in_window,
                'max_capacity': self.max_calls,
            }
