"""
PlanNavigator — Persistence Layer
Write-through JSON store behind a trailing-edge debounce. Rapid edits to the
same key collapse into one write of the latest payload; flush() writes
everything pending (call it on teardown). In-memory state never waits on I/O.
"""
import json
import logging
import os
import threading
import time

SYNC_STATES = ['idle', 'saved', 'saving', 'offline', 'error']  # best -> worst


def with_retry(fn, max_retries=3, base_delay=1.0, max_delay=10.0, sleep=time.sleep):
    """Call fn(); on failure retry with exponential backoff, re-raising the last error."""
    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if attempt >= max_retries:
                raise
            delay = min(base_delay * 2 ** attempt, max_delay)
            logging.warning(f"with_retry: attempt {attempt + 1}/{max_retries} failed ({e}), retrying in {delay:.1f}s")
            sleep(delay)


def get_sync_summary(entries):
    """Worst state across entries: error > offline > saving > saved > idle."""
    worst = 0
    for e in entries:
        state = e.get('state') if isinstance(e, dict) else e
        if state in SYNC_STATES:
            worst = max(worst, SYNC_STATES.index(state))
    return SYNC_STATES[worst]


class SyncTracker:
    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def set(self, domain, state, error=None):
        if state not in SYNC_STATES:
            raise ValueError(f"unknown sync state '{state}'")
        with self._lock:
            entry = {'domain': domain, 'state': state}
            if error:
                entry['error'] = str(error)
            if state == 'saved':
                entry['lastSaved'] = time.time()
            elif domain in self._entries and 'lastSaved' in self._entries[domain]:
                entry['lastSaved'] = self._entries[domain]['lastSaved']
            self._entries[domain] = entry

    def entries(self):
        with self._lock:
            return [dict(e) for e in self._entries.values()]

    def summary(self):
        return get_sync_summary(self.entries())


class JsonStore:
    """One JSON file per key under `root`."""

    def __init__(self, root):
        self.root = root

    def _path(self, key):
        safe = ''.join(ch if ch.isalnum() or ch in '-_' else '_' for ch in key)
        return os.path.join(self.root, f"{safe}.json")

    def save(self, key, payload):
        os.makedirs(self.root, exist_ok=True)
        path = self._path(key)
        tmp = path + '.tmp'
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, default=str)
        os.replace(tmp, path)

    def load(self, key, default=None):
        path = self._path(key)
        if not os.path.exists(path):
            return default
        try:
            with open(path, encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logging.error(f"JsonStore.load: could not read {path}: {e}")
            return default


class DebouncedWriter:
    """Trailing-edge debounce per key around write_fn(key, payload).

    Each schedule() bumps the key's generation. A write attempt runs under the
    key's write lock and is dropped once a newer generation exists, so a
    retrying older payload never lands after a newer one.
    """

    def __init__(self, write_fn, delay=0.5, tracker=None, retry=None):
        self.write_fn = write_fn
        self.delay = delay
        self.tracker = tracker
        self.retry = retry or {}
        self._pending = {}
        self._timers = {}
        self._generation = {}
        self._write_locks = {}
        self._lock = threading.Lock()
        self._closed = False

    def schedule(self, key, payload):
        with self._lock:
            if self._closed:
                raise RuntimeError('DebouncedWriter is closed')
            gen = self._generation.get(key, 0) + 1
            self._generation[key] = gen
            self._pending[key] = (gen, payload)
            timer = self._timers.pop(key, None)
            if timer:
                timer.cancel()
            timer = threading.Timer(self.delay, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()
        if self.tracker:
            self.tracker.set(key, 'saving')

    def pending_keys(self):
        with self._lock:
            return sorted(self._pending)

    def _take(self, key):
        with self._lock:
            self._timers.pop(key, None)
            return self._pending.pop(key, None)

    def _fire(self, key):
        entry = self._take(key)
        if entry:
            self._write(key, *entry)

    def _is_current(self, key, gen):
        with self._lock:
            return self._generation.get(key) == gen

    def _attempt(self, key, gen, payload):
        with self._lock:
            write_lock = self._write_locks.setdefault(key, threading.Lock())
        with write_lock:
            if not self._is_current(key, gen):
                return False
            self.write_fn(key, payload)
            return True

    def _write(self, key, gen, payload):
        try:
            written = with_retry(lambda: self._attempt(key, gen, payload), **self.retry)
        except Exception as e:
            logging.error(f"DebouncedWriter: write of '{key}' failed: {e}")
            if self.tracker and self._is_current(key, gen):
                self.tracker.set(key, 'error', e)
            return False
        if not written:
            logging.info(f"DebouncedWriter: dropped superseded write of '{key}'")
            return False
        if self.tracker and self._is_current(key, gen):
            self.tracker.set(key, 'saved')
        return True

    def flush(self):
        """Write every pending payload now. Returns the keys that were written."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            pending, self._pending = self._pending, {}
        return [key for key, (gen, payload) in pending.items() if self._write(key, gen, payload)]

    def close(self):
        with self._lock:
            self._closed = True
        return self.flush()
