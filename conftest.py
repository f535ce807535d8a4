import logging
import os
import signal

import pytest

logging.getLogger('conftest').setLevel(logging.INFO)

# Per-test wall clock limit in seconds; a hung await or Qt call fails the test instead of the run
TEST_TIMEOUT = int(os.environ.get('TEST_TIMEOUT', '15'))

_GALLERY_ENV = ('EVENT_GALLERY_URL', 'EVENT_GALLERY_ANON_KEY', 'EVENT_GALLERY_ACCESS_TOKEN', 'EVENT_GALLERY_DISABLE_CACHE')


def pytest_configure(config):
    """Keep backend credentials and the cache switch from the developer's shell out of the run."""
    for var in _GALLERY_ENV:
        os.environ.pop(var, None)


def _on_alarm(signum, frame):
    raise TimeoutError(f"test ran longer than {TEST_TIMEOUT}s")


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    if not hasattr(signal, 'alarm'):
        yield
        return
    previous = signal.signal(signal.SIGALRM, _on_alarm)
    signal.alarm(TEST_TIMEOUT)
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)
