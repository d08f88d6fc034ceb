import json
import threading
from typing import Callable

import pytest

from a11yscan.config import ScanSettings
from a11yscan.outcomes import Success


@pytest.fixture
def fast_settings() -> ScanSettings:
    # no spacing and no backoff so scans finish instantly
    return ScanSettings(
        min_call_interval_s=0.0,
        rate_limit_backoff_s=0.0,
        transient_backoff_s=0.0,
        call_timeout_s=5.0,
        verify_api_key=False,
    )


class ScriptedClient:
    """
    Stand-in for ChatCompletionsClient.send.
    `script` maps a file path to the outcomes returned for successive calls;
    the last outcome repeats. Unknown files answer "[]".
    """

    def __init__(self, script: dict | None = None, on_send: Callable[[str], None] | None = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.on_send = on_send
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def send(self, payload, api_key, timeout=None, cancel=None):
        with self._lock:
            self.calls.append(payload.file_path)
            queue = self.script.get(payload.file_path)
            if not queue:
                outcome = Success("[]")
            elif len(queue) == 1:
                outcome = queue[0]
            else:
                outcome = queue.pop(0)
        if self.on_send is not None:
            self.on_send(payload.file_path)
        return outcome

    def calls_for(self, path: str) -> int:
        with self._lock:
            return self.calls.count(path)


def answer(*items: dict) -> Success:
    return Success("Here are the issues:\n" + json.dumps(list(items)) + "\nDone.")
