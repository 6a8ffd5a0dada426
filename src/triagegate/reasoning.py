"""The boundary to the external deep-reasoning step.

The orchestrator only ever talks to a ``ReasoningClient``: it hands over a
prompt and gets raw response text back, or an ``OrchestratorFailure``.
``CommandReasoningClient`` shells out to a configured command (prompt on
stdin, JSON on stdout). ``ReplayReasoningClient`` serves canned responses for
offline runs and tests.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from triagegate.errors import InvalidResponseShape, InvocationTimeout, TransportFailure
from triagegate.exec import run_command
from triagegate.fs import read_json
from triagegate.models import ReasoningResponse


@runtime_checkable
class ReasoningClient(Protocol):
    model: str

    def invoke(self, prompt: str, *, timeout_seconds: float) -> str: ...


class CommandReasoningClient:
    def __init__(self, command: str, *, cwd: Path | None = None, model: str = "sub-agent") -> None:
        self.command = command
        self.cwd = cwd
        self.model = model

    def invoke(self, prompt: str, *, timeout_seconds: float) -> str:
        trace = run_command(self.command, cwd=self.cwd, timeout_seconds=timeout_seconds, input_text=prompt)
        if trace.timed_out:
            raise InvocationTimeout(f"{self.command!r} timed out after {timeout_seconds:.1f}s")
        if trace.launch_error:
            raise TransportFailure(f"{self.command!r} could not be started: {trace.launch_error}")
        if trace.exit_code != 0:
            excerpt = "\n".join(trace.stderr.splitlines()[:10])
            raise TransportFailure(f"{self.command!r} exited with {trace.exit_code}: {excerpt}")
        return trace.stdout


class ReplayReasoningClient:
    """Returns queued responses in order; an ``Exception`` entry is raised instead.

    With ``repeat_last`` the final entry keeps being served once the queue
    is drained.
    """

    def __init__(
        self,
        responses: Iterable[str | dict | Exception] = (),
        *,
        model: str = "replay",
        repeat_last: bool = False,
    ) -> None:
        self.model = model
        self.repeat_last = repeat_last
        self.prompts: list[str] = []
        self._responses = list(responses)
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Path, *, model: str = "replay") -> ReplayReasoningClient:
        data = read_json(path)
        entries = data if isinstance(data, list) else [data]
        return cls(entries, model=model, repeat_last=True)

    def queue(self, response: str | dict | Exception) -> None:
        with self._lock:
            self._responses.append(response)

    def invoke(self, prompt: str, *, timeout_seconds: float) -> str:
        with self._lock:
            self.prompts.append(prompt)
            if not self._responses:
                raise TransportFailure("no replay response queued")
            if self.repeat_last and len(self._responses) == 1:
                response = self._responses[0]
            else:
                response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


def build_client(
    *,
    command: str | None,
    model: str,
    cwd: Path | None = None,
    replay_file: Path | None = None,
) -> ReasoningClient | None:
    if replay_file is not None:
        return ReplayReasoningClient.from_file(replay_file, model=model)
    if command:
        return CommandReasoningClient(command, cwd=cwd, model=model)
    return None


def parse_response(raw: str) -> ReasoningResponse:
    """Validate raw response text; anything short of a successful analysis is a failure."""
    if not raw or not raw.strip() or raw.strip() == "null":
        raise InvalidResponseShape("empty response")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidResponseShape(f"response is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidResponseShape("response is not a JSON object")
    if data.get("success") is not True:
        raise InvalidResponseShape("response did not report success")
    try:
        return ReasoningResponse.model_validate(data)
    except ValidationError as exc:
        raise InvalidResponseShape(f"response is missing required fields: {exc.error_count()} error(s)") from exc
