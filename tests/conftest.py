"""Shared fakes for the test-suite."""

import json
from typing import (
    Any,
    Callable,
    List,
    Mapping,
    Sequence,
)

import pytest

from portalpilot.agent.backends import (
    BackendConfig,
    GenerationBackend,
)
from portalpilot.agent.generation_client import (
    GenerationClient,
    RetryPolicy,
)
from portalpilot.core.schema import ToolDeclaration


class ScriptedBackend(GenerationBackend):
    """Backend that replays a script of replies; exceptions in the script are raised."""

    def __init__(self, script: Sequence[Any]) -> None:
        super().__init__(BackendConfig(model="fake"))
        self.script = list(script)
        self.calls: List[dict] = []

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str,
        response_schema: Mapping[str, Any],
        tools: Sequence[ToolDeclaration] = (),
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "system_instruction": system_instruction,
                "response_schema": response_schema,
                "tools": tuple(tools),
            }
        )
        # The last entry repeats forever.
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, str) else json.dumps(item)


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(sleep: RecordingSleep) -> Callable[..., GenerationClient]:
    """Factory: ``make_client(script, **policy)`` -> client over a :class:`ScriptedBackend`."""

    def factory(script: Sequence[Any], **policy: Any) -> GenerationClient:
        return GenerationClient(ScriptedBackend(script), RetryPolicy(**policy), sleep=sleep)

    return factory
