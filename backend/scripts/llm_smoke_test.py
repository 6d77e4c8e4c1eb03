from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import asyncio

from app.services.llm.client import MessageLLM


class _Msg:
    def __init__(self, content: str | None) -> None:
        self.content = content


class _Choice:
    def __init__(self, msg: _Msg) -> None:
        self.message = msg


class _Usage:
    prompt_tokens = 42
    completion_tokens = 17


class _Resp:
    def __init__(self, msg: _Msg) -> None:
        self.choices = [_Choice(msg)]
        self.usage = _Usage()
        self.model = "mock"


class MockLLM(MessageLLM):
    def __init__(self) -> None:
        super().__init__(api_key="x", base_url=None, model="mock", temperature=0.0, client=object())

    async def _chat_completion(self, *, messages, purpose=""):
        return _Resp(_Msg("Hi Ada, loved your post on analytical engines. Open to a quick chat?"))


async def main() -> None:
    llm = MockLLM()
    out = await llm.generate("Write a LinkedIn note to Ada.", system_prompt="Return only the message.", purpose="smoke")
    print(out)


asyncio.run(main())
