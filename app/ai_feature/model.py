"""
Model side of a turn.

The conversation flow only depends on the streaming contract defined here:
stream(request) yields partial GenerationEvents followed by exactly one final
event, or raises. OpenAIChatModel implements it against any OpenAI-compatible
chat completions endpoint and runs the tool-calling loop internally, so tool
calls never reach the flow.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Protocol

import openai
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.ai_feature.tools import Tool
from app.core.exceptions import ChatServiceError, GenerationError
from app.core.schemas import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    system_instruction: str
    messages: List[Message]
    tools: List[Tool] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationEvent:
    is_final: bool
    text: str

    @classmethod
    def partial(cls, text: str) -> "GenerationEvent":
        return cls(is_final=False, text=text)

    @classmethod
    def final(cls, text: str) -> "GenerationEvent":
        return cls(is_final=True, text=text)


class ModelClient(Protocol):
    def stream(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        ...


def to_openai_messages(system_instruction: str, messages: List[Message]) -> List[dict]:
    out: List[dict] = []
    if system_instruction:
        out.append({"role": "system", "content": system_instruction})
    for message in messages:
        out.append({"role": message.role.value, "content": message.text})
    return out


def to_openai_tools(tools: List[Tool]) -> List[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema(),
            },
        }
        for tool in tools
    ]


async def run_tool_call(tools: Dict[str, Tool], name: str, raw_arguments: str) -> str:
    """
    Invoke one tool and return the JSON text handed back to the model.

    Failures become {"error": ...} so the model can rephrase and retry.
    """
    tool = tools.get(name)
    if tool is None:
        return json.dumps({"error": f"unknown tool: {name}"})

    try:
        arguments = json.loads(raw_arguments) if raw_arguments else {}
        result = await tool.invoke(arguments)
    except (ChatServiceError, SQLAlchemyError, ValidationError, json.JSONDecodeError) as error:
        logger.warning(f"Tool {name} failed: {error}")
        return json.dumps({"error": str(error)})

    return json.dumps(result, ensure_ascii=False)


class OpenAIChatModel:
    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str,
        max_tool_turns: int = 5,
        temperature: float = 0.2,
    ):
        self._client = client
        self._model = model
        self._max_tool_turns = max_tool_turns
        self._temperature = temperature

    async def stream(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        messages = to_openai_messages(request.system_instruction, request.messages)
        oai_tools = to_openai_tools(request.tools)
        tools_by_name = {tool.name: tool for tool in request.tools}

        for _ in range(self._max_tool_turns + 1):
            text_parts: List[str] = []
            # index -> {"id", "name", "arguments"}
            tool_calls: Dict[int, Dict[str, Any]] = {}

            kwargs: Dict[str, Any] = dict(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                stream=True,
            )
            if oai_tools:
                kwargs["tools"] = oai_tools

            logger.debug(f"Model request: messages={len(messages)}, tools={len(oai_tools)}")
            try:
                stream = await self._client.chat.completions.create(**kwargs)
            except openai.OpenAIError as error:
                raise GenerationError(f"model request failed: {error}") from error

            try:
                async for chunk in stream:
                    choice = chunk.choices[0] if chunk.choices else None
                    if choice is None or choice.delta is None:
                        continue
                    delta = choice.delta

                    if delta.content:
                        text_parts.append(delta.content)
                        yield GenerationEvent.partial(delta.content)

                    # Tool calls arrive in pieces keyed by index
                    for tc_delta in delta.tool_calls or []:
                        acc = tool_calls.setdefault(
                            tc_delta.index, {"id": "", "name": "", "arguments": ""}
                        )
                        if tc_delta.id:
                            acc["id"] = tc_delta.id
                        if tc_delta.function:
                            if tc_delta.function.name:
                                acc["name"] = tc_delta.function.name
                            if tc_delta.function.arguments:
                                acc["arguments"] += tc_delta.function.arguments
            except openai.OpenAIError as error:
                raise GenerationError(f"model stream failed: {error}") from error
            finally:
                await stream.close()

            text = "".join(text_parts)
            if not tool_calls:
                yield GenerationEvent.final(text)
                return

            ordered = [tool_calls[index] for index in sorted(tool_calls)]
            messages.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {"name": call["name"], "arguments": call["arguments"]},
                        }
                        for call in ordered
                    ],
                }
            )
            for call in ordered:
                logger.info(f"Model called tool {call['name']}")
                content = await run_tool_call(tools_by_name, call["name"], call["arguments"])
                messages.append(
                    {"role": "tool", "tool_call_id": call["id"], "content": content}
                )

        raise GenerationError(
            f"model did not finish within {self._max_tool_turns} tool turns"
        )
