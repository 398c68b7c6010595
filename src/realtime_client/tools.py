"""
Execution of model-issued function calls against registered tool handlers.

Each completed function call runs as its own task. Outcomes are pushed onto a
queue and a single consumer sends them upstream, so every call produces one
``function_call_output`` followed by one ``response.create``.
"""

import asyncio
import inspect
import json
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from src.realtime_client.exceptions import RealtimeError, ToolExecutionError
from src.realtime_client.session import SessionConfigManager

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Optional[dict]], Awaitable[Any]]


@dataclass
class ToolOutcome:
    call_id: str
    name: str
    output: str
    error: Optional[ToolExecutionError] = None


class ToolInvocationController:
    """
    Runs tool handlers for completed function-call items, at most once per call.

    Args:
        session: Tool registry owner.
        send: Coroutine used to send client events upstream.
        create_response: Coroutine requesting a new model response.
        relay: When True, nothing is ever executed.
        on_error: Optional callback receiving ``{"error", "tool"}`` on failure.
    """

    def __init__(
        self,
        session: SessionConfigManager,
        send: SendFn,
        create_response: Callable[[], Awaitable[Any]],
        relay: bool = False,
        on_error: Optional[Callable[[dict], None]] = None,
    ) -> None:
        self.session = session
        self._send = send
        self._create_response = create_response
        self.relay = relay
        self._on_error = on_error
        self._seen_calls: Set[str] = set()
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._results: "asyncio.Queue[ToolOutcome]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    def submit(self, tool: Dict[str, Any]) -> Optional[asyncio.Task]:
        """
        Schedule a completed function call.

        Returns:
            asyncio.Task or None: The invocation task, or None when the call
            was skipped (relay mode or already seen).
        """
        if self.relay:
            return None

        call_id = tool.get("call_id")
        if call_id in self._seen_calls:
            logger.debug(f"Tool call '{call_id}' already handled, skipping.")
            return None
        self._seen_calls.add(call_id)

        self._ensure_consumer()
        task = asyncio.create_task(self._invoke(tool))
        self._in_flight[call_id] = task
        task.add_done_callback(lambda _t: self._in_flight.pop(call_id, None))
        return task

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume_results())

    async def _invoke(self, tool: Dict[str, Any]) -> None:
        name = tool.get("name")
        handler = self.session.get_handler(name)
        if handler is None:
            logger.warning(f"Tool '{name}' not found, no output sent.")
            return

        logger.info(f"Calling tool {name} with arguments: {tool.get('arguments')}")
        try:
            output = await self._execute(name, handler, tool.get("arguments") or "")
            outcome = ToolOutcome(call_id=tool.get("call_id"), name=name, output=output)
        except ToolExecutionError as e:
            logger.warning(f"Error calling tool '{name}': {e.message}")
            outcome = ToolOutcome(
                call_id=tool.get("call_id"),
                name=name,
                output=json.dumps(e.to_output()),
                error=e,
            )
        await self._results.put(outcome)

    async def _execute(self, name: str, handler: Callable[..., Any], arguments: str) -> str:
        try:
            json_arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolExecutionError(name, f"Invalid JSON arguments: {e}") from e
        if not isinstance(json_arguments, dict):
            raise ToolExecutionError(name, "Tool arguments must be a JSON object")

        try:
            result = handler(**json_arguments)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(traceback.format_exc())
            raise ToolExecutionError(name, str(e)) from e

        try:
            return json.dumps(result)
        except (TypeError, ValueError) as e:
            raise ToolExecutionError(name, f"Tool result is not JSON serializable: {e}") from e

    async def _consume_results(self) -> None:
        while True:
            outcome = await self._results.get()
            try:
                await self._deliver(outcome)
            except RealtimeError as e:
                logger.error(f"Could not deliver output of tool '{outcome.name}': {e}")
            finally:
                self._results.task_done()

    async def _deliver(self, outcome: ToolOutcome) -> None:
        if outcome.error is not None and self._on_error is not None:
            self._on_error({"error": outcome.error.message, "tool": outcome.name})

        await self._send(
            "conversation.item.create",
            {
                "item": {
                    "type": "function_call_output",
                    "call_id": outcome.call_id,
                    "output": outcome.output,
                }
            },
        )
        await self._create_response()

    async def join(self) -> None:
        """
        Wait until every scheduled call has run and its output was delivered.
        """
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
        await self._results.join()

    async def close(self) -> None:
        """
        Cancel pending invocations and the result consumer.
        """
        tasks = list(self._in_flight.values())
        if self._consumer is not None:
            tasks.append(self._consumer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
        self._consumer = None
        self._seen_calls.clear()
        self._results = asyncio.Queue()
