"""
Event handling system for realtime communication.
Implements a basic pub/sub mechanism with async support.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

logger = logging.getLogger(__name__)

Handler = Union[Callable[[Any], Any], Callable[[Any], Awaitable[Any]]]


class RealtimeEventHandler:
    """
    Base class to manage event listeners and dispatch events
    in a realtime asynchronous environment.

    Handlers for one event name run in registration order. Plain callables
    run inline; coroutine functions are scheduled on the running loop.
    """

    def __init__(self) -> None:
        self.event_handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._handler_tasks: Set[asyncio.Task] = set()

    def on(self, event_name: str, handler: Handler) -> None:
        """
        Register a handler function for a specific event.

        Args:
            event_name (str): Name of the event to listen for.
            handler (Callable): Function or coroutine to be called when the event fires.
        """
        if not callable(handler):
            logger.error(f"Tried to register non-callable handler for event '{event_name}'.")
            raise TypeError("Handler must be callable.")
        self.event_handlers[event_name].append(handler)
        logger.debug(f"Handler registered for event '{event_name}'.")

    def once(self, event_name: str, handler: Handler) -> Handler:
        """
        Register a handler that is removed after its first delivery.

        Returns:
            Callable: The wrapper actually registered, usable with ``off``.
        """
        def _once(event: Any) -> Any:
            self.off(event_name, _once)
            if inspect.iscoroutinefunction(handler):
                return self._schedule(handler(event))
            return handler(event)

        _once.__name__ = getattr(handler, "__name__", "once_handler")
        self.on(event_name, _once)
        return _once

    def off(self, event_name: str, handler: Optional[Handler] = None) -> None:
        """
        Remove a handler, or every handler for the event when none is given.

        Raises:
            ValueError: If ``handler`` is not registered for ``event_name``.
        """
        if handler is None:
            self.event_handlers.pop(event_name, None)
            return

        handlers = self.event_handlers.get(event_name, [])
        if handler not in handlers:
            raise ValueError(
                f"Could not turn off handler for '{event_name}': not registered."
            )
        handlers.remove(handler)
        if not handlers:
            self.event_handlers.pop(event_name, None)

    def dispatch(self, event_name: str, event: Any) -> None:
        """
        Trigger all handlers associated with a specific event.

        Args:
            event_name (str): Name of the event to dispatch.
            event (Any): Data associated with the event.
        """
        if event_name not in self.event_handlers:
            return

        # Copy so once-handlers can unregister during iteration.
        for handler in list(self.event_handlers[event_name]):
            try:
                if inspect.iscoroutinefunction(handler):
                    self._schedule(handler(event))
                else:
                    handler(event)
            except Exception as e:
                logger.error(
                    f"Error dispatching event '{event_name}' to handler "
                    f"'{getattr(handler, '__name__', handler)}': {e}",
                    exc_info=True,
                )

    def _schedule(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._on_handler_task_done)
        return task

    def _on_handler_task_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Error in async event handler: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def wait_for_handlers(self) -> None:
        """
        Wait until every scheduled coroutine handler has finished.
        """
        current = asyncio.current_task()
        while True:
            pending = [t for t in self._handler_tasks if t is not current]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def clear_event_handlers(self) -> None:
        """
        Remove all registered event handlers.
        """
        self.event_handlers.clear()
        logger.debug("All event handlers cleared.")

    async def wait_for_next(self, event_name: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for the next occurrence of a specific event asynchronously.

        Args:
            event_name (str): Event to wait for.
            timeout (float, optional): Seconds to wait before giving up.

        Returns:
            Any: Data of the received event.

        Raises:
            TimeoutError: If no matching event arrives within ``timeout``.
        """
        future = asyncio.get_running_loop().create_future()

        def _handler(event: Any) -> None:
            if not future.done():
                future.set_result(event)

        registered = self.once(event_name, _handler)
        logger.debug(f"Waiting for next event '{event_name}'.")
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timeout waiting for '{event_name}'") from None
        finally:
            if registered in self.event_handlers.get(event_name, []):
                self.off(event_name, registered)
