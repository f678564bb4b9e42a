from __future__ import annotations

import logging
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    TYPE_CHECKING,
    Type,
    Union,
)

from fulfillment.adapters import redis
from fulfillment.domain import events, commands
from fulfillment.service_layer import handlers

if TYPE_CHECKING:
    from . import unit_of_work
    from .allocator import Allocator


logger = logging.getLogger(__name__)
Message = Union[commands.Command, events.Event]


class MessageBus:
    EVENT_HANDLERS = {
        events.Restocked: [handlers.log_restocked],
        events.PackageShipped: [
            handlers.ship_package,
            handlers.publish_package_shipped,
        ],
        events.OrderFulfilled: [handlers.log_order_fulfilled],
    }   # type: Dict[Type[events.Event], List[Callable]]
    COMMAND_HANDLERS = {
        commands.InitCatalog: handlers.init_catalog,
        commands.ProcessOrder: handlers.process_order,
        commands.ProcessRestock: handlers.process_restock,
        commands.ResetCatalog: handlers.reset_catalog,
    }   # type: Dict[Type[commands.Command], Callable]


async def handle(
        message: Message,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis] = None,
):
    results = []
    queue: List[Message] = [message]
    while queue:
        message = queue.pop(0)

        if isinstance(message, events.Event):
            await handle_event(message, queue, uow, allocator, channel)
        elif isinstance(message, commands.Command):
            result = await handle_command(message, queue, uow, allocator)
            results.append(result)
        else:
            raise Exception(f'{message} was not a Command or Event')

    return results


def _collect(
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
) -> List[Message]:
    return [*uow.collect_new_events(), *allocator.collect_new_events()]


async def handle_command(
        command: commands.Command,
        queue: List[Message],
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
):
    logger.debug(f'Handling command {command}')
    try:
        handler = MessageBus.COMMAND_HANDLERS[type(command)]
        result = await handler(command, uow, allocator)
        queue.extend(_collect(uow, allocator))
        return result
    except Exception as ex:
        logger.exception(f'Exception handling {command}... detail: {ex}')
        raise


async def handle_event(
        event: events.Event,
        queue: List[Message],
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis],
):
    for handler in MessageBus.EVENT_HANDLERS[type(event)]:
        try:
            logger.debug(f'Handling event {event} with {handler}')
            await handler(event, uow, allocator, channel)
            queue.extend(_collect(uow, allocator))
        except Exception as ex:
            logger.exception(f'Exception handling {event}... detail: {ex}')
            continue
