import json
import logging

from fulfillment.domain import events


logger = logging.getLogger(__name__)


async def ship_package(event: events.PackageShipped):
    """Hands a committed package to the carrier.

    There is no carrier integration yet; the manifest is only logged.
    """
    logger.info(
        f"SHIP PACKAGE - Order {event.order_id}: {json.dumps(event.items)}"
        f" ({event.total_mass_g}g, shipment {event.shipment_id})"
    )
