from __future__ import annotations
import asyncio
import logging
from typing import Dict, Optional

from .errors import GatewayError
from .gateway import Gateway
from .notifications import Notifier
from .schemas import CONTACTS, ORDERS, PRODUCTS

logger = logging.getLogger(__name__)


async def dashboard_stats(gateway: Gateway, notifier: Optional[Notifier] = None) -> Optional[Dict[str, int]]:
    notifier = notifier or Notifier()
    try:
        total_orders, pending_orders, total_products, total_contacts = await asyncio.gather(
            gateway.count(ORDERS),
            gateway.count(ORDERS, {"status": "Pending"}),
            gateway.count(PRODUCTS),
            gateway.count(CONTACTS),
        )
    except GatewayError:
        logger.exception("Error fetching stats")
        notifier.error("Failed to load dashboard stats")
        return None
    return {
        "total_orders": total_orders,
        "pending_orders": pending_orders,
        "total_products": total_products,
        "total_contacts": total_contacts,
    }
