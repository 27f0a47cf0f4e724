"""
Writes to the local order ledger on behalf of the order job handlers.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.config.logging import get_logger
from orderqueue.v1.orders.completion import ledger_status
from orderqueue.v1.orders.models import Order
from orderqueue.v1.orders.schemas import CreateOrderPayload

logger = get_logger(__name__)


class OrderLedger:
    """Insert and status-update operations on the ``orders`` table."""

    async def record_order(
        self,
        session: AsyncSession,
        user_id: str,
        team_id: str | None,
        payload: CreateOrderPayload,
        response: dict[str, Any],
    ) -> Order:
        """Insert the initial ledger row for a freshly created order."""
        order = Order(
            order_id=str(response["order_id"]),
            user_id=user_id,
            team_id=team_id,
            post_id=payload.post_id,
            status=response.get("status") or "pending",
            like_count=payload.like_count,
            save_count=payload.save_count,
            comment_group_id=payload.comment_group_id,
            message=response.get("message"),
            api_created_at=response.get("created_at")
            or datetime.now(UTC).isoformat(),
        )
        session.add(order)
        await session.commit()

        logger.info("Order recorded", order_id=order.order_id, user_id=user_id)
        return order

    async def update_status(
        self, session: AsyncSession, order_id: str, status: str
    ) -> bool:
        """
        Store a new status for an order.

        ``completed_with_errors`` is written as ``completed``; the ledger has
        no notion of partial success. Returns False when no row matches.
        """
        stored = ledger_status(status)
        result = await session.execute(
            update(Order)
            .where(Order.order_id == order_id)
            .values(status=stored, updated_at=datetime.now(UTC))
        )
        await session.commit()

        updated = result.rowcount > 0
        logger.debug(
            "Order status written", order_id=order_id, status=stored, updated=updated
        )
        return updated
