"""
Job handlers for fulfillment orders.

This module contains job handlers that implement the JobHandler protocol
and are registered in the job registry for background processing.
"""

import asyncio
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings
from orderqueue.v1.core.exceptions import FulfillmentAPIError, JobTimeoutError
from orderqueue.v1.infra.jobs.context import JobContext
from orderqueue.v1.infra.jobs.models import JobLogLevel
from orderqueue.v1.orders.client import FulfillmentClient
from orderqueue.v1.orders.completion import (
    CompletionVerdict,
    classify_completion,
    has_progress,
    ledger_status,
)
from orderqueue.v1.orders.ledger import OrderLedger
from orderqueue.v1.orders.schemas import CheckOrderStatusPayload, CreateOrderPayload

logger = get_logger(__name__)


def annotate_status(
    remote_status: dict[str, Any], verdict: CompletionVerdict
) -> dict[str, Any]:
    """Attach the classifier verdict to a remote status payload."""
    return {
        **remote_status,
        "actualCompletionStatus": verdict.actual_status,
        "completionDetails": verdict.details,
    }


class OrderHandlerBase:
    """Shared plumbing for handlers that talk to the fulfillment API."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        ledger: OrderLedger | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.ledger = ledger or OrderLedger()

    def client(self) -> FulfillmentClient:
        return FulfillmentClient.from_settings(self.settings, transport=self.transport)

    async def write_ledger_status(
        self, session: AsyncSession, ctx: JobContext, order_id: str, status: str
    ) -> None:
        """Update the ledger row; the ledger is reporting only, so failures are logged."""
        try:
            await self.ledger.update_status(session, order_id, status)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning(
                "Failed to update order status in ledger",
                order_id=order_id,
                status=status,
                error=str(e),
            )
            await ctx.log(
                JobLogLevel.WARNING,
                "Failed to update order status in database",
                {"order_id": order_id, "error": str(e)},
            )


class CreateOrderHandler(OrderHandlerBase):
    """
    Job handler that places an order and follows it to completion.

    Payload expected:
    {
        "post_id": "post identifier",
        "like_count": 0,
        "save_count": 0,
        "comment_data": {...},       # optional
        "comment_group_id": 12,      # optional
        "save_to_db": false          # optional
    }

    Polls the order status until the completion classifier says it is done.
    The polling budget starts at ``order_poll_budget_s`` and is extended once
    by ``order_poll_extension_s`` if the order shows progress.
    """

    @property
    def timeout_s(self) -> float:
        s = self.settings
        return (
            s.order_poll_budget_s
            + s.order_poll_extension_s
            + s.order_poll_interval_s
            + 2 * s.fulfillment_api_timeout_s
        )

    def validate_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        return CreateOrderPayload.model_validate(payload).model_dump()

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        order = CreateOrderPayload.model_validate(payload)
        loop = asyncio.get_running_loop()
        started = loop.time()
        budget = self.settings.order_poll_budget_s
        extended = False

        await ctx.log(
            JobLogLevel.INFO,
            "Creating order with external API",
            {
                "post_id": order.post_id,
                "like_count": order.like_count,
                "save_count": order.save_count,
                "has_comments": bool(order.comment_data),
            },
        )

        async with self.client() as client:
            response = await client.create_order(
                order.post_id,
                like_count=order.like_count,
                save_count=order.save_count,
                comment_data=order.comment_data,
            )
            if not response.get("order_id"):
                raise FulfillmentAPIError("Invalid API response: missing order_id")

            order_id = str(response["order_id"])
            await ctx.log(
                JobLogLevel.INFO,
                "Order created, starting status polling",
                {"order_id": order_id, "initial_status": response.get("status")},
            )

            if order.save_to_db:
                await self._record_order(session, ctx, order, response)

            last_remote = response.get("status")
            recorded = last_remote or "pending"
            poll_count = 0

            while loop.time() - started < budget:
                await asyncio.sleep(self.settings.order_poll_interval_s)
                poll_count += 1
                await ctx.heartbeat()
                await ctx.check_cancelled()

                try:
                    remote = await client.get_order_status(order_id)
                    if not remote:
                        raise FulfillmentAPIError("Empty order status response")
                    verdict = classify_completion(remote)
                    progressed = has_progress(remote.get("progress"))
                except (FulfillmentAPIError, ValueError) as e:
                    logger.warning(
                        "Error polling order status",
                        order_id=order_id,
                        poll_count=poll_count,
                        error=str(e),
                    )
                    await ctx.log(
                        JobLogLevel.WARNING,
                        "Error polling order status",
                        {"order_id": order_id, "error": str(e), "poll_count": poll_count},
                    )
                    continue

                remote_changed = remote.get("status") != last_remote
                if remote_changed:
                    await ctx.log(
                        JobLogLevel.INFO,
                        "Order status updated",
                        {
                            "order_id": order_id,
                            "old_status": last_remote,
                            "new_status": remote.get("status"),
                            "progress": remote.get("progress"),
                        },
                    )
                    last_remote = remote.get("status")

                stored = ledger_status(verdict.actual_status)
                if order.save_to_db and (remote_changed or stored != recorded):
                    await self.write_ledger_status(session, ctx, order_id, stored)
                    recorded = stored

                if not verdict.is_complete and not extended and progressed:
                    budget += self.settings.order_poll_extension_s
                    extended = True
                    await ctx.log(
                        JobLogLevel.INFO,
                        "Extending timeout due to ongoing progress",
                        {
                            "order_id": order_id,
                            "budget_s": budget,
                            "progress": remote.get("progress"),
                        },
                    )

                if verdict.is_complete:
                    await ctx.log(
                        JobLogLevel.INFO,
                        "Order processing finished",
                        {
                            "order_id": order_id,
                            "final_status": remote.get("status"),
                            "actual_status": verdict.actual_status,
                            "poll_count": poll_count,
                            "duration_s": round(loop.time() - started, 1),
                            "completion_details": verdict.details,
                        },
                    )
                    return annotate_status(remote, verdict)

        raise JobTimeoutError(
            f"Order {order_id} timed out after {poll_count} polls",
            details={"order_id": order_id, "poll_count": poll_count, "budget_s": budget},
        )

    async def _record_order(
        self,
        session: AsyncSession,
        ctx: JobContext,
        order: CreateOrderPayload,
        response: dict[str, Any],
    ) -> None:
        try:
            await self.ledger.record_order(
                session, ctx.user_id, ctx.team_id, order, response
            )
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning(
                "Failed to save order to ledger",
                order_id=str(response.get("order_id")),
                error=str(e),
            )
            await ctx.log(
                JobLogLevel.WARNING,
                "Failed to save order to database",
                {"order_id": str(response.get("order_id")), "error": str(e)},
            )


class CheckOrderStatusHandler(OrderHandlerBase):
    """
    Job handler for a one-off order status refresh.

    Payload expected:
    {
        "order_id": "remote order id",
        "update_db": false   # optional
    }
    """

    timeout_s = None

    def validate_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        return CheckOrderStatusPayload.model_validate(payload).model_dump()

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        request = CheckOrderStatusPayload.model_validate(payload)

        await ctx.log(
            JobLogLevel.INFO, "Checking order status", {"order_id": request.order_id}
        )

        async with self.client() as client:
            remote = await client.get_order_status(request.order_id)
        if not remote:
            raise FulfillmentAPIError("Failed to get order status")

        await ctx.log(
            JobLogLevel.INFO,
            "Order status retrieved",
            {
                "order_id": request.order_id,
                "status": remote.get("status"),
                "progress": remote.get("progress"),
            },
        )

        verdict = classify_completion(remote)
        if request.update_db:
            await self.write_ledger_status(
                session, ctx, request.order_id, verdict.actual_status
            )

        return annotate_status(remote, verdict)
