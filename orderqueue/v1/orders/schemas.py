"""
Payload schemas for order job types.
"""

from typing import Any

from pydantic import BaseModel, Field


class CreateOrderPayload(BaseModel):
    """Payload of a ``create_order`` job."""

    post_id: str = Field(..., min_length=1, description="Target post identifier")
    like_count: int = Field(default=0, ge=0, description="Likes to deliver")
    save_count: int = Field(default=0, ge=0, description="Saves to deliver")
    comment_data: dict[str, Any] | None = Field(
        default=None, description="Comment instructions forwarded verbatim"
    )
    comment_group_id: int | None = Field(
        default=None, description="Comment group the comments came from"
    )
    save_to_db: bool = Field(
        default=False, description="Keep a copy of the order in the local ledger"
    )


class CheckOrderStatusPayload(BaseModel):
    """Payload of a ``check_order_status`` job."""

    order_id: str = Field(..., min_length=1, description="Remote order identifier")
    update_db: bool = Field(
        default=False, description="Write the classified status to the ledger"
    )
