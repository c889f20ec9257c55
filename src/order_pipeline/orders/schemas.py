"""Order event model."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class Order(BaseModel):
    """A purchase event.

    Wire names (orderId, product, price) are accepted and emitted through
    aliases; Python code uses id, category and amount.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="orderId", min_length=1)
    category: str = Field(alias="product")
    amount: Decimal = Field(alias="price", gt=0)


__all__ = ["Order"]
