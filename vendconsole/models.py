import uuid
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator

MachineStatus = Literal["active", "inactive", "maintenance"]

DEFAULT_CAPACITY = 10


def new_id() -> str:
    return uuid.uuid4().hex


class Machine(BaseModel):
    id: str = Field(default_factory=new_id)
    code: str = Field(min_length=1)
    location: str = ""
    status: MachineStatus = "active"


class Product(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    nutrition: Optional[Dict[str, Any]] = None


class Slot(BaseModel):
    id: str = Field(default_factory=new_id)
    machine_id: str
    slot_number: int = Field(ge=1)
    product_id: Optional[str] = None
    quantity: int = Field(default=0, ge=0, strict=True)
    max_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1, strict=True)

    @model_validator(mode="after")
    def check_counts(self):
        if self.quantity > self.max_capacity:
            raise ValueError(
                f"quantity {self.quantity} exceeds max capacity {self.max_capacity}"
            )
        if self.product_id is None and self.quantity != 0:
            raise ValueError("an empty slot must have quantity 0")
        return self


class SlotView(Slot):
    """Slot joined with the product it holds."""

    product: Optional[Product] = None

    @property
    def dispensable(self) -> bool:
        return self.product_id is not None and self.quantity > 0


class MachinePrice(BaseModel):
    id: str = Field(default_factory=new_id)
    machine_id: str
    product_id: str
    price: float = Field(ge=0)
    active: bool = True


class MachinePriceView(MachinePrice):
    product: Optional[Product] = None


class Sale(BaseModel):
    id: str = Field(default_factory=new_id)
    machine_id: str
    product_id: str
    slot_number: int
    quantity: int = 1
    sold_at: datetime
