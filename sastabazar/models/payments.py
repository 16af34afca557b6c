"""
Request bodies for the payment endpoints.

Field names on the wire follow what the storefront client and the Razorpay
checkout handler already send (razorpay_order_id, paymentId, ...). Presence of
the payment fields is checked by the services so every caller gets the same
ValidationError envelope.
"""

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Address(BaseModel):
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=60)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=60)
    email: Optional[str] = Field(None, max_length=254)
    phone: str = Field(..., min_length=6, max_length=20)
    address: str = Field(..., min_length=1, max_length=300)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., alias="zipCode", min_length=3, max_length=12)
    country: str = Field("India", max_length=100)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(BaseModel):
    """Optional checkout metadata; cart contents are always read server-side"""
    shipping_address: Optional[Address] = Field(None, alias="shippingAddress")
    billing_address: Optional[Address] = Field(None, alias="billingAddress")
    shipping_method: Literal["standard", "express", "overnight"] = Field("standard", alias="shippingMethod")
    notes: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    internal_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("internal_order_id", "orderId")
    )

    model_config = ConfigDict(populate_by_name=True)


class RefundRequest(BaseModel):
    payment_id: Optional[str] = Field(None, alias="paymentId")
    amount: Optional[int] = Field(None, description="Amount in paise; omit for a full refund")
    reason: Optional[str] = Field(None, max_length=255)
    order_id: Optional[str] = Field(None, alias="orderId")

    model_config = ConfigDict(populate_by_name=True)
