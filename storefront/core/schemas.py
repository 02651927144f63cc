from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Currency = Literal["USD", "EUR"]
BundleKind = Literal["none", "flagship"]
DiscountReason = Literal["none", "reseller", "coupon"]
DiscountType = Literal["percent", "fixed_cart", "fixed_product"]
RejectReason = Literal["invalid_code", "not_eligible", "expired"]


class ApiModel(BaseModel):
    # La API publica habla camelCase (cliente JS); internamente usamos snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _to_decimal(v):
    if v is None or v == "":
        return None
    return Decimal(str(v))


class CurrencyPrices(ApiModel):
    usd: Optional[Decimal] = None
    eur: Optional[Decimal] = None

    @field_validator("usd", "eur", mode="before")
    @classmethod
    def _money_to_decimal(cls, v):
        return _to_decimal(v)

    def get(self, currency: Currency) -> Optional[Decimal]:
        return self.usd if currency == "USD" else self.eur


class ResellerPricingRule(ApiModel):
    enabled: bool = False
    min_quantity: int = 1
    price_usd: Optional[Decimal] = None
    price_eur: Optional[Decimal] = None

    @field_validator("price_usd", "price_eur", mode="before")
    @classmethod
    def _money_to_decimal(cls, v):
        return _to_decimal(v)

    def prices(self) -> CurrencyPrices:
        return CurrencyPrices(usd=self.price_usd, eur=self.price_eur)


class CartLine(ApiModel):
    product_id: int
    variation_id: Optional[int] = None
    quantity: int = Field(gt=0)
    unit_price: CurrencyPrices = Field(default_factory=CurrencyPrices)
    name: str = ""
    is_freebie: bool = False
    parent_product_id: Optional[int] = None
    bundle_kind: BundleKind = "none"
    reseller_pricing: Optional[ResellerPricingRule] = None
    virtual: bool = False

    def same_item(self, product_id: int, variation_id: Optional[int] = None) -> bool:
        return (
            not self.is_freebie
            and self.product_id == product_id
            and self.variation_id == variation_id
        )


class PricedLine(ApiModel):
    product_id: int
    variation_id: Optional[int] = None
    name: str = ""
    quantity: int
    is_freebie: bool = False
    parent_product_id: Optional[int] = None
    virtual: bool = False
    original_price: Decimal
    effective_price: Decimal
    line_subtotal: Decimal
    line_total: Decimal
    discount_reason: DiscountReason = "none"


class PricedCart(ApiModel):
    lines: List[PricedLine]
    currency: Currency
    subtotal: Decimal
    reseller_discount: Decimal
    coupon_discount: Decimal
    discount_total: Decimal
    shipping_estimate: Decimal
    grand_total: Decimal
    coupon_code: Optional[str] = None
    free_shipping: bool = False

    @property
    def chargeable_lines(self) -> List[PricedLine]:
        return [ln for ln in self.lines if not ln.is_freebie]

    @property
    def freebie_lines(self) -> List[PricedLine]:
        return [ln for ln in self.lines if ln.is_freebie]


class CouponResult(ApiModel):
    id: int
    code: str
    discount_type: DiscountType
    amount: Decimal
    description: str = ""
    free_shipping: bool = False
    individual_use: bool = False
    product_ids: List[int] = Field(default_factory=list)
    excluded_product_ids: List[int] = Field(default_factory=list)
    discount_amount: Decimal = Decimal("0.00")


class CouponRejected(ApiModel):
    reason: RejectReason
    message: str


class Address(ApiModel):
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    def to_woo(self) -> dict:
        return self.model_dump(exclude_none=True)


class VatDecision(ApiModel):
    country_code: str
    vat_number: Optional[str] = None
    taxable: Optional[bool] = None
    valid: bool = False
    validated_name: Optional[str] = None
    address: Optional[str] = None
    used_fallback: bool = False
    service_unavailable: bool = False
    error: Optional[str] = None


class OrderCreated(ApiModel):
    order_id: int
    order_key: str
    order_number: str
    status: str
    total: Decimal
    payment_method: str
    payment_url: Optional[str] = None
