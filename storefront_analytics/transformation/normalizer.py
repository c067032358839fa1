"""
Record Normalizer

Maps raw Shopify, WooCommerce and Commercetools payloads onto the canonical
entities. Connectors hand over loosely shaped dictionaries; everything past
this module only sees Customer, Product, Order and OrderItem.

Rules:
- Emails are lower-cased
- Tags may arrive as a list, a list of {"name": ...} objects or a CSV string
- Timestamps become naive UTC datetimes
- Any record that cannot be parsed raises NormalizationError with the record
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from storefront_analytics.errors import NormalizationError
from .entities import Customer, Order, OrderItem, Product


PRODUCT_STATUSES = {
    "active": "active",
    "publish": "active",
    "published": "active",
    "draft": "draft",
    "inactive": "draft",
    "unpublished": "draft",
    "archived": "archived",
    "deleted": "archived",
}

FINANCIAL_STATUSES = {
    "paid": "paid",
    "completed": "paid",
    "complete": "paid",
    "pending": "pending",
    "processing": "pending",
    "authorized": "pending",
    "refunded": "refunded",
    "refund": "refunded",
    "voided": "voided",
    "cancelled": "voided",
    "canceled": "voided",
    "partially_paid": "partially_paid",
    "partial": "partially_paid",
    "partially_refunded": "partially_refunded",
}


def _first(*values: Any) -> Any:
    """First value that is neither None nor an empty string"""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _nested(record: Mapping[str, Any], *path: Any) -> Any:
    current: Any = record
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
    return current


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RecordNormalizer:
    """
    Normalizes raw platform records into canonical entities.

    Example:
        normalizer = RecordNormalizer()
        order = normalizer.normalize(raw_order, "shopify", "order")
    """

    def __init__(self):
        self._normalizers: Dict[str, Callable[[Any, str], Any]] = {
            "customer": self.normalize_customer,
            "product": self.normalize_product,
            "order": self.normalize_order,
            "order_item": self.normalize_order_item,
        }

    def normalize(self, raw_record: Any, source_type: str, entity_type: str):
        """Normalize a raw record of the given entity type"""
        normalizer = self._normalizers.get(entity_type)
        if not normalizer:
            raise ValueError(f"Unknown entity type: {entity_type}")
        return normalizer(raw_record, source_type)

    # -------------------------------------------------------------------------
    # Field parsing
    # -------------------------------------------------------------------------

    def _require_mapping(self, raw: Any, entity_type: str) -> Mapping[str, Any]:
        if not isinstance(raw, Mapping):
            raise NormalizationError(
                f"Expected a mapping for {entity_type}, got {type(raw).__name__}",
                entity_type=entity_type,
                raw_record=raw,
            )
        return raw

    def _source_id(self, raw: Mapping[str, Any], entity_type: str) -> str:
        value = raw.get("id")
        if value is None or str(value).strip() == "":
            raise NormalizationError(
                f"{entity_type} record has no id",
                entity_type=entity_type,
                raw_record=raw,
            )
        return str(value)

    def _float(
        self,
        value: Any,
        field_name: str,
        entity_type: str,
        raw: Mapping[str, Any],
        default: Optional[float] = 0.0,
    ) -> Optional[float]:
        if value is None or value == "":
            return default
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise NormalizationError(
                f"Invalid {field_name} on {entity_type}: {value!r}",
                entity_type=entity_type,
                raw_record=raw,
            ) from exc
        if not math.isfinite(number):
            raise NormalizationError(
                f"Invalid {field_name} on {entity_type}: {value!r}",
                entity_type=entity_type,
                raw_record=raw,
            )
        return number

    def _int(
        self,
        value: Any,
        field_name: str,
        entity_type: str,
        raw: Mapping[str, Any],
        default: int = 0,
    ) -> int:
        number = self._float(value, field_name, entity_type, raw, default=None)
        if number is None:
            return default
        return int(number)

    def _datetime(
        self,
        value: Any,
        field_name: str,
        entity_type: str,
        raw: Mapping[str, Any],
    ) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return to_utc_naive(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid {field_name} on {entity_type}: {value!r}",
                entity_type=entity_type,
                raw_record=raw,
            ) from exc
        return to_utc_naive(parsed)

    @staticmethod
    def _email(*values: Any) -> Optional[str]:
        email = _first(*values)
        return str(email).strip().lower() if email is not None else None

    @staticmethod
    def _tags(raw: Mapping[str, Any]) -> List[str]:
        tags = raw.get("tags")
        if not tags:
            return []
        if isinstance(tags, list):
            return [
                str(tag.get("name")) if isinstance(tag, Mapping) else str(tag)
                for tag in tags
            ]
        if isinstance(tags, str):
            return [tag.strip() for tag in tags.split(",") if tag.strip()]
        return []

    @staticmethod
    def _address_field(raw: Mapping[str, Any], *candidates: tuple) -> Optional[str]:
        values = [_nested(raw, *path) for path in candidates]
        value = _first(*values)
        return str(value) if value is not None else None

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def normalize_customer(self, raw: Any, source_type: str) -> Customer:
        raw = self._require_mapping(raw, "customer")
        entity = "customer"

        return Customer(
            source_id=self._source_id(raw, entity),
            source_type=source_type,
            email=self._email(raw.get("email")),
            first_name=_first(raw.get("first_name")),
            last_name=_first(raw.get("last_name")),
            phone=self._address_field(
                raw, ("phone",), ("default_address", "phone"), ("billing", "phone")
            ),
            city=self._address_field(
                raw, ("default_address", "city"), ("addresses", 0, "city"), ("billing", "city")
            ),
            state=self._address_field(
                raw,
                ("default_address", "province"),
                ("default_address", "province_code"),
                ("addresses", 0, "province"),
                ("billing", "state"),
            ),
            country=self._address_field(
                raw,
                ("default_address", "country"),
                ("default_address", "country_code"),
                ("addresses", 0, "country"),
                ("billing", "country"),
            ),
            postal_code=self._address_field(
                raw, ("default_address", "zip"), ("addresses", 0, "zip"), ("billing", "postcode")
            ),
            total_spent=self._float(raw.get("total_spent"), "total_spent", entity, raw),
            orders_count=self._int(raw.get("orders_count"), "orders_count", entity, raw),
            tags=self._tags(raw),
            created_at=self._datetime(raw.get("created_at"), "created_at", entity, raw),
            updated_at=self._datetime(raw.get("updated_at"), "updated_at", entity, raw),
        )

    def normalize_product(self, raw: Any, source_type: str) -> Product:
        raw = self._require_mapping(raw, "product")
        entity = "product"

        title = _first(raw.get("title"), raw.get("name"))
        if title is None:
            raise NormalizationError("product record has no title", entity_type=entity, raw_record=raw)

        price = self._float(
            _first(raw.get("price"), _nested(raw, "variants", 0, "price")), "price", entity, raw
        )
        if price < 0:
            raise NormalizationError(f"Negative price on product: {price}", entity_type=entity, raw_record=raw)

        status = _first(raw.get("status"))
        if status is None:
            status = "active"
        else:
            status = PRODUCT_STATUSES.get(str(status).lower(), str(status))

        return Product(
            source_id=self._source_id(raw, entity),
            source_type=source_type,
            title=str(title),
            vendor=_first(raw.get("vendor")),
            product_type=_first(raw.get("product_type"), raw.get("type")),
            sku=_first(raw.get("sku"), _nested(raw, "variants", 0, "sku")),
            price=price,
            compare_at_price=self._float(
                _first(
                    raw.get("compare_at_price"),
                    raw.get("regular_price"),
                    _nested(raw, "variants", 0, "compare_at_price"),
                ),
                "compare_at_price",
                entity,
                raw,
                default=None,
            ),
            inventory_quantity=self._int(
                _first(
                    raw.get("inventory_quantity"),
                    raw.get("stock_quantity"),
                    _nested(raw, "variants", 0, "inventory_quantity"),
                ),
                "inventory_quantity",
                entity,
                raw,
            ),
            tags=self._tags(raw),
            status=status,
            created_at=self._datetime(raw.get("created_at"), "created_at", entity, raw),
            updated_at=self._datetime(raw.get("updated_at"), "updated_at", entity, raw),
        )

    def normalize_order(self, raw: Any, source_type: str) -> Order:
        """Normalize an order together with its nested line items"""
        raw = self._require_mapping(raw, "order")
        entity = "order"
        source_id = self._source_id(raw, entity)

        created_at = self._datetime(raw.get("created_at"), "created_at", entity, raw)
        processed_at = self._datetime(raw.get("processed_at"), "processed_at", entity, raw) or created_at
        if processed_at is None:
            raise NormalizationError(
                "order record has neither processed_at nor created_at",
                entity_type=entity,
                raw_record=raw,
            )

        total = self._float(_first(raw.get("total_price"), raw.get("total")), "total", entity, raw)
        if total < 0:
            raise NormalizationError(f"Negative total on order: {total}", entity_type=entity, raw_record=raw)

        financial_status = _first(raw.get("financial_status"), raw.get("status"))
        if financial_status is None:
            financial_status = "pending"
        else:
            financial_status = FINANCIAL_STATUSES.get(str(financial_status).lower(), str(financial_status))

        line_items = []
        for raw_item in raw.get("line_items") or []:
            item = self.normalize_order_item(raw_item, source_type)
            item.source_order_id = source_id
            line_items.append(item)

        return Order(
            source_id=source_id,
            source_type=source_type,
            order_number=str(_first(raw.get("order_number"), raw.get("number"), source_id)),
            email=self._email(raw.get("email"), raw.get("contact_email")),
            financial_status=financial_status,
            fulfillment_status=_first(raw.get("fulfillment_status")),
            currency=_first(raw.get("currency")) or "USD",
            subtotal=self._float(
                _first(raw.get("subtotal_price"), raw.get("subtotal")), "subtotal", entity, raw
            ),
            tax=self._float(raw.get("total_tax"), "tax", entity, raw),
            discounts=self._float(
                _first(raw.get("total_discounts"), raw.get("discount_total")), "discounts", entity, raw
            ),
            shipping=self._float(
                _first(raw.get("total_shipping"), raw.get("shipping_total")), "shipping", entity, raw
            ),
            total=total,
            processed_at=processed_at,
            cancelled_at=self._datetime(raw.get("cancelled_at"), "cancelled_at", entity, raw),
            tags=self._tags(raw),
            source_name=_first(raw.get("source_name")),
            created_at=created_at,
            updated_at=self._datetime(raw.get("updated_at"), "updated_at", entity, raw),
            line_items=line_items,
        )

    def normalize_order_item(self, raw: Any, source_type: str) -> OrderItem:
        raw = self._require_mapping(raw, "order_item")
        entity = "order_item"

        product_id = _first(raw.get("product_id"))
        variant_id = _first(raw.get("variant_id"), raw.get("variation_id"))

        return OrderItem(
            source_type=source_type,
            source_product_id=str(product_id) if product_id is not None else None,
            source_variant_id=str(variant_id) if variant_id is not None else None,
            title=_first(raw.get("title"), raw.get("name")),
            variant_title=_first(raw.get("variant_title")),
            sku=_first(raw.get("sku")),
            quantity=self._int(raw.get("quantity"), "quantity", entity, raw, default=1),
            price=self._float(raw.get("price"), "price", entity, raw),
            total_discount=self._float(raw.get("total_discount"), "total_discount", entity, raw),
            fulfillment_status=_first(raw.get("fulfillment_status")),
        )
