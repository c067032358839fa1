"""
Unit Tests - Record Normalization
"""
from datetime import datetime

import pytest

from storefront_analytics.errors import NormalizationError
from storefront_analytics.transformation import Customer, Order, Product, RecordNormalizer


class TestCustomerNormalization:
    """Tests for normalize_customer"""

    def test_shopify_customer(self, raw_customers):
        customer = RecordNormalizer().normalize_customer(raw_customers[0], "shopify")

        assert isinstance(customer, Customer)
        assert customer.source_id == "101"
        assert customer.source_type == "shopify"
        assert customer.email == "alice@example.com"
        assert customer.city == "Portland"
        assert customer.state == "Oregon"
        assert customer.postal_code == "97201"
        assert customer.total_spent == 132.5
        assert customer.orders_count == 2
        assert customer.tags == ["vip", "newsletter"]
        assert customer.created_at == datetime(2023, 11, 2, 8, 0)

    def test_woocommerce_billing_address(self):
        raw = {
            "id": 7,
            "email": "Woo@Shop.io",
            "billing": {"city": "Leeds", "state": "WYK", "country": "GB", "postcode": "LS1", "phone": "0113"},
        }

        customer = RecordNormalizer().normalize_customer(raw, "woocommerce")

        assert customer.email == "woo@shop.io"
        assert customer.city == "Leeds"
        assert customer.country == "GB"
        assert customer.postal_code == "LS1"
        assert customer.phone == "0113"

    def test_offset_timestamps_become_naive_utc(self):
        raw = {"id": 1, "created_at": "2024-03-01T10:00:00-05:00"}

        customer = RecordNormalizer().normalize_customer(raw, "shopify")

        assert customer.created_at == datetime(2024, 3, 1, 15, 0)
        assert customer.created_at.tzinfo is None

    def test_missing_id(self):
        with pytest.raises(NormalizationError) as exc_info:
            RecordNormalizer().normalize_customer({"email": "x@y.z"}, "shopify")

        assert exc_info.value.entity_type == "customer"
        assert exc_info.value.raw_record == {"email": "x@y.z"}

    def test_not_a_mapping(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_customer(["id", 1], "shopify")


class TestProductNormalization:
    """Tests for normalize_product"""

    def test_variant_fallbacks(self, raw_products):
        product = RecordNormalizer().normalize_product(raw_products[0], "shopify")

        assert isinstance(product, Product)
        assert product.title == "Desk Lamp"
        assert product.sku == "LAMP-1"
        assert product.price == 40.0
        assert product.inventory_quantity == 12
        assert product.status == "active"

    def test_woocommerce_product(self):
        raw = {
            "id": 33,
            "name": "Tea Pot",
            "price": "19.99",
            "regular_price": "24.99",
            "stock_quantity": 4,
            "status": "publish",
            "tags": [{"name": "kitchen"}, {"name": "gift"}],
        }

        product = RecordNormalizer().normalize_product(raw, "woocommerce")

        assert product.title == "Tea Pot"
        assert product.compare_at_price == 24.99
        assert product.inventory_quantity == 4
        assert product.status == "active"
        assert product.tags == ["kitchen", "gift"]

    def test_missing_title(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_product({"id": 1, "price": "5"}, "shopify")

    def test_negative_price(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_product({"id": 1, "title": "X", "price": "-5"}, "shopify")

    def test_non_numeric_price(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_product({"id": 1, "title": "X", "price": "cheap"}, "shopify")


class TestOrderNormalization:
    """Tests for normalize_order"""

    def test_order_with_line_items(self, raw_orders):
        order = RecordNormalizer().normalize_order(raw_orders[0], "shopify")

        assert isinstance(order, Order)
        assert order.source_id == "1001"
        assert order.order_number == "1001"
        assert order.total == 92.5
        assert order.financial_status == "paid"
        assert order.processed_at == datetime(2024, 3, 15, 9, 30)
        assert order.source_name == "web"
        assert len(order.line_items) == 2
        assert order.line_items[0].source_product_id == "501"
        assert order.line_items[0].source_order_id == "1001"
        assert order.line_items[0].quantity == 2
        assert order.line_items[1].price == 12.5

    def test_processed_at_falls_back_to_created_at(self):
        raw = {"id": 9, "total": "10", "status": "completed", "created_at": "2024-02-02T02:02:02Z"}

        order = RecordNormalizer().normalize_order(raw, "woocommerce")

        assert order.processed_at == datetime(2024, 2, 2, 2, 2, 2)
        assert order.financial_status == "paid"
        assert order.currency == "USD"

    def test_missing_timestamps(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_order({"id": 9, "total_price": "10"}, "shopify")

    def test_bad_timestamp(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_order({"id": 9, "processed_at": "yesterday"}, "shopify")

    def test_negative_total(self):
        with pytest.raises(NormalizationError):
            RecordNormalizer().normalize_order(
                {"id": 9, "total_price": "-1", "processed_at": "2024-01-01T00:00:00Z"}, "shopify"
            )

    def test_bad_line_item_fails_the_order(self):
        raw = {
            "id": 9,
            "processed_at": "2024-01-01T00:00:00Z",
            "line_items": [{"product_id": 1, "quantity": "many"}],
        }

        with pytest.raises(NormalizationError) as exc_info:
            RecordNormalizer().normalize_order(raw, "shopify")

        assert exc_info.value.entity_type == "order_item"


class TestNormalizeDispatch:
    """Tests for normalize"""

    def test_dispatch_by_entity_type(self, raw_products):
        product = RecordNormalizer().normalize(raw_products[1], "shopify", "product")

        assert product.title == "Mug"

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError):
            RecordNormalizer().normalize({"id": 1}, "shopify", "refund")
