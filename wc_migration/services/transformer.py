"""Transforms WooCommerce/WordPress records into BigCommerce payloads."""

import html
import re
import logging
from dataclasses import dataclass, field
from email.utils import format_datetime
from typing import Any, Callable, Dict, List, Optional
from datetime import timezone
from dateutil import parser as date_parser

from ..models.migration import EntityType
from ..models.record import TransformedRecord

logger = logging.getLogger(__name__)

PRODUCT_NAME_LIMIT = 250
PRODUCT_IMAGE_LIMIT = 5
COUPON_NAME_LIMIT = 100
PAGE_NAME_LIMIT = 255
META_DESCRIPTION_LIMIT = 255
REVIEW_TITLE_LIMIT = 50

# WooCommerce order status -> BigCommerce status_id
ORDER_STATUS_MAP = {
    "pending": 1,
    "processing": 11,
    "on-hold": 13,
    "completed": 10,
    "cancelled": 5,
    "refunded": 4,
    "failed": 6,
}

DISCOUNT_TYPE_MAP = {
    "percent": "percentage_discount",
    "fixed_cart": "per_total_discount",
    "fixed_product": "per_item_discount",
}

COUNTRY_NAMES = {
    "US": "United States",
    "CA": "Canada",
    "GB": "United Kingdom",
    "AU": "Australia",
    "DE": "Germany",
    "FR": "France",
    "ES": "Spain",
    "IT": "Italy",
    "NL": "Netherlands",
    "BE": "Belgium",
    "AT": "Austria",
    "CH": "Switzerland",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "IE": "Ireland",
    "NZ": "New Zealand",
    "JP": "Japan",
    "CN": "China",
    "IN": "India",
    "BR": "Brazil",
    "MX": "Mexico",
}

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(value: Optional[str]) -> str:
    if not value:
        return ""
    return _TAG_RE.sub("", value).strip()


def decode_entities(value: Optional[str]) -> str:
    return html.unescape(value or "")


def to_float(value: Any, default: float = 0.0) -> float:
    """WooCommerce sends money and weights as strings, sometimes empty."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def rendered(item: Dict[str, Any], key: str) -> str:
    """WordPress wraps text fields as {"rendered": "..."}."""
    value = item.get(key)
    if isinstance(value, dict):
        return value.get("rendered") or ""
    return value or ""


def country_name(code: str) -> str:
    return COUNTRY_NAMES.get(code, code)


def product_sku(item: Dict[str, Any]) -> str:
    return (item.get("sku") or f"WC-{item['id']}")[:PRODUCT_NAME_LIMIT]


@dataclass
class TransformContext:
    """Cross-entity lookups available while transforming a run."""
    category_mapping: Dict[int, int] = field(default_factory=dict)
    product_mapping: Dict[int, int] = field(default_factory=dict)
    customer_mapping: Dict[int, int] = field(default_factory=dict)
    # Grows during a page run so children can find their parent
    page_mapping: Dict[int, int] = field(default_factory=dict)
    # WordPress taxonomy and author names for blog posts
    tags: Dict[int, str] = field(default_factory=dict)
    blog_categories: Dict[int, str] = field(default_factory=dict)
    authors: Dict[int, str] = field(default_factory=dict)


class EntityTransformer:
    """
    Converts one source item at a time into a target payload.

    Each entity type has a transform registered in a dispatch table. A
    transform returns the payload and appends human-readable warnings for
    anything it had to approximate.
    """

    def __init__(self):
        self._custom_transforms: Dict[EntityType, Callable] = {}
        self._builtin_transforms = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[EntityType, Callable]:
        """Register the built-in transform for each entity type."""
        return {
            EntityType.CATEGORIES: self._transform_category,
            EntityType.PRODUCTS: self._transform_product,
            EntityType.CUSTOMERS: self._transform_customer,
            EntityType.ORDERS: self._transform_order,
            EntityType.COUPONS: self._transform_coupon,
            EntityType.REVIEWS: self._transform_review,
            EntityType.PAGES: self._transform_page,
            EntityType.BLOG_POSTS: self._transform_blog_post,
        }

    def register_transform(self, entity: EntityType, func: Callable) -> None:
        """Override the transform for an entity type."""
        self._custom_transforms[entity] = func

    def transform(
        self,
        entity: EntityType,
        item: Dict[str, Any],
        context: Optional[TransformContext] = None
    ) -> TransformedRecord:
        """
        Transform a source item for the target.

        Args:
            entity: Entity type being migrated
            item: Source item as returned by the source API
            context: Mappings and lookups from earlier phases

        Returns:
            TransformedRecord carrying the payload and any warnings
        """
        context = context or TransformContext()
        func = self._custom_transforms.get(entity) or self._builtin_transforms[entity]
        warnings: List[str] = []
        data = func(item, context, warnings)
        return TransformedRecord(
            source_id=int(item["id"]),
            entity=entity.value,
            data=data,
            warnings=warnings,
        )

    # Foundation

    def _transform_category(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        parent = int(item.get("parent") or 0)
        parent_id = 0
        if parent:
            parent_id = ctx.category_mapping.get(parent, 0)
            if not parent_id:
                warnings.append(
                    f"Category \"{item.get('name')}\": parent {parent} not migrated, creating at top level"
                )

        payload = {
            "name": decode_entities(item.get("name")),
            "parent_id": parent_id,
            "description": item.get("description") or "",
            "is_visible": True,
        }
        image = item.get("image")
        if isinstance(image, dict) and image.get("src"):
            payload["image_url"] = image["src"]
        return payload

    # Core data

    def _transform_product(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        name = decode_entities(item.get("name")) or f"Product {item['id']}"
        payload: Dict[str, Any] = {
            "name": name[:PRODUCT_NAME_LIMIT],
            "type": "digital" if item.get("virtual") or item.get("downloadable") else "physical",
            "sku": product_sku(item),
            "price": to_float(item.get("price")) or to_float(item.get("regular_price")),
            "weight": to_float(item.get("weight")),
            "description": item.get("description") or item.get("short_description") or "",
            "is_visible": item.get("status", "publish") == "publish",
        }

        regular = to_float(item.get("regular_price"))
        sale = to_float(item.get("sale_price"))
        if regular and sale and sale < regular:
            payload["price"] = regular
            payload["sale_price"] = sale

        categories = []
        for category in item.get("categories") or []:
            target_id = ctx.category_mapping.get(int(category["id"]))
            if target_id:
                categories.append(target_id)
            else:
                warnings.append(
                    f"Product \"{name}\": category {category.get('name', category['id'])} not migrated"
                )
        payload["categories"] = categories

        images = item.get("images") or []
        if images:
            payload["images"] = [
                {"image_url": image["src"], "is_thumbnail": index == 0}
                for index, image in enumerate(images[:PRODUCT_IMAGE_LIMIT])
            ]
            if len(images) > PRODUCT_IMAGE_LIMIT:
                warnings.append(
                    f"Product \"{name}\": only the first {PRODUCT_IMAGE_LIMIT} of {len(images)} images migrated"
                )

        if item.get("manage_stock") and item.get("stock_quantity") is not None:
            payload["inventory_tracking"] = "product"
            payload["inventory_level"] = int(item["stock_quantity"])

        if item.get("type") == "variable":
            warnings.append(f"Product \"{name}\": variations are not migrated")

        return payload

    def _customer_address(self, address: Dict[str, Any], customer: Dict[str, Any]) -> Dict[str, Any]:
        result = {
            "first_name": address.get("first_name") or customer.get("first_name") or "",
            "last_name": address.get("last_name") or customer.get("last_name") or "",
            "address1": address["address_1"],
            "city": address.get("city") or "",
            "state_or_province": address.get("state") or "",
            "postal_code": address.get("postcode") or "",
            "country_code": address.get("country") or "",
            "address_type": "residential",
        }
        if address.get("address_2"):
            result["address2"] = address["address_2"]
        if address.get("phone"):
            result["phone"] = address["phone"]
        return result

    def _transform_customer(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        billing = item.get("billing") or {}
        shipping = item.get("shipping") or {}

        addresses = []
        if billing.get("address_1"):
            addresses.append(self._customer_address(billing, item))
        if shipping.get("address_1") and shipping.get("address_1") != billing.get("address_1"):
            addresses.append(self._customer_address(shipping, item))

        payload: Dict[str, Any] = {
            "email": item["email"],
            "first_name": item.get("first_name") or "Customer",
            "last_name": item.get("last_name") or str(item["id"]),
            # Passwords cannot be migrated
            "authentication": {"force_password_reset": True},
        }
        if billing.get("phone"):
            payload["phone"] = billing["phone"]
        if addresses:
            payload["addresses"] = addresses
        return payload

    # Transactions

    def _order_address(self, address: Dict[str, Any]) -> Dict[str, Any]:
        # The v2 orders API rejects incomplete addresses
        code = address.get("country") or "US"
        return {
            "first_name": address.get("first_name") or "Guest",
            "last_name": address.get("last_name") or "Customer",
            "company": address.get("company") or "",
            "street_1": address.get("address_1") or "123 Default Street",
            "street_2": address.get("address_2") or "",
            "city": address.get("city") or "Austin",
            "state": address.get("state") or "TX",
            "zip": address.get("postcode") or "78701",
            "country": country_name(code),
            "country_iso2": code,
            "phone": address.get("phone") or "",
        }

    def _transform_order(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        order_id = item["id"]
        status = item.get("status", "pending")
        status_id = ORDER_STATUS_MAP.get(status)
        if status_id is None:
            warnings.append(f"Order #{order_id}: unknown status '{status}', migrated as pending")
            status_id = ORDER_STATUS_MAP["pending"]

        customer_id = 0
        source_customer = int(item.get("customer_id") or 0)
        if source_customer > 0:
            customer_id = ctx.customer_mapping.get(source_customer, 0)
            if not customer_id:
                warnings.append(
                    f"Order #{order_id}: customer {source_customer} not found in mapping, using guest checkout"
                )

        billing_source = item.get("billing") or {}
        billing = self._order_address(billing_source)
        billing["email"] = billing_source.get("email") or ""
        shipping_source = item.get("shipping") or {}
        shipping = self._order_address(shipping_source) if shipping_source.get("address_1") else dict(billing)

        products = []
        for line in item.get("line_items") or []:
            quantity = int(line.get("quantity") or 1)
            line_total = to_float(line.get("total"))
            line_tax = to_float(line.get("total_tax"))
            product = {
                "quantity": quantity,
                "price_inc_tax": line_total / quantity,
                "price_ex_tax": (line_total - line_tax) / quantity,
                "name": line.get("name") or "Item",
            }
            if line.get("sku"):
                product["sku"] = line["sku"]

            target_product = ctx.product_mapping.get(int(line.get("product_id") or 0))
            if target_product:
                product["product_id"] = target_product
            else:
                # Unmapped products become custom line items
                warnings.append(
                    f"Order #{order_id}: product {line.get('product_id')} ({line.get('name')}) "
                    f"not found in mapping, adding as custom item"
                )
            products.append(product)

        total = to_float(item.get("total"))
        total_tax = to_float(item.get("total_tax"))
        shipping_ex_tax = to_float(item.get("shipping_total"))
        shipping_inc_tax = shipping_ex_tax + to_float(item.get("shipping_tax"))

        payload: Dict[str, Any] = {
            "customer_id": customer_id,
            "status_id": status_id,
            "billing_address": billing,
            "shipping_addresses": [shipping],
            "products": products,
            "subtotal_ex_tax": total - total_tax - shipping_ex_tax,
            "subtotal_inc_tax": total - shipping_inc_tax,
            "total_ex_tax": total - total_tax,
            "total_inc_tax": total,
            "shipping_cost_ex_tax": shipping_ex_tax,
            "shipping_cost_inc_tax": shipping_inc_tax,
            "discount_amount": to_float(item.get("discount_total")),
            "payment_method": item.get("payment_method_title") or "Other",
            "external_source": "WooCommerce Migration",
            "external_id": f"WC-{order_id}",
            "staff_notes": (
                f"Migrated from WooCommerce. Original Order ID: {order_id}. "
                f"Date: {item.get('date_created', '')}"
            ),
        }
        if item.get("customer_note"):
            payload["customer_message"] = item["customer_note"]
        if item.get("date_created"):
            created = date_parser.parse(item["date_created"])
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            payload["date_created"] = format_datetime(created)
        return payload

    def refund_note(self, item: Dict[str, Any]) -> Optional[str]:
        """Staff note summarising refunds, which the target cannot import."""
        refunds = item.get("refunds") or []
        if not refunds:
            return None
        total = abs(sum(to_float(r.get("total")) for r in refunds))
        reasons = "; ".join(r.get("reason") or "No reason provided" for r in refunds)
        return f"WC Refund History: {len(refunds)} refund(s) totaling ${total:.2f}. {reasons}"

    def _transform_coupon(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        code = item["code"]
        discount_type = item.get("discount_type", "percent")
        coupon_type = DISCOUNT_TYPE_MAP.get(discount_type)
        if coupon_type is None:
            warnings.append(f"Coupon \"{code}\": unknown discount type '{discount_type}', using percentage")
            coupon_type = "percentage_discount"
        if item.get("free_shipping") and discount_type != "percent":
            coupon_type = "free_shipping"

        applies_to = None
        source_categories = item.get("product_categories") or []
        source_products = item.get("product_ids") or []
        if source_categories:
            ids = [ctx.category_mapping[int(c)] for c in source_categories if int(c) in ctx.category_mapping]
            if ids:
                applies_to = {"entity": "categories", "ids": ids}
            else:
                warnings.append(f"Coupon \"{code}\": category restrictions couldn't be mapped, applying to all")
        elif source_products:
            ids = [ctx.product_mapping[int(p)] for p in source_products if int(p) in ctx.product_mapping]
            if ids:
                applies_to = {"entity": "products", "ids": ids}
            else:
                warnings.append(f"Coupon \"{code}\": product restrictions couldn't be mapped, applying to all")

        name = item.get("description") or f"Coupon: {code}"
        if item.get("individual_use"):
            name += " (Cannot be combined with other coupons)"

        payload: Dict[str, Any] = {
            "name": name[:COUPON_NAME_LIMIT],
            "type": coupon_type,
            "amount": item.get("amount", "0"),
            "code": code.upper(),
            "enabled": True,
            "applies_to": applies_to or {"entity": "categories", "ids": [0]},
        }
        if to_float(item.get("minimum_amount")) > 0:
            payload["min_purchase"] = item["minimum_amount"]
        if item.get("date_expires"):
            payload["expires"] = date_parser.parse(item["date_expires"]).strftime("%m/%d/%Y")
        if item.get("usage_limit"):
            payload["max_uses"] = item["usage_limit"]
        if item.get("usage_limit_per_user"):
            payload["max_uses_per_customer"] = item["usage_limit_per_user"]
        if item.get("free_shipping"):
            payload["shipping_free_shipping"] = True
        return payload

    # Content

    def _transform_review(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        text = strip_html(item.get("review"))

        title = "Product Review"
        first_sentence = re.split(r"[.!?]", text)[0] if text else ""
        if len(first_sentence) > 5:
            title = first_sentence[:REVIEW_TITLE_LIMIT]
            if len(first_sentence) > REVIEW_TITLE_LIMIT:
                title += "..."

        rating = int(item.get("rating") or 5)
        payload = {
            "product_id": ctx.product_mapping[int(item["product_id"])],
            "title": title,
            "text": text or "No review text provided",
            "status": "approved" if item.get("status") == "approved" else "pending",
            "rating": min(5, max(1, rating)),
            "name": item.get("reviewer") or "Anonymous",
            "email": item.get("reviewer_email") or "anonymous@example.com",
        }
        if item.get("date_created"):
            payload["date_reviewed"] = date_parser.parse(item["date_created"]).isoformat()
        return payload

    def _meta_description(self, item: Dict[str, Any]) -> Optional[str]:
        excerpt = strip_html(rendered(item, "excerpt"))
        return excerpt[:META_DESCRIPTION_LIMIT] if excerpt else None

    def _transform_page(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        name = decode_entities(rendered(item, "title")) or "Untitled"
        payload: Dict[str, Any] = {
            "name": name[:PAGE_NAME_LIMIT],
            "type": "raw",
            "body": rendered(item, "content"),
            "url": f"/{item.get('slug', '')}",
            "is_visible": item.get("status") == "publish",
            "sort_order": item.get("menu_order") or 0,
        }

        parent = int(item.get("parent") or 0)
        if parent:
            parent_id = ctx.page_mapping.get(parent)
            if parent_id:
                payload["parent_id"] = parent_id
            else:
                warnings.append(f"Page \"{name}\": parent page {parent} not yet migrated, creating as top-level")

        meta = self._meta_description(item)
        if meta:
            payload["meta_description"] = meta
        return payload

    def _transform_blog_post(self, item: Dict, ctx: TransformContext, warnings: List[str]) -> Dict[str, Any]:
        title = decode_entities(rendered(item, "title")) or "Untitled"
        payload: Dict[str, Any] = {
            "title": title[:PAGE_NAME_LIMIT],
            "body": rendered(item, "content"),
            "url": f"/{item.get('slug', '')}",
            "is_published": item.get("status") == "publish",
        }

        # The target blog has tags only, so categories become tags too
        tags = [ctx.tags[t] for t in item.get("tags") or [] if t in ctx.tags]
        for category in item.get("categories") or []:
            name = ctx.blog_categories.get(category)
            if name and name.lower() != "uncategorized":
                tags.append(name)
        if tags:
            payload["tags"] = tags

        author = ctx.authors.get(item.get("author"))
        if author:
            payload["author"] = author

        if item.get("date"):
            published = date_parser.parse(item["date"])
            if published.tzinfo is None:
                published = published.replace(tzinfo=timezone.utc)
            payload["published_date"] = format_datetime(published)

        meta = self._meta_description(item)
        if meta:
            payload["meta_description"] = meta

        if item.get("featured_media"):
            warnings.append(
                f"Post \"{title}\": has featured image (ID: {item['featured_media']}), "
                f"thumbnail must be uploaded manually"
            )
        return payload
