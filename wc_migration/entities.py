"""Per-entity migration rules.

Each entity type declares where its items come from, how an item is keyed
for resume, which mappings it depends on, and how its source collection is
ordered and filtered before batching.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models.migration import EntityType
from .models.record import ResumeKey

logger = logging.getLogger(__name__)

# BigCommerce supports at most this many category levels
BC_MAX_CATEGORY_DEPTH = 5

DEFAULT_REVIEW_STATUSES = ("approved", "hold")

SOURCE_WOOCOMMERCE = "woocommerce"
SOURCE_WORDPRESS = "wordpress"

Item = Dict[str, Any]
Scope = Optional[Dict[str, Any]]
Mappings = Dict[EntityType, Dict[int, int]]


def _by_id(item: Item) -> ResumeKey:
    return int(item["id"])


def _by_email(item: Item) -> ResumeKey:
    return (item.get("email") or "").strip().lower()


def _by_code(item: Item) -> ResumeKey:
    return (item.get("code") or "").strip().lower()


def depth_of(item: Item, by_id: Dict[int, Item]) -> int:
    """Depth of an item in a parent tree, 1 for roots. Cycles stop the walk."""
    depth = 1
    seen = {int(item["id"])}
    parent = int(item.get("parent") or 0)
    while parent and parent in by_id and parent not in seen:
        seen.add(parent)
        depth += 1
        parent = int(by_id[parent].get("parent") or 0)
    return depth


def parents_first(items: List[Item]) -> List[Item]:
    """Stable sort so every parent is processed before its children."""
    by_id = {int(item["id"]): item for item in items}
    return sorted(items, key=lambda item: depth_of(item, by_id))


def _category_filter(items: List[Item], scope: Scope, mappings: Mappings) -> Tuple[List[Item], List[str]]:
    by_id = {int(item["id"]): item for item in items}
    kept, warnings = [], []
    for item in items:
        depth = depth_of(item, by_id)
        if depth > BC_MAX_CATEGORY_DEPTH:
            warnings.append(
                f"Category \"{item.get('name')}\" is {depth} levels deep, "
                f"BigCommerce supports {BC_MAX_CATEGORY_DEPTH}; not migrated"
            )
        else:
            kept.append(item)
    return kept, warnings


def _customer_filter(items: List[Item], scope: Scope, mappings: Mappings) -> Tuple[List[Item], List[str]]:
    kept = [item for item in items if _by_email(item)]
    warnings = []
    if len(kept) < len(items):
        warnings.append(f"{len(items) - len(kept)} customers skipped - no email address")
    return kept, warnings


def _coupon_filter(items: List[Item], scope: Scope, mappings: Mappings) -> Tuple[List[Item], List[str]]:
    kept = [item for item in items if _by_code(item)]
    warnings = []
    if len(kept) < len(items):
        warnings.append(f"{len(items) - len(kept)} coupons skipped - no code")
    return kept, warnings


def _review_filter(
    items: List[Item],
    scope: Scope,
    mappings: Mappings
) -> Tuple[List[Item], List[str]]:
    statuses = set((scope or {}).get("statuses") or DEFAULT_REVIEW_STATUSES)
    in_status = [item for item in items if item.get("status") in statuses]

    product_mapping = mappings.get(EntityType.PRODUCTS) or {}
    kept = [item for item in in_status if int(item.get("product_id") or 0) in product_mapping]
    warnings = []
    missing = len(in_status) - len(kept)
    if missing:
        warnings.append(f"{missing} reviews skipped - product not found in BC")
    return kept, warnings


def _product_params(scope: Scope) -> Dict[str, Any]:
    params: Dict[str, Any] = {"status": "publish"}
    if scope and scope.get("category"):
        params["category"] = scope["category"]
    return params


def _order_params(scope: Scope) -> Dict[str, Any]:
    statuses = (scope or {}).get("status")
    if statuses:
        if isinstance(statuses, str):
            statuses = [statuses]
        return {"status": ",".join(statuses)}
    return {}


def _review_params(scope: Scope) -> Dict[str, Any]:
    return {"status": "all"}


def _publish_only(scope: Scope) -> Dict[str, Any]:
    return {"status": "publish"}


def _no_params(scope: Scope) -> Dict[str, Any]:
    return {}


def _rendered_title(item: Item) -> str:
    title = item.get("title")
    if isinstance(title, dict):
        title = title.get("rendered")
    return title or item.get("slug") or str(item["id"])


@dataclass(frozen=True)
class EntityDefinition:
    """How one entity type is read, keyed and gated."""
    entity: EntityType
    source: str
    resource: str
    params: Callable[[Scope], Dict[str, Any]] = _no_params
    resume_key: Callable[[Item], ResumeKey] = _by_id
    display: Callable[[Item], str] = lambda item: str(item["id"])
    # Mappings that must be non-empty before the run can start
    requires: Tuple[EntityType, ...] = ()
    # Mappings that improve the result but are not mandatory
    wants: Tuple[EntityType, ...] = ()
    order: Optional[Callable[[List[Item]], List[Item]]] = None
    exclude: Optional[Callable[[List[Item], Scope, Mappings], Tuple[List[Item], List[str]]]] = None
    # Newly created items are looked up by later items of the same run
    self_referencing: bool = False

    def filter_items(
        self,
        items: List[Item],
        scope: Scope,
        mappings: Mappings
    ) -> Tuple[List[Item], List[str]]:
        """Apply the entity's exclusion rule and ordering."""
        warnings: List[str] = []
        if self.exclude is not None:
            items, warnings = self.exclude(items, scope, mappings)
        if self.order is not None:
            items = self.order(items)
        return items, warnings


ENTITY_DEFINITIONS: Dict[EntityType, EntityDefinition] = {
    EntityType.CATEGORIES: EntityDefinition(
        entity=EntityType.CATEGORIES,
        source=SOURCE_WOOCOMMERCE,
        resource="products/categories",
        display=lambda item: item.get("name") or str(item["id"]),
        order=parents_first,
        exclude=_category_filter,
        self_referencing=True,
    ),
    EntityType.PRODUCTS: EntityDefinition(
        entity=EntityType.PRODUCTS,
        source=SOURCE_WOOCOMMERCE,
        resource="products",
        params=_product_params,
        display=lambda item: item.get("name") or str(item["id"]),
        wants=(EntityType.CATEGORIES,),
    ),
    EntityType.CUSTOMERS: EntityDefinition(
        entity=EntityType.CUSTOMERS,
        source=SOURCE_WOOCOMMERCE,
        resource="customers",
        params=lambda scope: {"role": "all"},
        resume_key=_by_email,
        display=lambda item: item.get("email") or str(item["id"]),
        exclude=_customer_filter,
    ),
    EntityType.ORDERS: EntityDefinition(
        entity=EntityType.ORDERS,
        source=SOURCE_WOOCOMMERCE,
        resource="orders",
        params=_order_params,
        display=lambda item: f"#{item['id']} ({item.get('status', 'unknown')})",
        requires=(EntityType.PRODUCTS,),
        wants=(EntityType.CUSTOMERS,),
    ),
    EntityType.COUPONS: EntityDefinition(
        entity=EntityType.COUPONS,
        source=SOURCE_WOOCOMMERCE,
        resource="coupons",
        resume_key=_by_code,
        display=lambda item: item.get("code") or str(item["id"]),
        wants=(EntityType.CATEGORIES, EntityType.PRODUCTS),
        exclude=_coupon_filter,
    ),
    EntityType.REVIEWS: EntityDefinition(
        entity=EntityType.REVIEWS,
        source=SOURCE_WOOCOMMERCE,
        resource="products/reviews",
        params=_review_params,
        display=lambda item: f"{item.get('reviewer') or 'Anonymous'} on product {item.get('product_id')}",
        requires=(EntityType.PRODUCTS,),
        exclude=_review_filter,
    ),
    EntityType.PAGES: EntityDefinition(
        entity=EntityType.PAGES,
        source=SOURCE_WORDPRESS,
        resource="pages",
        params=_publish_only,
        display=_rendered_title,
        order=parents_first,
        self_referencing=True,
    ),
    EntityType.BLOG_POSTS: EntityDefinition(
        entity=EntityType.BLOG_POSTS,
        source=SOURCE_WORDPRESS,
        resource="posts",
        params=_publish_only,
        display=_rendered_title,
    ),
}

# Friendly message for a missing hard dependency
DEPENDENCY_MESSAGES = {
    (EntityType.REVIEWS, EntityType.PRODUCTS): "Product ID mapping required. Please migrate products first.",
    (EntityType.ORDERS, EntityType.PRODUCTS): "Product ID mapping required. Please migrate products first.",
}


def get_definition(entity: EntityType) -> EntityDefinition:
    return ENTITY_DEFINITIONS[EntityType(entity)]


def dependency_message(entity: EntityType, missing: EntityType) -> str:
    return DEPENDENCY_MESSAGES.get(
        (entity, missing),
        f"{missing.value.capitalize()} ID mapping required before migrating {entity.value}.",
    )
