"""
WooCommerce to BigCommerce Migration

A toolkit for moving a WooCommerce store onto BigCommerce while keeping
WordPress as the content layer.

Supports:
- A four-phase wizard (Foundation, Core Data, Transactions, Content)
  with dependency gating between phases
- Resumable batch migration of categories, products, customers, orders,
  coupons, reviews, pages and blog posts
- ID mappings that carry cross-entity references between phases
- Server-sent progress streams for long-running migrations
- Durable wizard state keyed by source/target store pair
"""

__version__ = "0.1.0"
