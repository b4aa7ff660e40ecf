# discovery/catalog.py
from copy import deepcopy
from typing import Dict, List, Optional

from wishsync.logger import get_logger
from wishsync.models import Product

logger = get_logger(__name__)

# Sample products keyed by source, then by search keyword
MOCK_PRODUCTS: Dict[str, Dict[str, Product]] = {
    "amazon": {
        "headphones": Product(
            id="1",
            title="Sony WH-1000XM4 Wireless Noise Cancelling Headphones",
            description=(
                "Industry-leading noise canceling with Dual Noise Sensor technology. "
                "Next-level music with Edge-AI, co-developed with Sony Music Studios Tokyo."
            ),
            price="348.00",
            image_url="https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=500",
            url="https://amazon.com/sony-wh1000xm4",
            source="amazon",
            rating=4.8,
            reviews=2345,
            metadata={
                "brand": "Sony",
                "availability": "In Stock",
                "specifications": {
                    "Battery Life": "Up to 30 hours",
                    "Color": "Black",
                    "Connectivity": "Bluetooth 5.0",
                },
            },
        ),
        "default": Product(
            id="2",
            title="Amazon Basic Product",
            description="High-quality Amazon product with premium features",
            price="199.99",
            image_url="https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=500",
            source="amazon",
            rating=4.5,
            reviews=1234,
            metadata={"brand": "Amazon Basics", "availability": "In Stock"},
        ),
    },
    "etsy": {
        "wallet": Product(
            id="3",
            title="Handcrafted Leather Wallet",
            description=(
                "Premium handmade leather wallet, carefully crafted with genuine full-grain "
                "leather. Perfect for everyday use with multiple card slots and bill compartments."
            ),
            price="45.00",
            image_url="https://images.unsplash.com/photo-1627123364843-8c6b67b7a402?w=500",
            url="https://etsy.com/handmade-wallet",
            source="etsy",
            rating=4.9,
            reviews=856,
            metadata={
                "brand": "LeatherCraft",
                "availability": "Made to order",
                "specifications": {
                    "Material": "Full grain leather",
                    "Color": "Brown",
                    "Dimensions": '4.5" x 3.5"',
                },
            },
        ),
        "default": Product(
            id="4",
            title="Handmade Etsy Item",
            description="Beautifully crafted handmade item from a skilled artisan",
            price="59.99",
            image_url="https://images.unsplash.com/photo-1544441893-675973e31985?w=500",
            source="etsy",
            rating=4.7,
            reviews=432,
            metadata={"brand": "Artisan Crafts", "availability": "Ready to ship"},
        ),
    },
}


def _matches(keyword: str, product: Product, terms: List[str]) -> bool:
    haystack = f"{keyword} {product.title} {product.description}".lower()
    return any(t in haystack for t in terms)


def search_products(query: str, source: Optional[str] = None) -> List[Product]:
    """
    Return sample products for ``source`` ("amazon", "etsy", or None/"all" for
    every source). Products matching the query come first.
    """
    source = (source or "all").strip().lower()
    if source == "all":
        entries = [(k, p) for catalog in MOCK_PRODUCTS.values() for k, p in catalog.items()]
    elif source in MOCK_PRODUCTS:
        entries = list(MOCK_PRODUCTS[source].items())
    else:
        logger.warning("Unknown product source '%s'; returning no products.", source)
        return []

    terms = [t for t in (query or "").lower().split() if t]
    if terms:
        entries.sort(key=lambda kp: not _matches(kp[0], kp[1], terms))

    logger.debug("Search '%s' in %s: %d products.", query, source, len(entries))
    return [deepcopy(p) for _, p in entries]
