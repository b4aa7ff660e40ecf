# discovery/__init__.py
from . import catalog
from . import scraper

SOURCES = tuple(catalog.MOCK_PRODUCTS)

search_products = catalog.search_products
scrape_product_info = scraper.scrape_product_info
