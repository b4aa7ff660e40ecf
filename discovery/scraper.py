# discovery/scraper.py
import os
import re
import hashlib
import json
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from tenacity import retry, wait_exponential_jitter, stop_after_attempt, RetryError

from wishsync.logger import get_logger
from wishsync.models import Product

logger = get_logger(__name__)

SCRAPER_API_URL = os.getenv("SCRAPER_API_URL", "https://api.scraperapi.com").strip()
SCRAPER_API_KEY = os.getenv("SCRAPER_API_KEY", "").strip()
SCRAPER_TIMEOUT = int(os.getenv("SCRAPER_TIMEOUT", "60"))
USER_AGENT = os.getenv(
    "SCRAPER_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)

TITLE_NOT_FOUND = "Product Title Not Found"
DESCRIPTION_NOT_FOUND = "Description Not Found"
PRICE_NOT_FOUND = "Price Not Found"

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT})


@retry(wait=wait_exponential_jitter(initial=1, max=30), stop=stop_after_attempt(3))
def _fetch(url: str) -> requests.Response:
    params = {"api_key": SCRAPER_API_KEY, "autoparse": "true", "url": url}
    r = SESSION.get(SCRAPER_API_URL, params=params, timeout=SCRAPER_TIMEOUT)
    r.raise_for_status()
    return r


def looks_like_captcha_or_block(html: str) -> bool:
    """Heuristically detect Robot Check / CAPTCHA / blocked pages."""
    lower = html.lower()
    if "robot check" in lower:
        return True
    if "enter the characters you see below" in lower:
        return True
    if "/errors/validatecaptcha" in lower:
        return True
    if "to discuss automated access to amazon data" in lower:
        return True
    soup = BeautifulSoup(html, "html.parser")
    return soup.select_one('form[name="captcha"]') is not None


def _source_for(url: str) -> str:
    host = (urlparse(url).netloc or "").lower()
    if "amazon." in host:
        return "amazon"
    if "etsy." in host:
        return "etsy"
    return "other"


def _clean_price(price: Any) -> str:
    if price is None or price == "":
        return PRICE_NOT_FOUND
    return re.sub(r"[$,]", "", str(price)).strip() or PRICE_NOT_FOUND


def _captcha_product(url: str) -> Product:
    return Product(
        id=hashlib.sha1(url.encode()).hexdigest(),
        title="CAPTCHA Detected",
        description="The scraper was blocked by a CAPTCHA. Please try again later.",
        price=PRICE_NOT_FOUND,
        image_url=None,
        url=url,
        source=_source_for(url),
    )


def _product_from_json(url: str, data: Dict[str, Any]) -> Product:
    description = DESCRIPTION_NOT_FOUND
    if data.get("small_description"):
        description = str(data["small_description"]).strip()
    elif isinstance(data.get("feature_bullets"), list) and data["feature_bullets"]:
        description = " ".join(str(b).strip() for b in data["feature_bullets"][:2])

    images = data.get("images")
    image = images[0] if isinstance(images, list) and images else None

    metadata = {}
    if data.get("brand"):
        metadata["brand"] = data["brand"]
    if data.get("availability_status"):
        metadata["availability"] = data["availability_status"]
    if data.get("list_price"):
        metadata["originalPrice"] = _clean_price(data["list_price"])

    return Product(
        id=hashlib.sha1(url.encode()).hexdigest(),
        title=(data.get("name") or TITLE_NOT_FOUND).strip(),
        description=description,
        price=_clean_price(data.get("pricing")),
        image_url=image,
        url=url,
        source=_source_for(url),
        rating=data.get("average_rating"),
        reviews=data.get("total_reviews"),
        metadata=metadata,
    )


def _meta(soup: BeautifulSoup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def _product_from_html(url: str, html: str) -> Product:
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.select_one("#productTitle")
    if title_tag is not None:
        title = title_tag.get_text(strip=True)
    else:
        title = _meta(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else "")

    bullets = soup.select("div#feature-bullets ul li")
    if bullets:
        description = " ".join(li.get_text(" ", strip=True) for li in bullets[:2])
    else:
        description = _meta(soup, "og:description") or _meta(soup, "description") or ""

    price_tag = soup.select_one(".a-price .a-offscreen") or soup.select_one("#priceblock_ourprice")
    if price_tag is not None:
        price = price_tag.get_text(strip=True)
    else:
        price = _meta(soup, "product:price:amount")

    image = None
    img = soup.select_one("#landingImage")
    if img is not None:
        image = img.get("data-old-hires") or img.get("src")
    if not image:
        image = _meta(soup, "og:image")

    return Product(
        id=hashlib.sha1(url.encode()).hexdigest(),
        title=title or TITLE_NOT_FOUND,
        description=description or DESCRIPTION_NOT_FOUND,
        price=_clean_price(price),
        image_url=image,
        url=url,
        source=_source_for(url),
    )


def scrape_product_info(url: str) -> Optional[Product]:
    """
    Best-effort product lookup for a product page URL. Returns None on any
    failure; a blocked page yields a "CAPTCHA Detected" product.
    """
    url = (url or "").strip()
    if not url:
        return None
    if not SCRAPER_API_KEY:
        logger.warning("SCRAPER_API_KEY is not set; cannot scrape %s", url)
        return None

    logger.info("Scraping product info for %s", url)
    try:
        resp = _fetch(url)
    except RetryError as e:
        logger.error("Scraper request failed for %s after retries: %s", url, e)
        return None
    except requests.RequestException as e:
        logger.error("Scraper request threw for %s: %s", url, e)
        return None

    content_type = (resp.headers.get("Content-Type") or "").lower()
    text = resp.text or ""

    if "json" in content_type or text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            product = _product_from_json(url, data)
            logger.debug("Scraped (json) %s: %s", url, product)
            return product

    if looks_like_captcha_or_block(text):
        logger.warning("CAPTCHA or block page detected for %s", url)
        return _captcha_product(url)

    product = _product_from_html(url, text)
    logger.debug("Scraped (html) %s: %s", url, product)
    return product
