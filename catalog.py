#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Static catalogs of physical products and paywalled yoga classes.

Products are sold through Stripe (hosted checkout and ACP); classes are
unlocked with x402 payments.
"""

import os
import re
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel

USDC_BASE_UNITS = 1_000_000

# Full videos stop after this many seconds.
FULL_VIDEO_END_SECONDS = 20


class Product(BaseModel):
  id: str
  name: str
  price_cents: int
  price_display: str
  product_display_url: str


class YogaClass(BaseModel):
  id: str
  title: str
  price: str
  price_usdc: int
  preview_url: str
  full_url: str

  @property
  def price_in_base_units(self) -> int:
    return self.price_usdc * USDC_BASE_UNITS


_PRODUCTS = [
    Product(
        id="mat",
        name="Yoga Mat",
        price_cents=2999,
        price_display="$29.99",
        product_display_url="https://images.bauerhosting.com/affiliates/sites/8/2024/02/offer-2024-02-28T145108.389.jpg?auto=format&w=1440&q=80",
    ),
    Product(
        id="strap",
        name="Yoga Strap",
        price_cents=1299,
        price_display="$12.99",
        product_display_url="https://www.ob-fit.com/wp-content/uploads/2022/03/Yoga-Strap.jpg",
    ),
]

_DEFAULT_VIDEOS = {
    "1": "https://www.youtube.com/watch?v=OMu6OKF5Z1k",
    "2": "https://www.youtube.com/watch?v=ZbtVVYBLCug",
    "3": "https://www.youtube.com/watch?v=AF9d2Icl4fA",
    "4": "https://www.youtube.com/watch?v=j8bEWn2E9uo",
}

_CLASSES = [
    ("1", "Morning Flow", "$1.00", 1),
    ("2", "Power Yoga", "$2.00", 2),
    ("3", "Flexibility", "$3.00", 3),
    ("4", "Flexibility", "$3.00", 3),
]


def add_time_limit(url: str, end_seconds: int) -> str:
  """Rewrites a YouTube URL into an autoplaying embed that stops early.

  Non-YouTube URLs are returned unchanged.
  """
  if "youtube.com/watch" in url:
    match = re.search(r"[?&]v=([^&]+)", url)
    if match:
      return (
          f"https://www.youtube.com/embed/{match.group(1)}"
          f"?end={end_seconds}&autoplay=1"
      )
  if "youtube.com/embed" in url:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}end={end_seconds}&autoplay=1"
  return url


class ProductCatalog:
  """Lookup of physical products by id."""

  def __init__(self, products: Optional[List[Product]] = None):
    self._products: Dict[str, Product] = {
        p.id: p for p in (products if products is not None else _PRODUCTS)
    }

  def get(self, product_id: str) -> Optional[Product]:
    return self._products.get(product_id)

  def list(self) -> List[Product]:
    return list(self._products.values())


class ContentCatalog:
  """Lookup of yoga classes by id."""

  def __init__(self, classes: Optional[List[YogaClass]] = None):
    if classes is None:
      classes = self.build_classes({})
    self._classes: Dict[str, YogaClass] = {c.id: c for c in classes}

  @classmethod
  def from_environment(
      cls, environ: Optional[Mapping[str, str]] = None
  ) -> "ContentCatalog":
    """Builds the catalog honoring CLASS_<id>_PREVIEW_URL/_FULL_URL."""
    return cls(cls.build_classes(os.environ if environ is None else environ))

  @staticmethod
  def build_classes(environ: Mapping[str, str]) -> List[YogaClass]:
    def video_url(class_id: str, kind: str) -> str:
      base = (
          environ.get(f"CLASS_{class_id}_{kind.upper()}_URL")
          or _DEFAULT_VIDEOS.get(class_id)
          or _DEFAULT_VIDEOS["1"]
      )
      if kind == "full":
        return add_time_limit(base, FULL_VIDEO_END_SECONDS)
      return base

    return [
        YogaClass(
            id=class_id,
            title=title,
            price=price,
            price_usdc=price_usdc,
            preview_url=video_url(class_id, "preview"),
            full_url=video_url(class_id, "full"),
        )
        for class_id, title, price, price_usdc in _CLASSES
    ]

  def get(self, class_id: str) -> Optional[YogaClass]:
    return self._classes.get(class_id)

  def list(self) -> List[YogaClass]:
    return list(self._classes.values())
