from __future__ import annotations
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .errors import GatewayError, NotFoundError, ValidationError
from .gateway import Gateway, Record
from .listing import ListSpec, equals
from .notifications import Notifier
from .schemas import (PRODUCT_IMAGES, PRODUCT_MESSAGES, PRODUCTS, Product, ProductIn,
                      validate_fields)

logger = logging.getLogger(__name__)


class CatalogLoader:
    """Loads the public product list, oldest first."""

    def __init__(self, gateway: Gateway, notifier: Optional[Notifier] = None):
        self.gateway = gateway
        self.notifier = notifier or Notifier()

    async def load(self) -> List[Product]:
        try:
            result = await self.gateway.select(PRODUCTS, order_by="created_at")
        except GatewayError:
            logger.exception("Error fetching products")
            self.notifier.error("Failed to load products")
            return []
        return [Product.model_validate(row) for row in result.rows]

    async def get(self, product_id: str) -> Product:
        return Product.model_validate(await self.gateway.get(PRODUCTS, product_id))


@dataclass
class ImageUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None

    def storage_name(self) -> str:
        ext = os.path.splitext(self.filename)[1].lstrip(".").lower() or "bin"
        return f"{uuid.uuid4().hex}.{ext}"


class ProductManager:
    def __init__(self, gateway: Gateway, notifier: Optional[Notifier] = None):
        self.gateway = gateway
        self.notifier = notifier or Notifier()

    async def _upload(self, image: ImageUpload) -> str:
        return await self.gateway.upload_file(
            PRODUCT_IMAGES, image.storage_name(), image.data, image.content_type
        )

    async def create(self, data: Mapping[str, Any], image: Optional[ImageUpload]) -> Optional[Record]:
        payload = validate_fields(ProductIn, data, PRODUCT_MESSAGES)
        if image is None or not image.data:
            self.notifier.error("Please upload an image for the new product.")
            raise ValidationError({"image": "Please upload an image for the new product."})
        try:
            image_url = await self._upload(image)
            rows = await self.gateway.insert(PRODUCTS, {**payload.model_dump(), "image_url": image_url})
        except GatewayError:
            logger.exception("Error saving product %r", payload.name)
            self.notifier.error("Failed to save product")
            return None
        self.notifier.success("Product created successfully")
        return rows[0]

    async def update(self, product_id: str, data: Mapping[str, Any],
                     image: Optional[ImageUpload] = None) -> Optional[Record]:
        payload = validate_fields(ProductIn, data, PRODUCT_MESSAGES)
        try:
            current = await self.gateway.get(PRODUCTS, product_id)
            image_url = current.get("image_url", "")
            if image is not None and image.data:
                image_url = await self._upload(image)
            changes = {**payload.model_dump(), "image_url": image_url}
            await self.gateway.update(PRODUCTS, changes, {"id": product_id})
        except NotFoundError:
            raise
        except GatewayError:
            logger.exception("Error saving product %s", product_id)
            self.notifier.error("Failed to save product")
            return None
        self.notifier.success("Product updated successfully")
        return {**current, **changes}

    async def delete(self, product_id: str) -> bool:
        try:
            product = await self.gateway.get(PRODUCTS, product_id)
        except NotFoundError:
            raise
        except GatewayError:
            logger.exception("Error deleting product %s", product_id)
            self.notifier.error("Failed to delete product")
            return False

        image_url = product.get("image_url")
        if image_url:
            try:
                await self.gateway.remove_file(PRODUCT_IMAGES, self.gateway.path_from_url(image_url))
            except GatewayError:
                # the row still goes even if the image is already gone
                logger.warning("Error deleting image from storage for product %s", product_id, exc_info=True)

        try:
            await self.gateway.delete(PRODUCTS, {"id": product_id})
        except GatewayError:
            logger.exception("Error deleting product %s", product_id)
            self.notifier.error("Failed to delete product")
            return False
        self.notifier.success("Product deleted successfully")
        return True


PRODUCT_LIST = ListSpec(
    table=PRODUCTS,
    label="products",
    order_by="created_at",
    descending=True,
    search_fields=("name", "description"),
    filters={"category": equals("category")},
)
