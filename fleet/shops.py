"""Service shop list management."""

import logging
from typing import List, Optional

from .calculations import now_iso
from .data_service import DataService, new_id
from .errors import NotFoundError, ValidationError
from .shop import ServiceShop

logger = logging.getLogger(__name__)


class ShopManager:
    """CRUD over the known service shops. Plans refer to shops by name only."""

    def __init__(self, data: DataService):
        self.data = data

    def list_shops(self) -> List[ServiceShop]:
        return sorted(self.data.list_shops(), key=lambda s: (-s.rating, s.name.lower()))

    def get_shop(self, shop_id: str) -> ServiceShop:
        for shop in self.data.list_shops():
            if shop.id == shop_id:
                return shop
        raise NotFoundError(f"Service shop '{shop_id}' not found")

    def save_shop(
        self,
        name: str,
        contacts: str,
        rating: int = 5,
        shop_id: Optional[str] = None,
    ) -> ServiceShop:
        """Add a shop, or replace the one with shop_id keeping its createdAt."""
        if not (name or "").strip() or not (contacts or "").strip():
            raise ValidationError("Enter the shop name and contacts", field="name")
        if rating is None or not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")

        created_at = now_iso()
        if shop_id is not None:
            created_at = self.get_shop(shop_id).created_at or created_at
        shop = ServiceShop(
            shop_id or new_id("shop"),
            name.strip(),
            contacts.strip(),
            int(rating),
            created_at,
        )
        self.data.save_shop(shop)
        logger.info("Saved service shop %s (%s)", shop.id, shop.name)
        return shop

    def delete_shop(self, shop_id: str, selected_provider: Optional[str] = None) -> bool:
        """
        Remove a shop.

        Returns True when the editor's current service provider was this
        shop and its selection should be cleared.
        """
        shop = self.get_shop(shop_id)
        self.data.delete_shop(shop_id)
        logger.info("Deleted service shop %s", shop_id)
        return selected_provider is not None and selected_provider == shop.name
