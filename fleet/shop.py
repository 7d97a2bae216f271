"""ServiceShop class for the list of known repair shops."""

from typing import Optional


class ServiceShop:
    """A repair shop a plan can be sent to."""

    def __init__(
        self,
        id: str,
        name: str,
        contacts: str,
        rating: int = 5,
        created_at: Optional[str] = None,
    ):
        self.id = id
        self.name = name
        self.contacts = contacts
        self.rating = rating
        self.created_at = created_at
