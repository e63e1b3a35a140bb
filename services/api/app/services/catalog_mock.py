from __future__ import annotations

from services.api.app.services.catalog_base import CatalogItem

_DEFAULT_ITEMS = (
    CatalogItem(id="1", name="Jesa Milk (2L)", category="Dairy", price=5000, available=True),
    CatalogItem(
        id="2", name="Nido Milk Powder (500g)", category="Dairy", price=18000, available=True
    ),
    CatalogItem(id="3", name="Coca-Cola (330ml)", category="Drinks", price=1500, available=True),
    CatalogItem(
        id="4", name="Lipton Black Tea (50g)", category="Drinks", price=3500, available=True
    ),
    CatalogItem(
        id="5", name="Detergent Powder (2kg)", category="Household", price=12000, available=True
    ),
    CatalogItem(id="6", name="Bread Loaf", category="Bakery", price=4000, available=True),
    CatalogItem(id="7", name="Toothpaste", category="Personal Care", price=6000, available=True),
    CatalogItem(id="8", name="Sugar (1kg)", category="Pantry", price=5500, available=False),
)


class MockCatalogClient:
    """In-memory catalog with case-insensitive matching.

    Exact name matches win; otherwise any item whose name contains the query (or the other
    way round) is returned, in catalog order.
    """

    source = "CATALOG_MOCK"

    def __init__(self, items: tuple[CatalogItem, ...] | list[CatalogItem] = _DEFAULT_ITEMS) -> None:
        self._items = list(items)

    def query(self, text: str, max_results: int = 1) -> list[CatalogItem]:
        needle = (text or "").strip().lower()
        if not needle or max_results < 1:
            return []

        exact = [i for i in self._items if i.name.lower() == needle]
        if exact:
            return exact[:max_results]

        fuzzy = [
            i for i in self._items if needle in i.name.lower() or i.name.lower() in needle
        ]
        return fuzzy[:max_results]

    def query_all(self) -> list[CatalogItem]:
        return list(self._items)
