from pydantic import BaseModel, Field


class CardType(BaseModel):
    id: str
    issuer: str
    name: str
    points_currency: str = "points"
    available_categories: list[str] = Field(default_factory=list)
    max_categories_selectable: int | None = None


class CardCatalog:
    """Card types keyed by their id, built once from catalog data."""

    def __init__(self, card_types: list[CardType]):
        self._by_id = {card.id: card for card in card_types}

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, card_type_id: str) -> CardType | None:
        return self._by_id.get(card_type_id)

    def find(self, issuer: str, name: str) -> CardType | None:
        issuer_key, name_key = issuer.strip().lower(), name.strip().lower()
        for card in self._by_id.values():
            if card.issuer.lower() == issuer_key and card.name.lower() == name_key:
                return card
        return None

    def by_issuer(self, issuer: str) -> list[CardType]:
        issuer_key = issuer.strip().lower()
        return [card for card in self._by_id.values() if card.issuer.lower() == issuer_key]

    def all(self) -> list[CardType]:
        return list(self._by_id.values())
