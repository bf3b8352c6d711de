from datetime import datetime
from uuid import UUID, uuid4


COLLECTIONS = ("users", "saved_ads", "jobs", "properties", "vehicles", "apparel", "food", "home_goods")


class InMemoryStore:
    def __init__(self) -> None:
        self.collections: dict[str, dict[UUID, dict]] = {}
        self.reset()

    def reset(self) -> None:
        self.collections = {name: {} for name in COLLECTIONS}

    def collection(self, name: str) -> dict[UUID, dict]:
        if name not in self.collections:
            self.collections[name] = {}
        return self.collections[name]

    @staticmethod
    def make_id() -> UUID:
        return uuid4()

    @staticmethod
    def now() -> datetime:
        # Server-local wall clock; quota windows and notification days use it.
        return datetime.now()


store = InMemoryStore()
