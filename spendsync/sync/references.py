"""Category/account lookup for one merge pass.

Budgets and transactions reference categories and accounts by id. A
reference that does not resolve against the local store is dropped to None
rather than left dangling.
"""

from typing import Dict, Iterable, Optional

from spendsync.types import Account, Category, Entity


class ReferenceMaps:
    """id -> entity maps for categories and accounts."""

    def __init__(
        self,
        categories: Optional[Dict[str, Category]] = None,
        accounts: Optional[Dict[str, Account]] = None,
    ):
        self.categories: Dict[str, Category] = categories or {}
        self.accounts: Dict[str, Account] = accounts or {}

    @classmethod
    def build(cls, categories: Iterable[Category], accounts: Iterable[Account]) -> "ReferenceMaps":
        return cls(
            categories={c.id: c for c in categories},
            accounts={a.id: a for a in accounts},
        )

    def resolve_category(self, category_id: Optional[str]) -> Optional[str]:
        if category_id and category_id in self.categories:
            return category_id
        return None

    def resolve_account(self, account_id: Optional[str]) -> Optional[str]:
        if account_id and account_id in self.accounts:
            return account_id
        return None

    def register(self, entity: Entity) -> None:
        """Make a category/account inserted during this pass resolvable."""
        if isinstance(entity, Category):
            self.categories[entity.id] = entity
        elif isinstance(entity, Account):
            self.accounts[entity.id] = entity
