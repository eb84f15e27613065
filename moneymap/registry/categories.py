"""Expense categories: the built-in defaults plus each family's own."""

from typing import Optional

from moneymap.models.ledger import DEFAULT_CATEGORIES, CustomCategory
from moneymap.models.validation import ValidationIssue
from moneymap.services.storage import DocumentStore, Query
from moneymap.validation import InvalidInputError


class CategoryRegistry:

    def __init__(self, store: DocumentStore):
        self._store = store

    async def list_custom(self, family_id: str) -> list[CustomCategory]:
        documents = await self._store.query(
            Query.where(CustomCategory.collection, familyId=family_id).ordered("createdAt")
        )
        return [CustomCategory.from_document(doc) for doc in documents]

    async def list_categories(self, family_id: str) -> list[str]:
        """Defaults first, then custom categories in creation order."""
        custom = [c.name for c in await self.list_custom(family_id)]
        return list(DEFAULT_CATEGORIES) + [name for name in custom if name not in DEFAULT_CATEGORIES]

    async def add_category(self, family_id: str, name: Optional[str], actor_id: str) -> CustomCategory:
        """
        Raises:
            InvalidInputError: If the name is blank or already taken
        """
        name = (name or "").strip()
        if not name:
            raise InvalidInputError([ValidationIssue(
                field="name",
                issue_type="missing",
                message="Category name is required",
            )])

        existing = {c.casefold() for c in await self.list_categories(family_id)}
        if name.casefold() in existing:
            raise InvalidInputError([ValidationIssue(
                field="name",
                issue_type="duplicate",
                message=f"Category already exists: {name}",
            )])

        category = CustomCategory(family_id=family_id, name=name, created_by=actor_id)
        await self._store.create(category.collection, category.to_document(), doc_id=category.id)
        return category

    async def delete_category(self, category_id: str) -> bool:
        # Existing expenses keep their category text
        return await self._store.delete(CustomCategory.collection, category_id)
