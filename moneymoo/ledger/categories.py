"""
Category Service

Categories are labels. Transactions store the category name as text, so
deleting a category never touches existing transactions.
"""

from typing import Any, Mapping, Optional
from uuid import UUID

from moneymoo.audit import AuditLogger, create_correlation_id
from moneymoo.exceptions import NotFoundError, ValidationError
from moneymoo.ledger.common import require_owned
from moneymoo.models.audit import AuditEventType
from moneymoo.models.ledger import Category, TransactionType
from moneymoo.services.storage import LedgerStorageInterface
from moneymoo.validation import ValidationGate


class CategoryService:
    def __init__(
        self,
        storage: LedgerStorageInterface,
        gate: ValidationGate,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._gate = gate
        self._audit = audit_logger or AuditLogger()

    async def create(self, owner_id: str, payload: Mapping[str, Any]) -> Category:
        correlation_id = create_correlation_id()
        try:
            self._gate.check(payload, self._gate.category_rules, "create_category")
        except ValidationError as e:
            await self._audit.log_validation_failed(owner_id, "create_category", e.errors, correlation_id)
            raise

        cleaned = self._gate.sanitize_fields(payload, ("name",))
        category = Category(
            owner_id=owner_id,
            name=cleaned["name"],
            type=TransactionType(getattr(cleaned["type"], "value", cleaned["type"])),
        )
        stored = await self._storage.save_category(category)

        await self._audit.log_entity_changed(
            AuditEventType.CATEGORY_CREATED,
            owner_id,
            "category",
            stored.id,
            f"Category {stored.name} created",
            details={"type": stored.type.value},
            correlation_id=correlation_id,
        )
        return stored

    async def list_categories(
        self,
        owner_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        return await self._storage.list_categories(owner_id, category_type)

    async def delete(self, owner_id: str, category_id: UUID) -> None:
        category = await self._storage.get_category(category_id)
        require_owned(category, owner_id, "Category", category_id)

        if not await self._storage.delete_category(category_id):
            raise NotFoundError(f"Category not found: {category_id}", entity_id=category_id)

        await self._audit.log_entity_changed(
            AuditEventType.CATEGORY_DELETED,
            owner_id,
            "category",
            category_id,
            f"Category {category.name} deleted",
            correlation_id=create_correlation_id(),
        )
