# campus_eats/services/category_service.py
import logging
import uuid
from typing import Any, Dict, List, Optional
from pydantic import ValidationError as SchemaError
from ..exceptions import NotFound, ValidationError
from ..models.menu import Category, CategoryInput, CategoryUpdate
from ..utils.formatters import schema_errors

class CategoryService:
    """Menu categories per cafeteria"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def list_categories(self, cafeteria_id: str) -> List[Category]:
        async with self.db.unit_of_work() as uow:
            return await uow.categories.list_for_cafeteria(cafeteria_id)

    async def create_category(self, cafeteria_id: str, category_data: Dict[str, Any]) -> Category:
        """Add a category; names are unique within a cafeteria"""
        try:
            data = CategoryInput.model_validate(category_data)
        except SchemaError as e:
            raise ValidationError("Invalid category", {"errors": schema_errors(e)}) from e

        async with self.db.unit_of_work() as uow:
            category = await uow.categories.insert(
                str(uuid.uuid4()), cafeteria_id, data.name, data.description
            )

        self.logger.info(f"Category {category.category_id} '{category.name}' created for {cafeteria_id}")
        return category

    async def update_category(self, category_id: str, update_data: Dict[str, Any],
                              actor_cafeteria_id: Optional[str] = None) -> Category:
        try:
            changes = CategoryUpdate.model_validate(update_data).model_dump(exclude_unset=True)
        except SchemaError as e:
            raise ValidationError("Invalid category", {"errors": schema_errors(e)}) from e
        if changes.get('name', '') is None:
            changes.pop('name')

        async with self.db.unit_of_work() as uow:
            await self._get_owned(uow, category_id, actor_cafeteria_id)
            category = await uow.categories.update(category_id, changes)

        self.logger.info(f"Category {category_id} updated")
        return category

    async def delete_category(self, category_id: str,
                              actor_cafeteria_id: Optional[str] = None) -> None:
        """Delete an empty category"""
        async with self.db.unit_of_work() as uow:
            await self._get_owned(uow, category_id, actor_cafeteria_id)
            await uow.categories.delete(category_id)

        self.logger.info(f"Category {category_id} deleted")

    @staticmethod
    async def _get_owned(uow, category_id: str, actor_cafeteria_id: Optional[str]) -> Category:
        category = await uow.categories.get(category_id)
        if not category:
            raise NotFound(f"Category {category_id} not found")
        if actor_cafeteria_id is not None and category.cafeteria_id != actor_cafeteria_id:
            raise ValidationError("Category belongs to another cafeteria")
        return category
