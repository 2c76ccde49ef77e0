# campus_eats/services/price_history_service.py
import logging
from decimal import Decimal
from typing import List, Optional, Union
from ..models.price_history import PriceChangeType, PriceHistory

class PriceHistoryRecorder:
    """Append-only audit trail of menu price changes"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def record_price_change(self, uow, menu_item_id: str, old_price: Decimal,
                                  new_price: Decimal,
                                  change_type: Union[PriceChangeType, str],
                                  changed_by: str, cafeteria_id: str,
                                  reason: Optional[str] = None) -> PriceHistory:
        """Append one row inside the caller's unit of work.

        The row commits together with the price update that produced it.
        """
        entry = await uow.price_history.append(
            menu_item_id=menu_item_id,
            old_price=old_price,
            new_price=new_price,
            change_type=PriceChangeType(change_type),
            changed_by=changed_by,
            cafeteria_id=cafeteria_id,
            change_reason=reason
        )
        self.logger.info(
            f"Price of {menu_item_id} changed {old_price} -> {new_price} "
            f"({entry.change_type.value}) by {changed_by}"
        )
        return entry

    async def get_item_history(self, menu_item_id: str, limit: int = 50) -> List[PriceHistory]:
        async with self.db.unit_of_work() as uow:
            return await uow.price_history.list_for_item(menu_item_id, limit)

    async def get_cafeteria_history(self, cafeteria_id: str, limit: int = 100) -> List[PriceHistory]:
        async with self.db.unit_of_work() as uow:
            return await uow.price_history.list_for_cafeteria(cafeteria_id, limit)
