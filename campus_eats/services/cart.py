# campus_eats/services/cart.py
from typing import Any, Dict, Sequence, Union
from pydantic import ValidationError as SchemaError
from ..exceptions import ValidationError
from ..models.order import OrderItemRequest
from ..utils.formatters import schema_errors

def merge_cart_lines(items: Sequence[Union[OrderItemRequest, Dict[str, Any]]]) -> Dict[str, int]:
    """Validate cart lines and add up quantities per menu item"""
    if not isinstance(items, (list, tuple)):
        raise ValidationError("Items must be a list of cart lines")
    if not items:
        raise ValidationError("Order must contain at least one item")

    quantities: Dict[str, int] = {}
    for raw in items:
        try:
            item = raw if isinstance(raw, OrderItemRequest) else OrderItemRequest.model_validate(raw)
        except SchemaError as e:
            raise ValidationError("Invalid order item", {"errors": schema_errors(e)}) from e
        quantities[item.menu_item_id] = quantities.get(item.menu_item_id, 0) + item.quantity
    return quantities
