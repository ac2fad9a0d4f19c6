"""Default policy table for the order service.

Entries are kept in registration order. `listOrders` is registered twice and
the later (30, 0.5) policy wins.
"""

from typing import Any, List, Tuple

METHOD_GET_ORDER = 'getOrder'
METHOD_LIST_ORDERS = 'listOrders'
METHOD_LIST_ORDERS_BY_NEXT_TOKEN = 'listOrdersByNextToken'

ORDER_SERVICE_POLICIES: List[Tuple[str, Any]] = [
    (METHOD_GET_ORDER, (6, 0.015)),
    (METHOD_LIST_ORDERS, (6, 0.015)),
    (METHOD_LIST_ORDERS_BY_NEXT_TOKEN, (None, None, None, METHOD_LIST_ORDERS)),
    (METHOD_LIST_ORDERS, (30, 0.5)),  # 30 burst, 1 every 2 seconds
]
