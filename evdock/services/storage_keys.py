# Every service owns its keys; keep them all here so they cannot collide
INVENTORY = "inventory"
ORDERS = "orders"
ALLOCATIONS = "allocations"
WAREHOUSES = "warehouses"
ALLOCATION_INTENTS = "allocation_intents"
DEALER_CATALOG = "dealer_catalog"
DEALER_RETAIL_PRICES = "dealer_retail_prices"
DEALERS = "dealers"
PROMOTIONS = "dealer_promotions_data"
