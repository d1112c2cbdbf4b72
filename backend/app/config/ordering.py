"""Domain constants for pricing and uploads."""
from decimal import Decimal

# Fixed markup applied when a supplier quote prices an order.
SUPPLIER_MARGIN_PERCENT = Decimal('20')

# Numeric(10, 2) ceiling for every stored money column.
PRICE_CEILING = Decimal('99999999.99')

# Accepted difference between a reported payment and the order final price.
PAYMENT_AMOUNT_TOLERANCE = Decimal('0.01')

ATTACHMENT_TYPES = ('image/png', 'image/jpeg', 'application/zip', 'application/pdf')
ATTACHMENT_MAX_BYTES = 10 * 1024 * 1024

COMPLETION_IMAGE_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/gif', 'image/webp')
COMPLETION_IMAGE_MAX_BYTES = 5 * 1024 * 1024

EXTENSION_TYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'zip': 'application/zip',
    'pdf': 'application/pdf',
}
