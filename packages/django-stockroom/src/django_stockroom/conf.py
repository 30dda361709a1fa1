"""Django Stockroom configuration.

All settings can be overridden in your Django settings.py.

Example:
    # settings.py
    STOCKROOM_FULFILLMENT_POLICY = 'all_or_nothing'
    STOCKROOM_MERCADOPAGO_ACCESS_TOKEN = env('MP_ACCESS_TOKEN')
    STOCKROOM_DISCORD_WEBHOOK_URL = env('DISCORD_WEBHOOK_URL')
"""

from django.conf import settings


DEFAULTS = {
    # Fulfillment
    "FULFILLMENT_POLICY": "best_effort",
    "PRODUCT_CACHE_TTL": 60,
    "CACHE_ALIAS": "default",
    # Stock ledger
    "IMPORT_BATCH_SIZE": 100,
    # Payments
    "PAYMENT_WINDOW_MINUTES": 30,
    "STATUS_CHECK_INTERVAL": 10,
    "MERCADOPAGO_ACCESS_TOKEN": "",
    "MERCADOPAGO_API_URL": "https://api.mercadopago.com",
    "NOTIFICATION_URL": "",
    # Notifications
    "DISCORD_WEBHOOK_URL": "",
    # Cron endpoint
    "CRON_API_KEY": "",
}


def get_setting(name: str, default=None):
    """Get a setting with STOCKROOM_ prefix.

    Read at call time so tests can override settings per test.
    """
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"STOCKROOM_{name}", default)


def is_discord_enabled() -> bool:
    """Check if Discord order notifications are configured."""
    return bool(get_setting("DISCORD_WEBHOOK_URL"))


# =============================================================================
# DEFAULT SETTINGS REFERENCE
# =============================================================================

# STOCKROOM_FULFILLMENT_POLICY = 'best_effort'  # or 'all_or_nothing'
# STOCKROOM_PAYMENT_WINDOW_MINUTES = 30  # PIX expiry and sweep window
# STOCKROOM_STATUS_CHECK_INTERVAL = 10  # seconds between status polls per order
# STOCKROOM_PRODUCT_CACHE_TTL = 60  # seconds
# STOCKROOM_CACHE_ALIAS = 'default'
# STOCKROOM_IMPORT_BATCH_SIZE = 100
# STOCKROOM_MERCADOPAGO_ACCESS_TOKEN = ''  # REQUIRED for payments
# STOCKROOM_MERCADOPAGO_API_URL = 'https://api.mercadopago.com'
# STOCKROOM_NOTIFICATION_URL = ''  # webhook URL sent along with PIX payments
# STOCKROOM_DISCORD_WEBHOOK_URL = ''  # Optional - disabled when empty
# STOCKROOM_CRON_API_KEY = ''  # Optional - guards the expiry endpoint
