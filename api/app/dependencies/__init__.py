"""FastAPI dependencies for the Cult of Trogdor API."""

from app.dependencies.auth import get_current_account, verify_cron_secret

__all__ = ["get_current_account", "verify_cron_secret"]
