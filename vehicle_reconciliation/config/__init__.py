from vehicle_reconciliation.config.settings import ApplicationSettings, get_settings

__all__ = ["ApplicationSettings", "get_settings"]
