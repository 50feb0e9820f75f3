from aigateway.models.usage_log import UsageLog

__all__ = ["UsageLog"]
