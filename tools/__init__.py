from .integration_status import get_calendar_status, get_gmail_status

__all__ = ["get_gmail_status", "get_calendar_status"]
