from .base import EmailDispatcher, EmailMessage, SendResult
from .smtp import SmtpEmailDispatcher, LogEmailDispatcher, create_dispatcher

__all__ = [
    "EmailDispatcher",
    "EmailMessage",
    "SendResult",
    "SmtpEmailDispatcher",
    "LogEmailDispatcher",
    "create_dispatcher",
]
