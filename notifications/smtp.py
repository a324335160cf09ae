"""邮件发送器

- SmtpEmailDispatcher: 通过 SMTP 中继投递
- LogEmailDispatcher: 将邮件写入日志并保存在内存中，
  用于未配置 SMTP 主机时以及测试
"""
import smtplib
import threading
import uuid
from email.message import EmailMessage as MimeMessage
from email.utils import make_msgid
from typing import List, Optional

from loguru import logger

from config.settings import Settings, settings as default_settings
from .base import EmailDispatcher, EmailMessage, SendResult


class SmtpEmailDispatcher(EmailDispatcher):
    """SMTP 发送器

    Args:
        host: SMTP 主机。
        port: SMTP 端口。
        username: 登录用户名，为空时不登录。
        password: 登录密码。
        use_tls: 是否使用 STARTTLS 升级连接。
        sender: 发件地址。
        timeout: 套接字超时（秒）。
    """

    def __init__(self, host: str, port: int = 587, username: str = "",
                 password: str = "", use_tls: bool = True,
                 sender: str = "payments@localhost", timeout: float = 10.0):
        super().__init__("smtp")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def _build(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["From"] = self.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid()
        mime.set_content(message.text)
        mime.add_alternative(message.html, subtype="html")
        return mime

    def send(self, message: EmailMessage) -> SendResult:
        if not message.to:
            return SendResult.failed("Recipient address is empty")

        mime = self._build(message)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(mime)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {message.to} failed: {e}")
            return SendResult.failed(str(e))

        logger.info(f"Email '{message.subject}' sent to {message.to}")
        return SendResult(success=True, message_id=mime["Message-ID"])


class LogEmailDispatcher(EmailDispatcher):
    """只记录日志的发送器

    已发送的邮件保存在 ``outbox`` 中，便于调用方检查。
    """

    def __init__(self):
        super().__init__("log")
        self.outbox: List[EmailMessage] = []
        self._lock = threading.Lock()

    def send(self, message: EmailMessage) -> SendResult:
        if not message.to:
            return SendResult.failed("Recipient address is empty")
        with self._lock:
            self.outbox.append(message)
        logger.info(f"[EMAIL] to={message.to} subject='{message.subject}'")
        return SendResult(success=True, message_id=f"log-{uuid.uuid4().hex[:12]}")


def create_dispatcher(config: Optional[Settings] = None) -> EmailDispatcher:
    """按配置创建发送器

    未设置 SMTP 主机时使用 LogEmailDispatcher。
    """
    config = config or default_settings
    if not config.smtp_host:
        logger.warning("SMTP host not configured, emails will only be logged")
        return LogEmailDispatcher()
    return SmtpEmailDispatcher(
        host=config.smtp_host,
        port=config.smtp_port,
        username=config.smtp_username,
        password=config.smtp_password,
        use_tls=config.smtp_use_tls,
        sender=config.email_from,
        timeout=config.email_timeout_seconds,
    )
