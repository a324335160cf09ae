"""邮件发送抽象层

定义外发邮件的统一格式和发送器基类。
每个发送器通过一种传输方式（SMTP、日志等）投递 EmailMessage。

核心概念：
- EmailMessage: 统一外发邮件（系统 -> 顾客）
- SendResult: 各发送器返回的投递结果
- EmailDispatcher: 发送器基类
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from config.settings import local_now


@dataclass
class EmailMessage:
    """统一外发邮件

    Attributes:
        to: 收件地址。
        subject: 邮件主题。
        html: HTML 正文。
        text: 纯文本正文。
        tags: 自由格式的元数据（任务名、支付记录ID等）。
    """
    to: str
    subject: str
    html: str
    text: str
    tags: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """投递结果

    Attributes:
        success: 传输层是否接受了邮件。
        message_id: 传输层分配的标识（如有）。
        error: 失败原因。
        sent_at: 尝试投递的时间。
    """
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    sent_at: datetime = field(default_factory=local_now)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error)


class EmailDispatcher(ABC):
    """邮件发送器基类

    每种传输方式实现 ``send``。普通的投递失败通过返回的 SendResult 报告，
    不应抛出异常。
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def send(self, message: EmailMessage) -> SendResult:
        """投递一封邮件

        Args:
            message: 要发送的邮件。

        Returns:
            投递结果。
        """
        pass

    def send_email(self, to: str, subject: str, html: str, text: str,
                   **tags) -> SendResult:
        """构造 EmailMessage 并发送的便捷方法"""
        return self.send(EmailMessage(to=to, subject=subject, html=html,
                                      text=text, tags=tags))
