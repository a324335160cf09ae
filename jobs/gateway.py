"""支付网关 - 供自动扣款任务使用。

仅内置模拟网关，接入真实支付渠道时实现 PaymentGateway.charge 即可。
"""
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Set

from loguru import logger

from .types import ChargeError


@dataclass
class ChargeRequest:
    payment_id: int
    customer_id: int
    amount: Decimal
    payment_method: str
    description: str = ""


@dataclass
class ChargeResult:
    transaction_reference: str
    amount: Decimal


class PaymentGateway(ABC):
    """支付网关基类"""

    @abstractmethod
    def charge(self, request: ChargeRequest) -> ChargeResult:
        """执行扣款

        Raises:
            ChargeError: 扣款被拒绝或失败时抛出。
        """
        pass


class SimulatedPaymentGateway(PaymentGateway):
    """模拟网关，可选延迟后批准所有扣款

    Args:
        delay_seconds: 模拟的处理耗时。
        fail_payment_ids: 需要拒绝扣款的支付记录ID。
    """

    def __init__(self, delay_seconds: float = 0.0,
                 fail_payment_ids: Optional[Set[int]] = None):
        self.delay_seconds = delay_seconds
        self.fail_payment_ids = set(fail_payment_ids or [])
        self.charges: List[ChargeRequest] = []
        self._lock = threading.Lock()

    def charge(self, request: ChargeRequest) -> ChargeResult:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if request.payment_id in self.fail_payment_ids:
            raise ChargeError(f"Charge declined for payment {request.payment_id}")
        with self._lock:
            self.charges.append(request)
        reference = f"sim-{uuid.uuid4().hex[:16]}"
        logger.info(
            f"Simulated charge {reference} of {request.amount} for payment {request.payment_id}"
        )
        return ChargeResult(transaction_reference=reference, amount=request.amount)
