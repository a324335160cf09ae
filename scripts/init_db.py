"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from jobs.utils import DEFAULT_REMINDER_DAYS, DEFAULT_OVERDUE_DAYS
from loguru import logger


def init_database(database_url: str = None):
    """创建数据表并写入默认支付配置"""
    logger.info("Initializing database...")

    db = DatabaseManager(database_url)

    logger.info("Creating tables...")
    db.create_tables()

    if db.get_current_payment_config() is None:
        logger.info("Inserting default payment configuration...")
        config = db.save_payment_config(
            is_enabled=False,
            monthly_payment_day=1,
            reminder_days=list(DEFAULT_REMINDER_DAYS),
            overdue_check_days=list(DEFAULT_OVERDUE_DAYS),
            excluded_customers=[],
            auto_pay_enabled=False,
            notes="Default configuration; enable it once customers and bookings are loaded",
        )
        logger.info(f"Created payment configuration {config['id']} (disabled)")
    else:
        logger.info("Payment configuration already exists, keeping it")

    db.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database(sys.argv[1] if len(sys.argv) > 1 else None)
