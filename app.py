#!/usr/bin/env python3
"""租金支付任务引擎 - 应用入口

按 cron 调度运行支付任务，或执行单个操作后退出。

使用方式：
    python app.py

    # 立即运行一个任务
    python app.py --run monthly-rent-payment --input '{"month": 6, "year": 2024}'

    # 列出调度、输出健康检查或报表
    python app.py --list
    python app.py --health
    python app.py --report weekly

    # 指定数据库
    python app.py --db sqlite:///data/payments.db

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL      数据库连接地址
    TIMEZONE          调度使用的业务时区
    SMTP_HOST         SMTP 服务器，为空时邮件只写入日志
    ALERT_EMAIL       健康告警收件人
    LOG_LEVEL         日志级别（默认 INFO）
    LOG_FILE          可选的滚动日志文件
"""
import argparse
import asyncio
import json
import os
import signal
import sys

from loguru import logger


def configure_logging():
    """按配置级别输出到控制台，可选同时写入日志文件"""
    from config.settings import settings

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level.upper(),
            rotation="10 MB",
            retention=f"{settings.log_retention_days} days",
            encoding="utf-8",
        )


def build_context(db):
    """命令行操作与调度器共用的任务上下文"""
    from config.settings import settings
    from jobs.execution_log import JobLogger
    from jobs.gateway import SimulatedPaymentGateway
    from jobs.scheduling import ScheduleRegistry
    from jobs.types import JobContext
    from notifications import create_dispatcher

    return JobContext(
        db=db,
        email=create_dispatcher(settings),
        gateway=SimulatedPaymentGateway(),
        job_logger=JobLogger(db),
        schedules=ScheduleRegistry.from_config(),
        settings=settings,
    )


def _print_json(value):
    from jobs.types import to_jsonable
    print(json.dumps(to_jsonable(value), indent=2, ensure_ascii=False))


def run_once(args, db) -> int:
    """执行单个命令行操作，返回进程退出码"""
    from jobs.analytics import JobAnalytics
    from jobs.monitoring import JobMonitor
    from jobs.registry import create_default_registry
    from jobs.types import HealthLevel

    ctx = build_context(db)

    if args.list:
        _print_json(ctx.schedules.status())
        return 0

    if args.health:
        monitor = JobMonitor(db, ctx.schedules, ctx.settings, clock=ctx.clock,
                             job_logger=ctx.job_logger, email=ctx.email)
        health = monitor.perform_health_check()
        _print_json({"status": health.status, "message": health.message,
                     "timestamp": health.timestamp,
                     "issues": health.details.get("issues", [])})
        return 0 if health.status != HealthLevel.CRITICAL else 2

    if args.report:
        analytics = JobAnalytics(db, clock=ctx.clock, job_logger=ctx.job_logger)
        try:
            report = analytics.generate_report(args.report)
        except ValueError as e:
            logger.error(f"Cannot generate report: {e}")
            return 1
        _print_json(report)
        return 0

    registry = create_default_registry()
    if args.run not in registry:
        logger.error(f"Unknown job: {args.run}. Known jobs: {', '.join(registry.slugs())}")
        return 1
    try:
        payload = json.loads(args.input) if args.input else {}
    except json.JSONDecodeError as e:
        logger.error(f"Invalid --input JSON: {e}")
        return 1
    if args.force:
        payload["force_run"] = True
    if not payload and ctx.schedules.get(args.run):
        payload = dict(ctx.schedules.get(args.run).default_input)

    result = registry.run(args.run, ctx, payload)
    _print_json(result.to_dict())
    return 0 if result.success else 1


async def serve(db):
    """运行调度器直到收到 SIGINT/SIGTERM"""
    from jobs.registry import create_default_registry
    from jobs.scheduler import JobScheduler

    ctx = build_context(db)
    scheduler = JobScheduler(create_default_registry(), ctx.schedules, ctx)
    scheduler.register_all()
    scheduler.start()

    print()
    print("=" * 60)
    print("  Rent payment job engine started")
    print(f"  Database: {db.database_url}")
    print(f"  Timezone: {ctx.settings.timezone}")
    for row in scheduler.get_job_status():
        next_run = row["next_run_time"]
        print(f"  - {row['slug']:<30} {next_run or 'paused'}")
    print("=" * 60)
    print("  Press Ctrl+C to stop")
    print()

    # 通过事件循环处理信号，以便唤醒等待
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    _shutdown_requested = False

    def signal_handler(signum):
        nonlocal _shutdown_requested
        if _shutdown_requested:
            # 第二次信号：强制退出
            logger.warning("Signal received again, forcing exit...")
            for task in asyncio.all_tasks(loop):
                task.cancel()
            return
        _shutdown_requested = True
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await shutdown_event.wait()
    finally:
        scheduler.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Rent payment job engine")
    parser.add_argument("--db", default=os.getenv("DATABASE_URL", None),
                        help="Database URL")
    parser.add_argument("--run", metavar="SLUG", help="Run one job now and exit")
    parser.add_argument("--input", help="Job input as JSON (with --run)")
    parser.add_argument("--force", action="store_true",
                        help="Set force_run on the job input (with --run)")
    parser.add_argument("--list", action="store_true", help="List job schedules")
    parser.add_argument("--health", action="store_true", help="Print a health check")
    parser.add_argument("--report", choices=["daily", "weekly", "monthly"],
                        help="Print an analytics report")
    args = parser.parse_args()

    configure_logging()

    from database import DatabaseManager
    db = DatabaseManager(args.db)
    try:
        db.create_tables()
        logger.info(f"Database connected: {db.database_url}")

        if args.run or args.list or args.health or args.report:
            return run_once(args, db)

        try:
            asyncio.run(serve(db))
        except asyncio.CancelledError:
            logger.info("Tasks cancelled, cleaning up...")
        return 0
    finally:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"Error closing database: {e}")
        logger.info("Stopped")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        pass
