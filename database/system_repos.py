"""系统数据仓库 —— 任务执行日志。

任务执行日志由任务运行器写入，由健康监控和统计报表读取。
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import JobExecutionLog


class JobLogRepository(BaseCRUD):
    """任务执行日志仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, session: Optional[Session] = None,
            **fields) -> JobExecutionLog:
        """插入一行日志（通常状态为 ``running``）。"""
        return self.create(JobExecutionLog, session=session, **fields)

    def finish(self, log_id: int, end_time: datetime, duration_ms: int,
               status: str, success: bool,
               output: Optional[Dict[str, Any]] = None,
               error_message: Optional[str] = None) -> Optional[JobExecutionLog]:
        """在日志行上记录一次运行的结果。

        Args:
            log_id: 运行开始时返回的行ID。
            end_time: 结束时间。
            duration_ms: 运行耗时（毫秒）。
            status: ``completed`` / ``failed`` / ``cancelled``。
            success: 是否成功。
            output: 任务输出数据。
            error_message: 失败原因。

        Returns:
            更新后的行，不存在时返回 None。
        """
        return self.update_by_id(
            JobExecutionLog, log_id,
            end_time=end_time,
            duration_ms=duration_ms,
            status=status,
            success=success,
            output=output or {},
            error_message=error_message,
            updated_at=end_time
        )

    def query(self, job_name: Optional[str] = None,
              status: Optional[str] = None,
              start_date: Optional[datetime] = None,
              end_date: Optional[datetime] = None,
              success: Optional[bool] = None,
              queue: Optional[str] = None,
              limit: Optional[int] = 100,
              offset: int = 0,
              session: Optional[Session] = None) -> List[JobExecutionLog]:
        """按条件筛选日志行，最新的在前。

        ``start_date`` 和 ``end_date`` 限定 ``start_time`` 范围（含边界）。
        """
        def _query(sess):
            query = sess.query(JobExecutionLog)
            if job_name:
                query = query.filter(JobExecutionLog.job_name == job_name)
            if status:
                query = query.filter(JobExecutionLog.status == status)
            if queue:
                query = query.filter(JobExecutionLog.queue == queue)
            if success is not None:
                query = query.filter(JobExecutionLog.success.is_(success))
            if start_date is not None:
                query = query.filter(JobExecutionLog.start_time >= start_date)
            if end_date is not None:
                query = query.filter(JobExecutionLog.start_time <= end_date)
            query = query.order_by(
                JobExecutionLog.start_time.desc(), JobExecutionLog.id.desc()
            )
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def delete_older_than(self, cutoff: datetime) -> int:
        """删除 ``cutoff`` 之前开始的运行日志。

        Returns:
            删除的行数。
        """
        with self._get_session() as session:
            deleted = session.query(JobExecutionLog).filter(
                JobExecutionLog.start_time < cutoff
            ).delete(synchronize_session=False)
            session.commit()
            return deleted
