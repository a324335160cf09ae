"""通用 CRUD 操作 —— 所有仓库共享的基础能力。

每个方法都接受可选的外部 ``session``：传入时由调用方管理事务；
否则方法内部自行打开会话并提交。
"""
from typing import Optional, List, Dict, Any, Type
from datetime import date, datetime
from sqlalchemy.orm import Session

from .connection import DatabaseConnection


class BaseCRUD:
    """仓库基类。

    Attributes:
        conn: 共享的数据库连接。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def get_by_id(self, model: Type, record_id: int,
                  session: Optional[Session] = None) -> Optional[Any]:
        """按主键获取单条记录。

        Args:
            model: ORM 模型类。
            record_id: 主键值。
            session: 外部会话（可选）。

        Returns:
            记录对象，不存在时返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type,
                filters: Optional[Dict[str, Any]] = None,
                limit: Optional[int] = None,
                order_by: Optional[Any] = None,
                session: Optional[Session] = None) -> List[Any]:
        """按等值条件查询记录。

        Args:
            model: ORM 模型类。
            filters: 列名到取值的映射。
            limit: 最大返回行数。
            order_by: 排序列表达式。
            session: 外部会话（可选）。

        Returns:
            匹配的记录列表。
        """
        def _query(sess):
            query = sess.query(model)
            for field, value in (filters or {}).items():
                query = query.filter(getattr(model, field) == value)
            if order_by is not None:
                query = query.order_by(order_by)
            if limit:
                query = query.limit(limit)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, model: Type, session: Optional[Session] = None,
               **fields) -> Any:
        """插入新记录。

        Args:
            model: ORM 模型类。
            session: 外部会话（可选）。
            **fields: 各列取值。

        Returns:
            已填充主键的新记录。
        """
        def _do(sess):
            record = model(**fields)
            sess.add(record)
            sess.flush()
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            sess.commit()
            sess.refresh(record)
            return record

    def update_by_id(self, model: Type, record_id: int,
                     session: Optional[Session] = None,
                     **fields) -> Optional[Any]:
        """按主键更新记录。

        Args:
            model: ORM 模型类。
            record_id: 主键值。
            session: 外部会话（可选）。
            **fields: 要更新的列值。

        Returns:
            更新后的记录，不存在时返回 None。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return None
            for field, value in fields.items():
                setattr(record, field, value)
            sess.flush()
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            if record is not None:
                sess.commit()
                sess.refresh(record)
            return record

    def delete_by_id(self, model: Type, record_id: int,
                     session: Optional[Session] = None) -> bool:
        """按主键删除记录。

        Returns:
            删除成功返回 True。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return False
            sess.delete(record)
            return True

        if session:
            return _do(session)

        with self._get_session() as sess:
            deleted = _do(sess)
            sess.commit()
            return deleted

    def count(self, model: Type,
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计满足等值条件的记录数"""
        def _query(sess):
            query = sess.query(model)
            for field, value in (filters or {}).items():
                query = query.filter(getattr(model, field) == value)
            return query.count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    @staticmethod
    def _parse_date(value: Any, field_name: str = "Date") -> datetime:
        """将字符串、date 或 datetime 统一转换为 datetime。

        Args:
            value: ``YYYY-MM-DD`` / ISO 字符串、date 或 datetime。
            field_name: 错误信息中使用的字段名。

        Raises:
            ValueError: 无法解析时抛出。
        """
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                raise ValueError(
                    f"{field_name} has an invalid format: {value}"
                )
        raise ValueError(f"{field_name} has an unsupported type: {type(value)}")
