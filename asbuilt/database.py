from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .orm_models import Base, KeyValueEntryORM
from .storage import StorageError, _validate_key


def create_session_factory(database_url: str) -> sessionmaker:
    connect_args: dict[str, object] = {}
    engine_url = database_url

    if engine_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        db_path = engine_url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    elif engine_url.startswith("postgres://"):
        engine_url = engine_url.replace("postgres://", "postgresql+psycopg://", 1)
    elif engine_url.startswith("postgresql://"):
        engine_url = engine_url.replace("postgresql://", "postgresql+psycopg://", 1)

    engine = create_engine(engine_url, connect_args=connect_args, future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class SqlStorage:
    """Key-value storage kept in a single SQL table, values stored as JSON text."""

    def __init__(self, factory: sessionmaker) -> None:
        self._factory = factory

    def get(self, key: str) -> Any:
        try:
            with session_scope(self._factory) as session:
                raw = session.execute(
                    select(KeyValueEntryORM.value).where(KeyValueEntryORM.key == _validate_key(key))
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Не удалось прочитать ключ {key!r}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Значение ключа {key!r} повреждено") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Значение для ключа {key!r} не сериализуется в JSON") from exc
        try:
            with session_scope(self._factory) as session:
                entry = session.get(KeyValueEntryORM, _validate_key(key))
                if entry is None:
                    session.add(KeyValueEntryORM(key=key, value=payload))
                else:
                    entry.value = payload
        except SQLAlchemyError as exc:
            raise StorageError(f"Не удалось сохранить ключ {key!r}") from exc
