"""
ローカルのオブジェクトデータベース。

schema.yml で定義したコレクションごとに、キーによる取得・インデックス検索・
追加・更新 (upsert)・削除を提供します。レコードはカラム名をキーとする dict です。
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import migrations
from .errors import DuplicateKeyError, SchemaError, StoreError, StoreOpenError, ValidationError
from .schema import SEQ_COLUMN, CollectionSchema, StoreSchema, load_schema

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class ObjectStore:
    """
    SQLAlchemy で実装したオブジェクトストア。

    open() でデータベースに接続し、保存されたスキーマバージョンが古ければ
    不足しているコレクション・インデックスを追加作成します。
    """

    def __init__(self, database_url: str, schema: Optional[StoreSchema] = None):
        self.database_url = database_url
        self.schema = schema or load_schema()
        self._engine: Optional[Engine] = None

    # --- ライフサイクル ---

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "ObjectStore":
        """データベースを開きます。既に開いている場合は何もしません。"""
        if self._engine is not None:
            return self

        try:
            engine = create_engine(self.database_url)
        except SQLAlchemyError as e:
            raise StoreOpenError(f"データベースURLが不正です: {e}") from e

        try:
            with engine.begin() as conn:
                stored = migrations.read_version(conn, self.schema)
                if stored > self.schema.version:
                    raise StoreOpenError(
                        f"データベースのバージョン {stored} はスキーマのバージョン "
                        f"{self.schema.version} より新しいため開けません。"
                    )
                if stored < self.schema.version:
                    migrations.upgrade(conn, self.schema, stored)
        except StoreOpenError:
            engine.dispose()
            raise
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error("データベース '%s' を開けませんでした: %s", self.database_url, e)
            raise StoreOpenError(f"データベースを開けませんでした: {e}") from e

        self._engine = engine
        logger.info("データベース '%s' を開きました (バージョン %d)。", self.database_url, self.schema.version)
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("データベース '%s' を閉じました。", self.database_url)

    def __enter__(self) -> "ObjectStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def version(self) -> int:
        """データベースに記録されているスキーマバージョン。"""
        with self._connect() as conn:
            return migrations.read_version(conn, self.schema)

    # --- 内部ヘルパー ---

    def _connect(self):
        """トランザクション付きの接続 (コンテキストマネージャ) を返します。"""
        if self._engine is None:
            raise StoreError("データベースが開かれていません。open() を先に呼び出してください。")
        return self._engine.begin()

    def _collection(self, store_name: str) -> CollectionSchema:
        try:
            return self.schema.collection(store_name)
        except SchemaError as e:
            raise ValidationError({'store': str(e)}) from e

    @staticmethod
    def _to_record(collection: CollectionSchema, row: Any) -> Record:
        mapping = row._mapping
        return {name: mapping[name] for name in collection.fields}

    @staticmethod
    def _check_record(collection: CollectionSchema, record: Record) -> Record:
        unknown = set(record) - set(collection.fields)
        if unknown:
            raise ValidationError(
                {name: f"'{collection.name}' に存在しないフィールドです。" for name in sorted(unknown)}
            )
        if record.get(collection.key) in (None, ''):
            raise ValidationError({collection.key: "キーが指定されていません。"})
        missing = {
            c.name: "必須フィールドです。"
            for c in collection.table.columns
            if c.name != SEQ_COLUMN and not c.nullable and c.default is None and record.get(c.name) is None
        }
        if missing:
            raise ValidationError(missing)
        return dict(record)

    def _select(self, collection: CollectionSchema):
        table = collection.table
        return select(table).order_by(table.c[SEQ_COLUMN])

    def _run(self, action: str, store_name: str, fn):
        try:
            return fn()
        except IntegrityError as e:
            raise DuplicateKeyError(f"'{store_name}' への{action}に失敗しました (キーの重複): {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error("'%s' への%sに失敗しました: %s", store_name, action, e)
            raise StoreError(f"'{store_name}' への{action}に失敗しました: {e}") from e

    # --- 読み取り ---

    def get_all(self, store_name: str) -> List[Record]:
        """コレクションの全レコードを挿入順に返します。"""
        collection = self._collection(store_name)

        def _get_all():
            with self._connect() as conn:
                rows = conn.execute(self._select(collection)).all()
            return [self._to_record(collection, row) for row in rows]

        return self._run("読み取り", store_name, _get_all)

    def get(self, store_name: str, key: str) -> Optional[Record]:
        """キーでレコードを取得します。存在しなければ None。"""
        collection = self._collection(store_name)
        table = collection.table

        def _get():
            with self._connect() as conn:
                row = conn.execute(select(table).where(table.c[collection.key] == key)).first()
            return self._to_record(collection, row) if row is not None else None

        return self._run("読み取り", store_name, _get)

    def get_all_from_index(self, store_name: str, index_name: str, value: Any) -> List[Record]:
        """
        インデックスに一致するレコードを挿入順に返します。

        複合インデックスの場合、value はカラム順のタプルで指定します。
        """
        collection = self._collection(store_name)
        columns = collection.indexes.get(index_name)
        if columns is None:
            raise ValidationError({'index': f"'{store_name}' にインデックス '{index_name}' はありません。"})

        values: Tuple[Any, ...] = (value,) if len(columns) == 1 else tuple(value)
        if len(values) != len(columns):
            raise ValidationError({'index': f"インデックス '{index_name}' には {len(columns)} 個の値が必要です。"})

        table = collection.table
        query = self._select(collection)
        for column, v in zip(columns, values):
            query = query.where(table.c[column] == v)

        def _get_all():
            with self._connect() as conn:
                rows = conn.execute(query).all()
            return [self._to_record(collection, row) for row in rows]

        return self._run("読み取り", store_name, _get_all)

    def count(self, store_name: str) -> int:
        collection = self._collection(store_name)

        def _count():
            with self._connect() as conn:
                return conn.execute(select(func.count()).select_from(collection.table)).scalar_one()

        return self._run("読み取り", store_name, _count)

    # --- 書き込み ---

    @staticmethod
    def _next_seq(conn: Connection, collection: CollectionSchema) -> int:
        current = conn.execute(select(func.max(collection.table.c[SEQ_COLUMN]))).scalar()
        return (current or 0) + 1

    def add(self, store_name: str, record: Record) -> str:
        """
        レコードを追加します。

        Raises:
            DuplicateKeyError: 同じキー (または一意インデックスの値) が既に存在する場合。
        """
        collection = self._collection(store_name)
        values = self._check_record(collection, record)
        table = collection.table

        def _add():
            with self._connect() as conn:
                values[SEQ_COLUMN] = self._next_seq(conn, collection)
                conn.execute(table.insert().values(**values))
            return values[collection.key]

        return self._run("追加", store_name, _add)

    def put(self, store_name: str, record: Record) -> str:
        """レコードを追加または置き換えます。既存レコードの挿入順は保持されます。"""
        collection = self._collection(store_name)
        values = self._check_record(collection, record)
        table = collection.table
        key = values[collection.key]

        def _put():
            with self._connect() as conn:
                exists = conn.execute(
                    select(table.c[SEQ_COLUMN]).where(table.c[collection.key] == key)
                ).first()
                if exists:
                    conn.execute(table.update().where(table.c[collection.key] == key).values(**values))
                else:
                    values[SEQ_COLUMN] = self._next_seq(conn, collection)
                    conn.execute(table.insert().values(**values))
            return key

        return self._run("更新", store_name, _put)

    def add_many(self, store_name: str, records: Iterable[Record]) -> int:
        """複数のレコードを1トランザクションで追加します。"""
        collection = self._collection(store_name)
        rows = [self._check_record(collection, r) for r in records]
        table = collection.table

        def _add_many():
            with self._connect() as conn:
                seq = self._next_seq(conn, collection)
                for offset, values in enumerate(rows):
                    values[SEQ_COLUMN] = seq + offset
                    conn.execute(table.insert().values(**values))
            return len(rows)

        return self._run("追加", store_name, _add_many)

    def delete(self, store_name: str, key: str) -> None:
        """キーでレコードを削除します。存在しない場合は何もしません。"""
        collection = self._collection(store_name)
        table = collection.table

        def _delete():
            with self._connect() as conn:
                conn.execute(delete(table).where(table.c[collection.key] == key))

        self._run("削除", store_name, _delete)

    def clear(self, store_name: str) -> None:
        """コレクションの全レコードを削除します。"""
        collection = self._collection(store_name)

        def _clear():
            with self._connect() as conn:
                conn.execute(delete(collection.table))

        self._run("削除", store_name, _clear)
