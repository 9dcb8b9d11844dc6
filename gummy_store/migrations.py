"""
スキーマの追加マイグレーション。

Alembic の autogenerate と同じ比較 (compare_metadata) でデータベースと
schema.yml の差分を検出し、テーブル・カラム・インデックスの「追加」だけを
適用します。削除や型変更は行いません。
"""
import logging
from typing import List

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect, select
from sqlalchemy.engine import Connection

from .schema import StoreSchema

logger = logging.getLogger(__name__)

VERSION_KEY = 'schema_version'


def read_version(connection: Connection, schema: StoreSchema) -> int:
    """保存されているスキーマバージョンを返します。未初期化なら 0。"""
    meta = schema.meta_table
    if not inspect(connection).has_table(meta.name):
        return 0
    value = connection.execute(
        select(meta.c.value).where(meta.c.key == VERSION_KEY)
    ).scalar()
    return int(value) if value is not None else 0


def write_version(connection: Connection, schema: StoreSchema, version: int) -> None:
    meta = schema.meta_table
    exists = connection.execute(
        select(meta.c.key).where(meta.c.key == VERSION_KEY)
    ).first()
    if exists:
        connection.execute(meta.update().where(meta.c.key == VERSION_KEY).values(value=str(version)))
    else:
        connection.execute(meta.insert().values(key=VERSION_KEY, value=str(version)))


def upgrade(connection: Connection, schema: StoreSchema, old_version: int) -> List[str]:
    """
    不足しているテーブル・カラム・インデックスを作成し、バージョンを記録します。

    Args:
        connection: トランザクション中の接続。
        schema: 現在のスキーマ。
        old_version: データベースに記録されていたバージョン。

    Returns:
        適用した操作の説明のリスト。
    """
    context = MigrationContext.configure(connection, opts={'compare_type': False})
    operations = Operations(context)
    diffs = compare_metadata(context, schema.metadata)

    applied: List[str] = []
    pending_indexes = []

    for diff in diffs:
        # 変更系の差分はリストで返される。追加のみ扱う
        if isinstance(diff, list) or not diff:
            logger.debug("追加以外の差分をスキップしました: %s", diff)
            continue

        kind = diff[0]
        if kind == 'add_table':
            table = diff[1]
            # テーブルに定義されたインデックスも一緒に作成される
            table.create(connection)
            collection = schema.collections.get(table.name)
            since = f" (v{collection.since})" if collection else ""
            applied.append(f"create table {table.name}{since}")
        elif kind == 'add_column':
            _, table_schema, table_name, column = diff
            operations.add_column(table_name, column, schema=table_schema)
            applied.append(f"add column {table_name}.{column.name}")
        elif kind == 'add_index':
            pending_indexes.append(diff[1])
        else:
            logger.debug("追加以外の差分をスキップしました: %s", kind)

    # テーブル・カラム追加で作成済みのインデックスは除く
    inspector = inspect(connection)
    for index in pending_indexes:
        existing = {ix['name'] for ix in inspector.get_indexes(index.table.name)}
        if index.name in existing:
            continue
        index.create(connection)
        applied.append(f"create index {index.name}")

    write_version(connection, schema, schema.version)
    for description in applied:
        logger.debug("マイグレーション: %s", description)
    logger.info(
        "スキーマをバージョン %d から %d に更新しました (%d 件の操作)。",
        old_version, schema.version, len(applied),
    )
    return applied
