import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)

from .errors import SchemaError

# --- 内部定数 ---

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'schema.yml')

# YAMLの型名とSQLAlchemyの型オブジェクトのマッピング
SQLA_TYPE_MAP: Dict[str, Any] = {
    "Integer": Integer,
    "String": String,
    "DateTime": DateTime,
    "Boolean": Boolean,
    "Float": Float,
    "Text": Text,
    "JSON": JSON,
}

# 挿入順を保持するための内部カラム。レコードには含めない
SEQ_COLUMN = 'seq'

# スキーマバージョンなどを保存するメタテーブル
META_TABLE = 'store_meta'


@dataclass
class CollectionSchema:
    """1つのコレクション (テーブル) の定義。"""

    name: str
    table: Table
    key: str
    since: int
    description: str = ''
    indexes: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def fields(self) -> List[str]:
        return [c.name for c in self.table.columns if c.name != SEQ_COLUMN]


@dataclass
class StoreSchema:
    """データベース全体の定義。version はスキーマバージョン。"""

    version: int
    metadata: MetaData
    collections: Dict[str, CollectionSchema]
    meta_table: Table

    def collection(self, name: str) -> CollectionSchema:
        try:
            return self.collections[name]
        except KeyError:
            raise SchemaError(f"コレクション '{name}' はスキーマに定義されていません。")


def _server_default(value: Any) -> Any:
    """
    リテラルの既定値をデータベース側の DEFAULT 句に変換します。

    既存テーブルへのカラム追加時に、既存行にもこの値が入ります。
    リストや dict (JSON の既定値) は対象外で None を返します。
    """
    if isinstance(value, bool):
        return text('1' if value else '0')
    if isinstance(value, (int, float)):
        return text(str(value))
    if isinstance(value, str):
        return value
    return None


def _build_column(table_key: str, col_name: str, col_def: Any) -> Column:
    """YAML のカラム定義から Column を作成します。"""
    if not isinstance(col_def, dict) or 'type' not in col_def:
        raise SchemaError(f"テーブル '{table_key}' のカラム '{col_name}' は不正な形式か、'type' がありません。")
    if col_name == SEQ_COLUMN:
        raise SchemaError(f"カラム名 '{SEQ_COLUMN}' は内部用に予約されています (テーブル '{table_key}')。")

    yaml_type = col_def['type']
    if yaml_type not in SQLA_TYPE_MAP:
        raise SchemaError(f"サポートされていない型 '{yaml_type}' がカラム '{col_name}' に指定されています。")

    column_type = SQLA_TYPE_MAP[yaml_type]
    if yaml_type == "String" and 'length' in col_def:
        column_type = String(length=col_def['length'])
    else:
        column_type = column_type()

    kwargs: Dict[str, Any] = {}
    if col_def.get('primary_key'):
        kwargs['primary_key'] = True
    if col_def.get('nullable') is False:
        kwargs['nullable'] = False
    if col_def.get('unique'):
        kwargs['unique'] = True
    if 'default' in col_def:
        kwargs['default'] = col_def['default']
        server_default = _server_default(col_def['default'])
        if server_default is not None:
            kwargs['server_default'] = server_default
    if col_def.get('index'):
        kwargs['index'] = True
    if 'comment' in col_def:
        kwargs['comment'] = col_def['comment']

    return Column(col_name, column_type, **kwargs)


def _build_collection(metadata: MetaData, table_key: str, table_def: Any) -> CollectionSchema:
    if not isinstance(table_def, dict):
        raise SchemaError(f"テーブル '{table_key}' の定義が不正な形式です。")

    db_table_name = table_def.get('table_name', table_key.lower())

    columns_def = table_def.get('columns')
    if not isinstance(columns_def, dict) or not columns_def:
        raise SchemaError(f"テーブル '{table_key}' には 'columns' セクションがないか、不正な形式です。")

    columns = [_build_column(table_key, name, col_def) for name, col_def in columns_def.items()]
    primary = [c.name for c in columns if c.primary_key]
    if len(primary) != 1:
        raise SchemaError(f"テーブル '{table_key}' には主キーがちょうど1つ必要です: {primary}")

    columns.append(Column(SEQ_COLUMN, Integer, nullable=False, comment='挿入順'))
    table = Table(db_table_name, metadata, *columns, comment=table_def.get('description'))

    indexes: Dict[str, Tuple[str, ...]] = {
        c.name: (c.name,) for c in columns if c.index
    }

    composite_def = table_def.get('indexes') or {}
    if not isinstance(composite_def, dict):
        raise SchemaError(f"テーブル '{table_key}' の 'indexes' が不正な形式です。")
    for index_name, index_def in composite_def.items():
        cols = index_def.get('columns') if isinstance(index_def, dict) else None
        if not cols or any(c not in columns_def for c in cols):
            raise SchemaError(f"テーブル '{table_key}' のインデックス '{index_name}' のカラム指定が不正です。")
        if index_name in indexes:
            raise SchemaError(f"テーブル '{table_key}' のインデックス名 '{index_name}' が重複しています。")
        Index(
            f"ix_{db_table_name}_{index_name}",
            *[table.c[c] for c in cols],
            unique=bool(index_def.get('unique')),
        )
        indexes[index_name] = tuple(cols)

    return CollectionSchema(
        name=db_table_name,
        table=table,
        key=primary[0],
        since=int(table_def.get('since', 1)),
        description=str(table_def.get('description', '')).strip(),
        indexes=indexes,
    )


def build_schema(document: Dict[str, Any], version: Optional[int] = None) -> StoreSchema:
    """
    読み込み済みの YAML ドキュメントから StoreSchema を構築します。

    Args:
        document: yaml.safe_load の結果。
        version: 指定した場合、そのバージョン以前に追加されたテーブルだけを含めます。

    Raises:
        SchemaError: スキーマが無効な場合。
    """
    if not isinstance(document, dict) or 'tables' not in document or not isinstance(document['tables'], dict):
        raise SchemaError("無効なYAMLスキーマ: 'tables' セクションが見つからないか、不正な形式です。")

    declared = document.get('version')
    if not isinstance(declared, int) or declared < 1:
        raise SchemaError(f"無効なYAMLスキーマ: 'version' は1以上の整数で指定してください ({declared!r})。")
    if version is None:
        version = declared
    elif version > declared:
        raise SchemaError(f"バージョン {version} はスキーマのバージョン {declared} より新しいため構築できません。")

    metadata = MetaData()
    meta_table = Table(
        META_TABLE, metadata,
        Column('key', String(length=64), primary_key=True, comment='設定名'),
        Column('value', String(length=255), nullable=False, comment='値'),
    )

    collections: Dict[str, CollectionSchema] = {}
    for table_key, table_def in document['tables'].items():
        if isinstance(table_def, dict) and int(table_def.get('since', 1)) > version:
            continue
        collection = _build_collection(metadata, table_key, table_def)
        if collection.name in collections or collection.name == META_TABLE:
            raise SchemaError(f"テーブル名 '{collection.name}' が重複しています。")
        collections[collection.name] = collection

    return StoreSchema(version=version, metadata=metadata, collections=collections, meta_table=meta_table)


def parse_schema(yaml_content: str, version: Optional[int] = None) -> StoreSchema:
    """YAMLコンテンツから StoreSchema を構築します。"""
    try:
        document = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise SchemaError(f"エラー: YAMLスキーマコンテンツの解析に失敗しました: {e}") from e
    return build_schema(document, version=version)


def load_schema(path: str = SCHEMA_PATH, version: Optional[int] = None) -> StoreSchema:
    """YAMLスキーマファイルを読み込みます。既定はパッケージ同梱の schema.yml。"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
    except FileNotFoundError as e:
        raise SchemaError(f"エラー: YAMLスキーマファイル '{path}' が見つかりません。") from e
    return parse_schema(content, version=version)
