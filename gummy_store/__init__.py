"""
グミ・キャンディストアのデータ層。

ローカルのオブジェクトデータベース、コレクションごとの CRUD、
カート・認証の状態キャッシュ、サンプルデータの初期投入を提供します。
"""
from .app import StoreApp
from .config import StoreConfig
from .database import ObjectStore
from .errors import (
    DuplicateKeyError,
    InvalidStatusTransition,
    NotFoundError,
    SchemaError,
    StoreError,
    StoreOpenError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "StoreApp",
    "StoreConfig",
    "ObjectStore",
    "StoreError",
    "StoreOpenError",
    "SchemaError",
    "NotFoundError",
    "DuplicateKeyError",
    "ValidationError",
    "InvalidStatusTransition",
]
