import os
from dataclasses import dataclass

# ---------------------------------------------------
# 既定の接続設定
# ---------------------------------------------------
# SQLite データベースファイルのパス
DATABASE_FILE = 'gummy-store.db'
DATABASE_URL = f"sqlite:///{DATABASE_FILE}"

# ローカルストレージ (セッション・ユーザー一覧) を保存する JSON ファイル
LOCAL_STORAGE_FILE = 'gummy-store-local.json'

# この在庫数未満の商品を「在庫少」として扱う
LOW_STOCK_THRESHOLD = 10

ENV_DATABASE_URL = 'GUMMY_STORE_DATABASE_URL'
ENV_LOCAL_STORAGE = 'GUMMY_STORE_LOCAL_STORAGE'
ENV_LOW_STOCK = 'GUMMY_STORE_LOW_STOCK'


@dataclass(frozen=True)
class StoreConfig:
    """アプリケーション全体の設定値。"""

    database_url: str = DATABASE_URL
    local_storage_path: str = LOCAL_STORAGE_FILE
    low_stock_threshold: int = LOW_STOCK_THRESHOLD
    seed_on_start: bool = True

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """環境変数で既定値を上書きした設定を作成します。"""
        low_stock = os.environ.get(ENV_LOW_STOCK)
        try:
            threshold = int(low_stock) if low_stock else LOW_STOCK_THRESHOLD
        except ValueError:
            raise ValueError(f"{ENV_LOW_STOCK} は整数で指定してください: '{low_stock}'")
        return cls(
            database_url=os.environ.get(ENV_DATABASE_URL, DATABASE_URL),
            local_storage_path=os.environ.get(ENV_LOCAL_STORAGE, LOCAL_STORAGE_FILE),
            low_stock_threshold=threshold,
        )
