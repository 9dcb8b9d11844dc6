"""
ストア層で使用する例外の定義。

UI 側はこれらを捕捉してログに記録し、利用者向けのメッセージに変換します。
"""
from typing import Dict, Optional


class StoreError(Exception):
    """ストレージ操作の失敗 (容量不足、接続不可など) を表す基底例外。"""


class StoreOpenError(StoreError):
    """データベースを開けなかった場合 (ストレージ不可、バージョン競合)。"""


class SchemaError(StoreError):
    """YAML スキーマ定義が不正な場合。"""


class NotFoundError(StoreError):
    """指定されたキーのレコードが存在しない場合。"""

    def __init__(self, store_name: str, key: str):
        super().__init__(f"'{store_name}' にキー '{key}' のレコードが見つかりません。")
        self.store_name = store_name
        self.key = key


class DuplicateKeyError(StoreError):
    """キーまたは一意インデックスが既に存在する場合。"""


class ValidationError(StoreError):
    """
    入力値の検証エラー。

    errors にはフィールド名とエラーメッセージの対応が入ります。
    """

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        if message is None:
            message = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(message)


class InvalidStatusTransition(ValidationError):
    """許可されていない注文ステータスの遷移。"""

    def __init__(self, current: str, requested: str):
        super().__init__(
            {"status": f"ステータスを '{current}' から '{requested}' に変更できません。"}
        )
        self.current = current
        self.requested = requested
