import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import StoreError


class KeyValueStorage:
    """
    ブラウザの localStorage に相当するキー・値ストレージ。

    すべてのキーを1つの JSON ファイルに保存します。値は JSON 文字列です。
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"ローカルストレージ '{self.path}' を読み込めませんでした: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"ローカルストレージ '{self.path}' の形式が不正です。")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
            tmp_path.write_text(payload + "\n", encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise StoreError(f"ローカルストレージ '{self.path}' に書き込めませんでした: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    # --- JSON 値のヘルパー ---

    def get_json(self, key: str) -> Any:
        """キーの値を JSON として読み込みます。存在しなければ None。"""
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"キー '{key}' の値が JSON ではありません: {e}") from e

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, ensure_ascii=False))
