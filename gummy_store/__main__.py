"""
管理用スクリプト。

    python -m gummy_store init      # データベースを作成・マイグレーション
    python -m gummy_store seed      # サンプル商品を投入 (商品が空の場合のみ)
    python -m gummy_store summary   # ダッシュボードの集計を表示
"""
import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

from .app import StoreApp
from .config import StoreConfig
from .database import ObjectStore
from .errors import StoreError
from .seed import seed_database
from .services import ProductService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gummy_store", description="グミ・キャンディストアの管理スクリプト")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy のデータベースURL")
    parser.add_argument("--verbose", "-v", action="store_true", help="デバッグログを表示")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="データベースを作成・更新")
    sub.add_parser("seed", help="サンプル商品を投入")
    summary = sub.add_parser("summary", help="ダッシュボードの集計を表示")
    summary.add_argument("--range", default=None, choices=["7d", "30d", "90d", "all"], help="統計レポートの集計期間")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = StoreConfig.from_env()
    database_url = args.database_url or config.database_url

    try:
        if args.command == "init":
            with ObjectStore(database_url) as store:
                print(f"データベース '{database_url}' の初期化が完了しました (バージョン {store.version})。")
            return 0

        if args.command == "seed":
            with ObjectStore(database_url) as store:
                seeded = seed_database(ProductService(store))
            print("サンプル商品データを投入しました。" if seeded else "既に商品データが存在します。")
            return 0

        if args.command == "summary":
            app_config = StoreConfig(
                database_url=database_url,
                local_storage_path=config.local_storage_path,
                low_stock_threshold=config.low_stock_threshold,
                seed_on_start=False,
            )
            with StoreApp(app_config) as app:
                payload = asdict(app.report(args.range)) if args.range else asdict(app.dashboard())
            print(json.dumps(payload, ensure_ascii=False, indent=2))
            return 0
    except StoreError as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
