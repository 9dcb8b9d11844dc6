import logging
import os
from typing import List

import yaml

from .errors import SchemaError
from .models import Product, now
from .services import ProductService

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'sample_products.yml')


def load_sample_products(path: str = SAMPLE_PRODUCTS_PATH) -> List[Product]:
    """サンプル商品の YAML を読み込みます。作成日時・更新日時は現在時刻。"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise SchemaError(f"サンプルデータ '{path}' が見つかりません。") from e
    except yaml.YAMLError as e:
        raise SchemaError(f"サンプルデータ '{path}' の解析に失敗しました: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get('products'), list):
        raise SchemaError(f"サンプルデータ '{path}' に 'products' のリストがありません。")

    timestamp = now()
    products = []
    for data in document['products']:
        product = Product.from_record({**data, 'created_at': timestamp, 'updated_at': timestamp})
        product.validate()
        products.append(product)
    return products


def seed_database(products: ProductService) -> bool:
    """
    商品が1件もない場合だけサンプル商品を投入します。

    Returns:
        投入した場合 True、既に商品が存在した場合 False。
    """
    if products.count() > 0:
        logger.info("既に商品データが存在します。初期データの追加はスキップします。")
        return False

    samples = load_sample_products()
    products.add_many(samples)
    logger.info("サンプル商品データを投入しました (%d 件)。", len(samples))
    return True
