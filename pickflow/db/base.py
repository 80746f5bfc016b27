# pickflow/db/base.py
from __future__ import annotations

import importlib
import logging
from typing import Iterable, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("pickflow.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False

# 显式导入顺序：被字符串关系引用的模型先注册
_MODEL_MODULES = [
    "pickflow.models.user",
    "pickflow.models.product_variant",
    "pickflow.models.location",
    "pickflow.models.inventory",
    "pickflow.models.order",
    "pickflow.models.order_item",
    "pickflow.models.order_status_history",
    "pickflow.models.inventory_reservation",
    "pickflow.models.inventory_transaction",
    "pickflow.models.pick_list",
    "pickflow.models.pick_list_item",
    "pickflow.models.pick_event",
    "pickflow.models.allocation_claim",
]


def init_models(*, exclude: Iterable[str] | None = None, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 按 _MODEL_MODULES 顺序导入（保证字符串关系目标类已注册）
      2) 统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    ex: Set[str] = set(exclude or [])
    loaded: List[str] = []
    for mod in _MODEL_MODULES:
        if mod in ex:
            continue
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
