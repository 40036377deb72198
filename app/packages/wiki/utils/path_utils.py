"""物化路径工具：目录路径统一形如 "/3/17/42/"，以自身 ID 结尾。

规则：
- 根目录路径为 "/<id>/"；
- 子目录路径 = 父目录路径 + "<id>/"；
- 判断 A 是否为 B 的祖先（或自身），只需检查 "/<A>/" 是否出现在 B 的路径中。
"""

from __future__ import annotations

from typing import Optional

from app.packages.wiki.core.constants import PATH_SEPARATOR


def build_path(parent_path: Optional[str], node_id: int) -> str:
    base = parent_path or PATH_SEPARATOR
    if not base.endswith(PATH_SEPARATOR):
        base += PATH_SEPARATOR
    return f"{base}{node_id}{PATH_SEPARATOR}"


def parse_ids(path: Optional[str]) -> list[int]:
    """按从根到自身的顺序解析路径中的目录 ID。"""
    return [int(token) for token in (path or "").split(PATH_SEPARATOR) if token]


def contains_node(path: Optional[str], node_id: int) -> bool:
    """`path` 指向的节点是否为 `node_id` 自身或其后代。"""
    return f"{PATH_SEPARATOR}{node_id}{PATH_SEPARATOR}" in (path or "")
