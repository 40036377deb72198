"""稀疏排序号分配：同级目录的 order_index 严格递增但不要求连续。

新节点取相邻两个排序号的中点，相邻排序号之间没有整数空隙时返回 None，
由调用方在同一事务内把整组同级节点按固定步长重新编号。
"""

from __future__ import annotations

from typing import Optional, Sequence

from app.packages.wiki.core.exceptions import ValidationError


def validate_position(position: Optional[int], sibling_count: int) -> Optional[int]:
    """校验插入位置（从 0 开始），None 表示追加到末尾。"""
    if position is None:
        return None
    if position < 0 or position > sibling_count:
        raise ValidationError(
            f"插入位置无效，应在 0 到 {sibling_count} 之间",
            {"position": position, "sibling_count": sibling_count},
        )
    return position


def allocate_order_index(neighbors: Sequence[int], position: Optional[int], gap: int) -> Optional[int]:
    """在已排序的同级排序号 `neighbors` 中为 `position` 处的新节点分配排序号。"""
    if position is None or position >= len(neighbors):
        return (neighbors[-1] if neighbors else 0) + gap

    previous = neighbors[position - 1] if position > 0 else 0
    following = neighbors[position]
    if following - previous < 2:
        return None
    return previous + (following - previous) // 2


def renumbered(count: int, gap: int) -> list[int]:
    """返回 `count` 个按步长等距分布的排序号：gap, 2*gap, ..."""
    return [(index + 1) * gap for index in range(count)]
