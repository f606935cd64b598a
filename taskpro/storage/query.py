"""
検索条件・並び替え・ページング
データストアのリポジトリが解釈するクエリ部品
"""

from dataclasses import dataclass
from math import ceil
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, Union

ASC = "asc"
DESC = "desc"


class Condition:
    """フィールド条件の基底クラス"""

    def test(self, value: Any) -> bool:
        raise NotImplementedError


class Contains(Condition):
    """大文字小文字を区別しない部分一致"""

    def __init__(self, text: str):
        self.text = (text or "").lower()

    def test(self, value: Any) -> bool:
        if value is None:
            return False
        return self.text in str(value).lower()

    def __repr__(self) -> str:
        return f"Contains({self.text!r})"


class Between(Condition):
    """範囲条件（両端を含む、片側省略可）"""

    def __init__(self, low: Any = None, high: Any = None):
        self.low = low
        self.high = high

    def test(self, value: Any) -> bool:
        if value is None:
            return False
        if self.low is not None and value < self.low:
            return False
        if self.high is not None and value > self.high:
            return False
        return True

    def __repr__(self) -> str:
        return f"Between({self.low!r}, {self.high!r})"


class Before(Condition):
    """指定値より前（境界を含まない）"""

    def __init__(self, bound: Any):
        self.bound = bound

    def test(self, value: Any) -> bool:
        return value is not None and value < self.bound


class After(Condition):
    """指定値より後（境界を含まない）"""

    def __init__(self, bound: Any):
        self.bound = bound

    def test(self, value: Any) -> bool:
        return value is not None and value > self.bound


class OneOf(Condition):
    """集合への所属"""

    def __init__(self, values: Iterable[Any]):
        self.values = frozenset(values)

    def test(self, value: Any) -> bool:
        return value in self.values

    def __repr__(self) -> str:
        return f"OneOf({sorted(map(str, self.values))!r})"


class Not(Condition):
    """条件の否定"""

    def __init__(self, condition: Any):
        self.condition = condition

    def test(self, value: Any) -> bool:
        return not _test_condition(self.condition, value)


class AnyOf:
    """いずれかの条件群に一致（OR）"""

    def __init__(self, *filters: 'FilterSpec'):
        self.filters = filters

    def matches(self, entity: Any) -> bool:
        return any(matches(entity, f) for f in self.filters)


class AllOf:
    """全ての条件群に一致（AND）"""

    def __init__(self, *filters: 'FilterSpec'):
        self.filters = filters

    def matches(self, entity: Any) -> bool:
        return all(matches(entity, f) for f in self.filters)


FilterSpec = Union[Mapping[str, Any], AnyOf, AllOf, None]
SortSpec = Sequence[Tuple[str, str]]


def _test_condition(condition: Any, value: Any) -> bool:
    if isinstance(condition, Condition):
        return condition.test(value)
    return value == condition


def matches(entity: Any, spec: FilterSpec) -> bool:
    """
    エンティティが検索条件に一致するか判定

    Args:
        entity: 判定対象
        spec: フィールド名→値（等価）または Condition の辞書、AnyOf / AllOf

    Returns:
        一致するかどうか
    """
    if spec is None:
        return True
    if isinstance(spec, (AnyOf, AllOf)):
        return spec.matches(entity)
    for field, condition in spec.items():
        if not _test_condition(condition, getattr(entity, field, None)):
            return False
    return True


def sort_entities(entities: List[Any], sort: Optional[SortSpec],
                  orderings: Optional[Mapping[str, Type]] = None) -> List[Any]:
    """
    複数キーで安定ソート（None は方向に関わらず末尾）

    Args:
        entities: 対象リスト
        sort: (フィールド名, 'asc'|'desc') の並び、先頭ほど優先
        orderings: 列挙フィールドの並び順定義（StatusEnum サブクラス）

    Returns:
        並び替え済みの新しいリスト
    """
    items = list(entities)
    if not sort:
        return items

    orderings = orderings or {}
    for field, direction in reversed(list(sort)):
        if direction not in (ASC, DESC):
            raise ValueError(f"不正な並び順です: {direction}")
        enum_cls = orderings.get(field)

        def key(entity, _field=field, _enum=enum_cls):
            value = getattr(entity, _field)
            return _enum.rank(value) if _enum else value

        present = [e for e in items if getattr(e, field, None) is not None]
        missing = [e for e in items if getattr(e, field, None) is None]
        present.sort(key=key, reverse=(direction == DESC))
        items = present + missing
    return items


@dataclass(frozen=True)
class PageRequest:
    """ページ指定（1始まり）"""

    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page は1以上である必要があります")
        if self.limit < 1:
            raise ValueError("limit は1以上である必要があります")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class Pagination:
    """ページング情報"""

    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, total: int, page: PageRequest) -> 'Pagination':
        total_pages = ceil(total / page.limit) if total else 0
        return cls(
            current_page=page.page,
            total_pages=total_pages,
            total_items=total,
            items_per_page=page.limit,
            has_next_page=page.page < total_pages,
            has_prev_page=page.page > 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current_page': self.current_page,
            'total_pages': self.total_pages,
            'total_items': self.total_items,
            'items_per_page': self.items_per_page,
            'has_next_page': self.has_next_page,
            'has_prev_page': self.has_prev_page,
        }


@dataclass
class PageResult:
    """ページング済みの検索結果"""

    items: List[Any]
    pagination: Pagination

    @classmethod
    def build(cls, items: List[Any], total: int, page: PageRequest) -> 'PageResult':
        return cls(items=list(items), pagination=Pagination.build(total, page))

    def to_dict(self, serialize: Optional[Callable[[Any], Dict[str, Any]]] = None) -> Dict[str, Any]:
        serialize = serialize or (lambda item: item.to_dict())
        return {
            'data': [serialize(item) for item in self.items],
            'pagination': self.pagination.to_dict(),
        }
