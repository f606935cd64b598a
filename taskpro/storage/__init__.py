# ====================
# storage/__init__.py
# ====================
"""
永続化層パッケージ
データストレージ機能
"""

from .data_store import (
    DataStore, EntityRepository, DataStoreError,
    RecordNotFoundError, DuplicateKeyError, InvalidEntityError
)
from .query import (
    Contains, Between, Before, After, OneOf, Not, AnyOf, AllOf,
    PageRequest, Pagination, PageResult, ASC, DESC
)

__version__ = "1.0.0"

__all__ = [
    'DataStore',
    'EntityRepository',
    'DataStoreError',
    'RecordNotFoundError',
    'DuplicateKeyError',
    'InvalidEntityError',
    'Contains',
    'Between',
    'Before',
    'After',
    'OneOf',
    'Not',
    'AnyOf',
    'AllOf',
    'PageRequest',
    'Pagination',
    'PageResult',
    'ASC',
    'DESC'
]
