"""实体批处理回放循环"""

from .context import DurableEntityContext
from .entity import Entity, OperationHandler

__all__ = [
    "DurableEntityContext",
    "Entity",
    "OperationHandler",
]
