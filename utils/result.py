"""
Resultado de operaciones del núcleo

    Éxito:  {"success": true, "data": {...}}
    Error:  {"success": false, "error": "mensaje", "code": "CODIGO"}

Ninguna operación pública del servicio de estancias lanza excepciones;
todas devuelven un Result.
"""

from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Result(Generic[T]):
    __slots__ = ("success", "data", "error", "code", "category")

    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        code: Optional[str] = None,
        category: Optional[str] = None,
    ):
        self.success = success
        self.data = data
        self.error = error
        self.code = code
        self.category = category

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "Result[T]":
        return cls(True, data=data)

    @classmethod
    def fail(cls, error: str, code: str, category: Optional[str] = None) -> "Result[T]":
        return cls(False, error=error, code=code, category=category)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error, "code": self.code}

    def __repr__(self) -> str:
        if self.success:
            return f"Result.ok({self.data!r})"
        return f"Result.fail({self.code}: {self.error})"
