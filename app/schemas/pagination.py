"""Pagination Schemas für das Voice-Dashboard."""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from app.config import Limits

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Parameter für Pagination (Namensgebung wie die Plattform-API)."""

    pageno: int = Field(default=1, ge=1, description="Seitennummer (1-basiert)")
    pagesize: int = Field(
        default=Limits.PAGE_SIZE_DEFAULT,
        ge=1,
        le=Limits.PAGE_SIZE_MAX,
        description="Einträge pro Seite",
    )

    @property
    def offset(self) -> int:
        """Berechnet den Offset für die Datenbankabfrage."""
        return (self.pageno - 1) * self.pagesize


class PaginationMeta(BaseModel):
    """Pagination-Block der Listen-Response."""

    pageno: int = Field(description="Aktuelle Seite")
    pagesize: int = Field(description="Einträge pro Seite")
    total: int = Field(description="Gesamtanzahl der Einträge")
    pages: int = Field(description="Gesamtanzahl der Seiten")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generische paginierte Response: {success, data, pagination}."""

    success: bool = True
    data: list[T]
    pagination: PaginationMeta

    @classmethod
    def create(
        cls,
        data: list[T],
        total: int,
        pageno: int,
        pagesize: int,
    ) -> "PaginatedResponse[T]":
        """Factory-Methode für PaginatedResponse."""
        pages = (total + pagesize - 1) // pagesize if pagesize > 0 else 0
        return cls(
            data=data,
            pagination=PaginationMeta(
                pageno=pageno,
                pagesize=pagesize,
                total=total,
                pages=pages,
            ),
        )

    @property
    def has_next(self) -> bool:
        """Prüft, ob eine nächste Seite existiert."""
        return self.pagination.pageno < self.pagination.pages

    @property
    def has_prev(self) -> bool:
        """Prüft, ob eine vorherige Seite existiert."""
        return self.pagination.pageno > 1
