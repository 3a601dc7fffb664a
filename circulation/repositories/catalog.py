from sqlalchemy import select
from sqlalchemy.orm import Session

from circulation.core.errors import NotFound
from circulation.db.models import Book, Copy, Member


class CatalogStore:
    """Lecturas de libro / copia / socio por id. Lanza NotFound si no existen."""

    def __init__(self, session: Session):
        self.session = session

    def get_book(self, book_id: int) -> Book:
        book = self.session.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found", book_id=book_id)
        return book

    def get_copy(self, copy_id: int) -> Copy:
        # populate_existing: siempre releemos el estado antes de un claim
        copy = self.session.get(Copy, copy_id, populate_existing=True)
        if copy is None:
            raise NotFound("Copy not found", copy_id=copy_id)
        return copy

    def get_member(self, member_id: int, for_update: bool = False) -> Member:
        stmt = select(Member).where(Member.id == member_id)
        if for_update:
            stmt = stmt.with_for_update()
        member = self.session.execute(stmt).scalar_one_or_none()
        if member is None:
            raise NotFound("Member not found", member_id=member_id)
        return member

    def list_copies(self, book_id: int) -> list[Copy]:
        return list(
            self.session.execute(
                select(Copy)
                .where(Copy.book_id == book_id)
                .order_by(Copy.id)
                .execution_options(populate_existing=True)
            ).scalars()
        )
