"""
Typed read/write access to identities, streams and content items.

Services talk to these instead of building queries inline, so the table layout
stays behind one boundary.
"""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.portal.models import Role, User
from app.portal.modules.catalog.models import ContentItem, Stream


class IdentityRepository:
    def __init__(self, s: Session):
        self.s = s

    def get(self, user_id: int) -> User | None:
        return self.s.get(User, user_id)

    def find_by_name(self, name: str) -> list[User]:
        return list(self.s.scalars(select(User).where(User.name == name).order_by(User.id)))

    def find_by_email(self, email: str) -> User | None:
        return self.s.scalars(select(User).where(User.email == email)).first()

    def stream_id_of(self, user_id: int) -> int | None:
        user = self.get(user_id)
        return user.stream_id if user else None

    def add(self, user: User) -> User:
        self.s.add(user)
        self.s.flush()
        return user

    def role(self, key: str) -> Role | None:
        return self.s.scalars(select(Role).where(Role.key == key)).one_or_none()

    def assign_role(self, user: User, key: str) -> None:
        """Assign a role, replacing any existing assignment of the same key."""
        role = self.role(key)
        if role is None:
            role = Role(key=key, name=key.replace("_", " ").title())
            self.s.add(role)
        if user.has_role(key):
            user.roles = [r for r in user.roles if r.key != key]
        user.roles.append(role)
        self.s.flush()


class CategoryRepository:
    def __init__(self, s: Session, vocabulary: str = "stream"):
        self.s = s
        self.vocabulary = vocabulary

    def list_all(self) -> list[Stream]:
        q = select(Stream).where(Stream.vocabulary == self.vocabulary).order_by(Stream.weight, Stream.name)
        return list(self.s.scalars(q))

    def get(self, stream_id: int) -> Stream | None:
        stream = self.s.get(Stream, stream_id)
        if stream is None or stream.vocabulary != self.vocabulary:
            return None
        return stream

    def name_of(self, stream_id: int | None) -> str | None:
        if stream_id is None:
            return None
        stream = self.get(stream_id)
        return stream.name if stream else None

    def find_by_slug(self, slug: str) -> Stream | None:
        for stream in self.list_all():
            if stream_slug(stream.name) == slug:
                return stream
        return None


class ContentRepository:
    def __init__(self, s: Session):
        self.s = s

    def get(self, content_id: int) -> ContentItem | None:
        return self.s.get(ContentItem, content_id)

    def list_for_stream(self, stream_id: int) -> list[ContentItem]:
        q = select(ContentItem).where(ContentItem.stream_id == stream_id).order_by(ContentItem.title)
        return list(self.s.scalars(q))


def stream_slug(name: str) -> str:
    return name.lower().replace(" ", "-")
