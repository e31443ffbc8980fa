"""
Stream-based access restriction.

Students may only open the category page of their own stream, and only the
"subjects" content tagged with that stream. Anything else is answered as
"not found". Everybody who is not a student is left alone.
"""
from __future__ import annotations

import re

from app.portal.errors import NotFoundOverride
from app.portal.rbac import Principal
from app.portal.repositories import ContentRepository, IdentityRepository

RESTRICTED_CONTENT_TYPE = "subjects"

_CATEGORY_PATH = re.compile(r"^/category/(\d+)$")
_CONTENT_PATH = re.compile(r"^/content/(\d+)$")


def classify_path(path: str) -> tuple[str, int] | None:
    m = _CATEGORY_PATH.match(path)
    if m:
        return "category", int(m.group(1))
    m = _CONTENT_PATH.match(path)
    if m:
        return "content", int(m.group(1))
    return None


def _restricted(principal: Principal | None) -> bool:
    return principal is not None and principal.is_student


def check_category_access(principal: Principal | None, category_id: int, identities: IdentityRepository) -> None:
    if not _restricted(principal):
        return
    user_stream_id = identities.stream_id_of(principal.user_id)
    if category_id != user_stream_id:
        raise NotFoundOverride(f"/category/{category_id}", "category is not the student's stream")


def check_content_access(
    principal: Principal | None,
    content_id: int,
    identities: IdentityRepository,
    contents: ContentRepository,
) -> None:
    item = contents.get(content_id)
    if item is None or item.content_type != RESTRICTED_CONTENT_TYPE or not _restricted(principal):
        return
    user_stream_id = identities.stream_id_of(principal.user_id)
    # Plain comparison: an untagged subject is only visible to a student without a stream.
    if item.stream_id != user_stream_id:
        raise NotFoundOverride(f"/content/{content_id}", "subject belongs to another stream")


def check_request_access(
    path: str,
    principal: Principal | None,
    identities: IdentityRepository,
    contents: ContentRepository,
) -> None:
    """Raises NotFoundOverride when the principal must not see `path`."""
    target = classify_path(path)
    if target is None:
        return
    kind, target_id = target
    if kind == "category":
        check_category_access(principal, target_id, identities)
    else:
        check_content_access(principal, target_id, identities, contents)
