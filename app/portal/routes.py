from flask import Blueprint, abort, g, redirect, render_template, url_for

from app.portal.db import db_session
from app.portal.rbac import current_principal
from app.portal.repositories import CategoryRepository, ContentRepository, IdentityRepository, stream_slug

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html", user=getattr(g, "current_user", None))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for the platform. No DB access, minimal overhead.
    """
    return "ok", 200


# Access to the two pages below is narrowed for students by the stream access hook.
@bp.get("/category/<int:category_id>")
def category_page(category_id: int):
    s = db_session()
    stream = CategoryRepository(s).get(category_id)
    if stream is None:
        abort(404)
    items = ContentRepository(s).list_for_stream(stream.id)
    return render_template("public/category.html", stream=stream, items=items)


@bp.get("/content/<int:content_id>")
def content_page(content_id: int):
    item = ContentRepository(db_session()).get(content_id)
    if item is None:
        abort(404)
    return render_template("public/content.html", item=item)


@bp.get("/my-stream")
def my_stream():
    """Send a student to the page of their own stream."""
    principal = current_principal()
    if principal is None or not principal.is_student:
        abort(404)
    s = db_session()
    stream_id = IdentityRepository(s).stream_id_of(principal.user_id)
    name = CategoryRepository(s).name_of(stream_id)
    if name is None:
        abort(404)
    return redirect(url_for("routes.stream_by_slug", slug=stream_slug(name)))


@bp.get("/taxonomy/term/<slug>")
def stream_by_slug(slug: str):
    stream = CategoryRepository(db_session()).find_by_slug(slug)
    if stream is None:
        abort(404)
    return redirect(url_for("routes.category_page", category_id=stream.id))
