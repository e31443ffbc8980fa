from flask import Blueprint, render_template

from app.portal.db import db_session
from app.portal.modules.reports.service import top_active_students
from app.portal.rbac import require_permission

bp = Blueprint("admin", __name__)


@bp.get("/")
@require_permission("reports.view")
def index():
    s = db_session()
    return render_template("admin/index.html", top_active=top_active_students(s))
