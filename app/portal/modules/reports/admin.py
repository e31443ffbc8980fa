from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, render_template, request

from app.portal.db import db_session
from app.portal.modules.reports.service import inactive_students, list_students
from app.portal.rbac import require_permission

bp = Blueprint("reports", __name__)


@bp.get("/admin/dashboard/inactive-students")
@require_permission("reports.view")
def inactive_students_list():
    s = db_session()
    today = date.today()
    raw_year = (request.args.get("year") or "").strip() or str(today.year)
    raw_month = (request.args.get("month") or "").strip() or f"{today.month:02d}"
    try:
        year = int(raw_year)
        month = int(raw_month)
        items, total = inactive_students(s, year, month)
    except ValueError:
        return render_template("errors/400.html", message="year and month must be a valid calendar month."), 400

    return render_template(
        "admin/dashboard/inactive_students.html",
        items=items,
        total=total,
        year=year,
        month=month,
    )


@bp.get("/api/students")
@require_permission("reports.view")
def students_api():
    s = db_session()
    students = list_students(
        s,
        stream=(request.args.get("stream") or "").strip() or None,
        joining_year=(request.args.get("joining_year") or "").strip() or None,
        passing_year=(request.args.get("passing_year") or "").strip() or None,
        name=(request.args.get("name") or "").strip() or None,
    )
    return jsonify(students)
