import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import Permission, Role, User  # noqa: E402
from app.portal.modules.catalog.models import Stream  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

DEFAULT_STREAMS = ("Computer Science", "Mechanical Engineering", "Civil Engineering", "Electronics")


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user/streams in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@student-portal.local").strip().lower()
    admin_name = (os.environ.get("ADMIN_NAME") or "admin").strip()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    stream_names = [
        n.strip() for n in (os.environ.get("SEED_STREAMS") or ",".join(DEFAULT_STREAMS)).split(",") if n.strip()
    ]

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()

    with script_session(db_url) as s:
        # Permissions (idempotent)
        def ensure_perm(key: str, name: str) -> Permission:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            return p

        def ensure_role(key: str, name: str) -> Role:
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name)
                s.add(r)
            return r

        p_reports_view = ensure_perm("reports.view", "Reports: dashboard + student API")

        role_admin = ensure_role("admin", "Administrator")
        if p_reports_view not in role_admin.permissions:
            role_admin.permissions.append(p_reports_view)
        # Students get no admin permissions; the role only drives stream access.
        ensure_role("student", "Student")

        for weight, name in enumerate(stream_names):
            if not s.query(Stream).filter(Stream.vocabulary == "stream", Stream.name == name).one_or_none():
                s.add(Stream(name=name, vocabulary="stream", weight=weight))

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                name=admin_name,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

    print("Initialized database (seed_only).")
    print(f"Admin login name: {admin_name}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
