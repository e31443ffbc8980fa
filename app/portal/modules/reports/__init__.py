"""
Reporting module (read-only).

- Inactive students per month (admin dashboard)
- Top active students by login count
- Filterable student list (JSON API)
"""
