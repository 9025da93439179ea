"""Routes for browsing the records held by the in-memory repositories."""
from __future__ import annotations

import html
import json
from typing import Any, Dict, Iterable, List, Mapping

from fastapi import APIRouter
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from app.services.mock_store import UserRecord, get_mock_store

router = APIRouter()


def _stringify(value: Any) -> str:
    """Return a JSON-friendly string representation for table cells."""
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    return json.dumps(value, default=str)


def _build_table(title: str, rows: Iterable[Mapping[str, Any]]) -> str:
    row_list: List[Dict[str, Any]] = [dict(row) for row in rows]
    section_parts = [f"<section><h2>{html.escape(title)}</h2>"]
    if not row_list:
        section_parts.append("<p>No records found.</p></section>")
        return "".join(section_parts)

    columns: List[str] = []
    for row in row_list:
        for key in row.keys():
            if key not in columns:
                columns.append(key)

    header = "".join(f"<th>{html.escape(column)}</th>" for column in columns)
    body_rows: List[str] = []
    for row in row_list:
        cells = []
        for column in columns:
            value = _stringify(row.get(column))
            cells.append(f"<td>{html.escape(value)}</td>")
        body_rows.append("<tr>" + "".join(cells) + "</tr>")
    table_html = (
        "<table><thead><tr>"
        + header
        + "</tr></thead><tbody>"
        + "".join(body_rows)
        + "</tbody></table>"
    )
    section_parts.append(table_html)
    section_parts.append("</section>")
    return "".join(section_parts)


def _user_rows(users: Iterable[UserRecord]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for user in users:
        rows.append(
            {
                "user_id": user.user_id,
                "name": user.name,
                "email": user.email,
                "provider": user.is_provider,
                "avatar": user.avatar.url if user.avatar else None,
            }
        )
    return rows


def _model_rows(models: Iterable[BaseModel]) -> List[Dict[str, Any]]:
    return [model.model_dump(mode="json") for model in models]


@router.get("/mock-data", response_class=HTMLResponse)
async def view_mock_data() -> HTMLResponse:
    """Render all records from the shared in-memory store as HTML tables."""
    store = get_mock_store()

    sections = [
        _build_table("Users", _user_rows(store.users.iter_users())),
        _build_table("Appointments", _model_rows(store.appointments.iter_appointments())),
        _build_table("Notifications", _model_rows(store.notifications.iter_notifications())),
        _build_table("Pending Mail Jobs", _model_rows(store.mail_queue.pending())),
        _build_table("Dead Letters", _model_rows(store.mail_queue.dead_letters)),
    ]

    sections_html = "".join(sections)
    html_content = f"""
    <html>
        <head>
            <title>Mock Data Overview</title>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 2rem; }}
                h1 {{ text-align: center; }}
                section {{ margin-bottom: 2rem; }}
                table {{ border-collapse: collapse; width: 100%; }}
                th, td {{ border: 1px solid #ccc; padding: 0.5rem; text-align: left; }}
                th {{ background-color: #f0f0f0; }}
                tbody tr:nth-child(even) {{ background-color: #fafafa; }}
            </style>
        </head>
        <body>
            <h1>Mock Data Overview</h1>
            {sections_html}
        </body>
    </html>
    """

    return HTMLResponse(content=html_content)
