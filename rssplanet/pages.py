"""
HTML pages: submission forms, listings and error pages.
"""

from pathlib import Path

from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .exceptions import status_title

TEMPLATE_DIR = Path(__file__).parent / "templates"

env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_page(template: str, title: str, status_code: int = 200, **context) -> HTMLResponse:
    html = env.get_template(template).render(title=title, **context)
    return HTMLResponse(content=html, status_code=status_code)


def render_error(status_code: int, message: str, path: str | None = None) -> HTMLResponse:
    heading = status_title(status_code)
    return render_page(
        "error.html",
        title=f"{status_code} {heading}",
        status_code=status_code,
        heading=heading,
        message=message,
        path=path,
    )
