import secrets
import time
from html import escape
from pathlib import Path

from marketplace.config import settings

AVATAR_SIZE = 200
BACKGROUND = "#6366f1"
FOREGROUND = "#ffffff"


def avatar_dir() -> Path:
    path = Path(settings.STATIC_DIR) / "avatars"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_initials(first_name: str, last_name: str) -> str:
    return f"{first_name[:1]}{last_name[:1]}".upper()


def render_avatar_svg(initials: str) -> str:
    size = AVATAR_SIZE
    return (
        f'<svg width="{size}" height="{size}" viewBox="0 0 {size} {size}" '
        f'xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="100%" height="100%" fill="{BACKGROUND}"/>'
        f'<text x="50%" y="50%" dy="0.35em" text-anchor="middle" fill="{FOREGROUND}" '
        f'font-family="Arial, sans-serif" font-size="80" font-weight="bold">{escape(initials)}</text>'
        f"</svg>"
    )


def generate_and_store_avatar(first_name: str, last_name: str, user_id: int) -> str:
    """Write an initials avatar for the user and return its public URL."""
    svg = render_avatar_svg(get_initials(first_name, last_name))
    filename = f"avatar_{user_id}_{int(time.time() * 1000)}_{secrets.token_hex(4)}.svg"
    (avatar_dir() / filename).write_text(svg, encoding="utf-8")
    # 讓前端可直接顯示
    return f"/static/avatars/{filename}"
