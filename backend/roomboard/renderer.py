"""
View renderer: pure functions from (rooms, mode) to HTML fragments.

Two granularities are produced. A board patch replaces the whole view and is
used for mode switches, resets and snapshot divergence. A room patch replaces
a single room's fragment, so a viewer editing one room's note is never
interrupted by a full redraw caused by another room.
"""

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Dict, List, Optional

from jinja2 import Template
from markupsafe import Markup

from .models import Mode, Room
from .roster import CATEGORY_LABELS

KIND_BOARD = "board"
KIND_ROOM = "room"
KIND_SUMMARY = "summary"


@dataclass
class RenderPatch:
    kind: str
    html: str
    room_id: Optional[str] = None


@dataclass
class Progress:
    out: int
    total: int

    @property
    def percent(self) -> float:
        return (self.out / self.total) * 100 if self.total > 0 else 0.0


SELECTION_ITEM = Template(
    '<div class="room-item{% if room.is_active %} selected{% endif %}" data-room-id="{{ room.room_id }}">'
    '<span class="room-name">{{ room.room_id }}</span>'
    "</div>",
    autoescape=True,
)

MANAGEMENT_ROW = Template(
    """<div class="room-row{% if room.is_checkout %} checked-out{% endif %}" data-room-id="{{ room.room_id }}">
  <div class="col-room">{{ room.room_id }}</div>
  <div class="col-status">
    <div class="status-icon-wrapper"><div class="{{ 'status-out' if room.is_checkout else 'status-stay' }}"></div></div>
    <div class="last-update">{{ time_str }}</div>
  </div>
  <div class="col-note">
    {% if room.notes %}<span class="note-text">{{ room.notes }}</span>{% else %}<span class="note-text note-empty">No note</span>{% endif %}
  </div>
</div>""",
    autoescape=True,
)

SELECTION_BOARD = Template(
    """<div class="selection-view">
{% for section in sections %}  <section class="room-category" data-category="{{ section.category }}">
    <div class="category-header"><h2 class="category-title">{{ section.label }}</h2></div>
    <div class="room-grid">{% for item in section['items'] %}{{ item }}{% endfor %}</div>
  </section>
{% endfor %}  {{ summary }}
</div>""",
    autoescape=True,
)

MANAGEMENT_BOARD = Template(
    """<div class="management-view">
{% if rows %}  {{ summary }}
  <div class="room-list-header"><div>Room</div><div>Checkout</div><div>Note</div></div>
  <div class="room-list-body">{% for row in rows %}{{ row }}{% endfor %}</div>
{% else %}  <div class="empty-state"><p>No rooms are selected for today.</p></div>
{% endif %}</div>""",
    autoescape=True,
)

SELECTION_SUMMARY = Template(
    '<div class="summary"><span id="selectedCount">{{ count }}</span> selected</div>',
    autoescape=True,
)

MANAGEMENT_SUMMARY = Template(
    '<div class="summary progress">'
    '<span id="outCount">{{ progress.out }}</span> / <span id="totalActiveCount">{{ progress.total }}</span> out'
    '<div class="progress-bar"><div class="progress-fill" style="width: {{ "%.0f"|format(progress.percent) }}%"></div></div>'
    "</div>",
    autoescape=True,
)


def progress(rooms: List[Room]) -> Progress:
    active = [room for room in rooms if room.is_active]
    return Progress(out=sum(1 for room in active if room.is_checkout), total=len(active))


def format_time(value: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    if value is None:
        return ""
    return value.astimezone(tz).strftime("%H:%M")


def _room_html(room: Room, mode: Mode, tz: Optional[tzinfo]) -> str:
    if mode == Mode.SELECTION:
        return SELECTION_ITEM.render(room=room)
    return MANAGEMENT_ROW.render(room=room, time_str=format_time(room.updated_at, tz))


def _summary_html(rooms: List[Room], mode: Mode) -> str:
    if mode == Mode.SELECTION:
        return SELECTION_SUMMARY.render(count=sum(1 for room in rooms if room.is_active))
    return MANAGEMENT_SUMMARY.render(progress=progress(rooms))


def render_room(room: Room, mode: Mode, tz: Optional[tzinfo] = None) -> RenderPatch:
    return RenderPatch(kind=KIND_ROOM, html=_room_html(room, mode, tz), room_id=room.room_id)


def render_summary(rooms: List[Room], mode: Mode) -> RenderPatch:
    return RenderPatch(kind=KIND_SUMMARY, html=_summary_html(rooms, mode))


def render_board(rooms: List[Room], mode: Mode, tz: Optional[tzinfo] = None) -> RenderPatch:
    summary = Markup(_summary_html(rooms, mode))
    if mode == Mode.SELECTION:
        sections: List[Dict[str, object]] = []
        for category, label in CATEGORY_LABELS.items():
            members = [room for room in rooms if room.category == category]
            sections.append({
                "category": category,
                "label": label,
                "items": [Markup(_room_html(room, mode, tz)) for room in members],
            })
        html = SELECTION_BOARD.render(sections=sections, summary=summary)
    else:
        rows = [Markup(_room_html(room, mode, tz)) for room in rooms if room.is_active]
        html = MANAGEMENT_BOARD.render(rows=rows, summary=summary)
    return RenderPatch(kind=KIND_BOARD, html=html)


PAGE = Template(
    """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{{ title }}</title>
</head>
<body class="mode-{{ mode.value }}{% if read_only %} viewer-mode{% endif %}">
    <header><h1>{{ title }}</h1></header>
    <main id="board">{{ board }}</main>
</body>
</html>""",
    autoescape=True,
)


def render_page(rooms: List[Room], mode: Mode, title: str = "Room Board", read_only: bool = False, tz: Optional[tzinfo] = None) -> str:
    """A complete HTML document around the board, for first paint."""
    board = Markup(render_board(rooms, mode, tz).html)
    return PAGE.render(title=title, mode=mode, board=board, read_only=read_only)


def initial_mode(rooms: List[Room]) -> Mode:
    """Management when an operating period is already in progress."""
    return Mode.MANAGEMENT if any(room.is_active for room in rooms) else Mode.SELECTION
