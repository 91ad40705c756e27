"""
Hover and click behaviour shared by the three town maps.

Every map is a MapPanel holding a ShapeSet (one NORMAL/HIGHLIGHTED state per
town). Handlers are plain functions registered per event kind; they get a
ShapeEvent and return a Reaction listing which shapes to highlight or
restore and what the shared tooltip or modal should show. The panel applies
the reaction.

Panels never look each other up: bind_interactions() hands each handler the
ShapeSets it is allowed to touch.

The same handlers feed export_reactions(), which precomputes every reaction
as JSON for the script that runs in the browser.
"""

import html
import logging
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import pygal

from common import SparklineStyle
from town_data import GiniRecord, TownDataset, TownFeature

logger = logging.getLogger(__name__)

MOUSEENTER = 'mouseenter'
MOUSEOUT = 'mouseout'
CLICK = 'click'
EVENT_KINDS = (MOUSEENTER, MOUSEOUT, CLICK)


class ShapeState(Enum):
    NORMAL = 'normal'
    HIGHLIGHTED = 'highlighted'


class ShapeEvent(NamedTuple):
    kind: str
    shape_id: str
    x: float = 0
    y: float = 0


class TooltipContent(NamedTuple):
    html: str
    dx: int
    dy: int
    opacity: float
    duration: int  # fade-in, ms


class Reaction(NamedTuple):
    highlight: Tuple[Tuple['ShapeSet', str], ...] = ()
    restore: Tuple[Tuple['ShapeSet', str], ...] = ()
    tooltip: Optional[TooltipContent] = None
    hide_tooltip: Optional[int] = None  # fade-out, ms
    modal: Optional[str] = None


Handler = Callable[[ShapeEvent], Optional[Reaction]]


class ShapeSet:
    """The town shapes of one map with their highlight state and outline styles."""

    NORMAL_STYLE = {'color': '#333', 'weight': 1}

    def __init__(self, key: str, shape_ids: List[str], highlight_style: Dict[str, object]):
        self.key = key
        self.normal_style = dict(self.NORMAL_STYLE)
        self.highlight_style = highlight_style
        self._states = {shape_id: ShapeState.NORMAL for shape_id in shape_ids}

    def __contains__(self, shape_id: str) -> bool:
        return shape_id in self._states

    @property
    def shape_ids(self) -> List[str]:
        return list(self._states)

    def state(self, shape_id: str) -> ShapeState:
        return self._states[shape_id]

    def highlight(self, shape_id: str):
        if shape_id in self._states:
            self._states[shape_id] = ShapeState.HIGHLIGHTED

    def restore(self, shape_id: str):
        if shape_id in self._states:
            self._states[shape_id] = ShapeState.NORMAL

    def highlighted(self) -> List[str]:
        return [i for i, s in self._states.items() if s is ShapeState.HIGHLIGHTED]

    def style(self, shape_id: str) -> Dict[str, object]:
        """Outline style for the shape's current state."""
        if self._states.get(shape_id) is ShapeState.HIGHLIGHTED:
            return self.highlight_style
        return self.normal_style


class Tooltip:
    """State of the single tooltip element shared by all maps."""

    def __init__(self):
        self.html = ''
        self.left = 0
        self.top = 0
        self.opacity = 0.0
        self.duration = 0

    @property
    def visible(self) -> bool:
        return self.opacity > 0

    def show(self, content: TooltipContent, x: float, y: float):
        self.html = content.html
        self.left = x + content.dx
        self.top = y + content.dy
        self.opacity = content.opacity
        self.duration = content.duration

    def hide(self, duration: int):
        self.opacity = 0.0
        self.duration = duration


class Modal:
    """Blocking message box; keeps every message shown."""

    def __init__(self):
        self.messages: List[str] = []

    def show(self, message: str):
        self.messages.append(message)


class MapPanel:
    """One map: its shapes plus the handlers registered for each event kind."""

    def __init__(self, shapes: ShapeSet, tooltip: Tooltip, modal: Modal):
        self.shapes = shapes
        self.tooltip = tooltip
        self.modal = modal
        self.handlers: Dict[str, Handler] = {}

    @property
    def key(self) -> str:
        return self.shapes.key

    def on(self, kind: str, handler: Handler):
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")
        self.handlers[kind] = handler

    def dispatch(self, event: ShapeEvent) -> Optional[Reaction]:
        """Run the handler for the event and apply its reaction."""
        handler = self.handlers.get(event.kind)
        if handler is None:
            return None
        reaction = handler(event)
        if reaction is None:
            return None

        for shapes, shape_id in reaction.restore:
            shapes.restore(shape_id)
        for shapes, shape_id in reaction.highlight:
            shapes.highlight(shape_id)
        if reaction.tooltip is not None:
            self.tooltip.show(reaction.tooltip, event.x, event.y)
        elif reaction.hide_tooltip is not None:
            self.tooltip.hide(reaction.hide_tooltip)
        if reaction.modal is not None:
            self.modal.show(reaction.modal)
        return reaction


# --- Tooltip and modal text ---

FADE_IN_MS = 200
FADE_OUT_MS = 400

SPARKLINE_WIDTH = 140
SPARKLINE_HEIGHT = 50


def format_count(value: Optional[int]) -> str:
    """Thousands-separated number, 'N/A' when missing."""
    if value is None:
        return "N/A"
    return f"{value:,}"


def population_tooltip(town: TownFeature) -> str:
    # Plain count, unlike the separated counts of the other tooltips
    count = "N/A" if town.pop1980 is None else town.pop1980
    return f"<strong>{html.escape(town.name)}</strong><br/>Population 1980: {count}"


def change_tooltip(town: TownFeature, change: Optional[int]) -> str:
    return f"<strong>{html.escape(town.name)}</strong><br/>Population change: {format_count(change)}"


def gini_sparkline(group: List[GiniRecord]) -> str:
    """
    Inline SVG line chart of a county's Gini index over the years.

    Both axes are scaled to this county's own range.
    """
    chart = pygal.XY(style=SparklineStyle())
    chart.add('Gini', [(record.year, record.gini) for record in group])
    return chart.render_sparkline(
        width=SPARKLINE_WIDTH,
        height=SPARKLINE_HEIGHT,
        is_unicode=True,
        disable_xml_declaration=True,
    )


def gini_tooltip(town: TownFeature, group: List[GiniRecord], latest: GiniRecord) -> str:
    return (
        f"<strong>{html.escape(group[0].area_name)}</strong><br/>"
        f"Gini Index ({latest.year}): <b>{latest.gini:.3f}</b><br/>"
        f"Population 1980: {format_count(town.pop1980)}<br/>"
        f"Population 2010: {format_count(town.pop2010)}<br/>"
        f"{gini_sparkline(group)}"
    )


def gini_summary(town: TownFeature, group: List[GiniRecord], latest: GiniRecord) -> str:
    return (
        f"📍 {group[0].area_name}\n"
        f"Population 1980: {format_count(town.pop1980)}\n"
        f"Population 2010: {format_count(town.pop2010)}\n"
        f"Gini Index ({latest.year}): {latest.gini:.3f}"
    )


# --- Handlers ---

def linked_hover(own: ShapeSet, other: ShapeSet,
                 describe: Callable[[str], Optional[str]]) -> Handler:
    """Highlight the hovered shape and its twin in `other`, and show `describe(id)`."""
    def handle(event: ShapeEvent) -> Optional[Reaction]:
        text = describe(event.shape_id)
        if text is None:
            return None
        return Reaction(
            highlight=((own, event.shape_id), (other, event.shape_id)),
            tooltip=TooltipContent(text, dx=10, dy=-28, opacity=0.9, duration=FADE_IN_MS),
        )
    return handle


def linked_leave(own: ShapeSet, other: ShapeSet) -> Handler:
    def handle(event: ShapeEvent) -> Reaction:
        return Reaction(
            restore=((own, event.shape_id), (other, event.shape_id)),
            hide_tooltip=FADE_OUT_MS,
        )
    return handle


def gini_hover(own: ShapeSet, dataset: TownDataset, towns: Dict[str, TownFeature]) -> Handler:
    """Highlight only the hovered shape and show the Gini tooltip with its trend."""
    def handle(event: ShapeEvent) -> Optional[Reaction]:
        group = dataset.gini_group(event.shape_id)
        town = towns.get(event.shape_id)
        if not group or town is None:
            return None
        latest = dataset.latest_record_for(event.shape_id)
        return Reaction(
            highlight=((own, event.shape_id),),
            tooltip=TooltipContent(gini_tooltip(town, group, latest),
                                   dx=15, dy=-60, opacity=0.95, duration=FADE_IN_MS),
        )
    return handle


def gini_click(dataset: TownDataset, towns: Dict[str, TownFeature]) -> Handler:
    def handle(event: ShapeEvent) -> Optional[Reaction]:
        group = dataset.gini_group(event.shape_id)
        town = towns.get(event.shape_id)
        if not group or town is None:
            return None
        latest = dataset.latest_record_for(event.shape_id)
        return Reaction(modal=gini_summary(town, group, latest))
    return handle


def own_leave(own: ShapeSet) -> Handler:
    def handle(event: ShapeEvent) -> Reaction:
        return Reaction(restore=((own, event.shape_id),), hide_tooltip=FADE_OUT_MS)
    return handle


def build_panels(dataset: TownDataset, tooltip: Optional[Tooltip] = None,
                 modal: Optional[Modal] = None) -> Tuple[MapPanel, MapPanel, MapPanel]:
    """Create the population, change and Gini panels over the dataset's towns."""
    tooltip = tooltip or Tooltip()
    modal = modal or Modal()
    ids = [town.id for town in dataset.towns]
    linked_style = {'color': 'orange', 'weight': 3}
    return (
        MapPanel(ShapeSet('population', ids, dict(linked_style)), tooltip, modal),
        MapPanel(ShapeSet('change', ids, dict(linked_style)), tooltip, modal),
        MapPanel(ShapeSet('gini', ids, {'color': 'black', 'weight': 3}), tooltip, modal),
    )


def bind_interactions(panel_a: MapPanel, panel_b: MapPanel, panel_c: MapPanel, dataset: TownDataset):
    """
    Register the hover/click handlers of the three maps.

    Map A and map B highlight each other's shapes; map C only its own, with a
    richer tooltip and a click summary.
    """
    towns = {town.id: town for town in dataset.towns}

    def describe_population(shape_id):
        town = towns.get(shape_id)
        return population_tooltip(town) if town else None

    def describe_change(shape_id):
        town = towns.get(shape_id)
        return change_tooltip(town, dataset.changes.get(shape_id)) if town else None

    panel_a.on(MOUSEENTER, linked_hover(panel_a.shapes, panel_b.shapes, describe_population))
    panel_a.on(MOUSEOUT, linked_leave(panel_a.shapes, panel_b.shapes))

    panel_b.on(MOUSEENTER, linked_hover(panel_b.shapes, panel_a.shapes, describe_change))
    panel_b.on(MOUSEOUT, linked_leave(panel_b.shapes, panel_a.shapes))

    panel_c.on(MOUSEENTER, gini_hover(panel_c.shapes, dataset, towns))
    panel_c.on(MOUSEOUT, own_leave(panel_c.shapes))
    panel_c.on(CLICK, gini_click(dataset, towns))


# --- Export for the browser ---

def _reaction_json(reaction: Optional[Reaction]) -> Optional[dict]:
    if reaction is None:
        return None
    return {
        'highlight': [[shapes.key, shape_id] for shapes, shape_id in reaction.highlight],
        'restore': [[shapes.key, shape_id] for shapes, shape_id in reaction.restore],
        'tooltip': reaction.tooltip._asdict() if reaction.tooltip else None,
        'hide': reaction.hide_tooltip,
        'modal': reaction.modal,
    }


def export_reactions(panels: List[MapPanel]) -> dict:
    """
    Precompute every panel's reaction to every event on every shape.

    Reactions do not depend on the pointer position (the browser adds the
    tooltip offsets), so one entry per (panel, event, shape) is enough.
    Shapes without a reaction are left out.

    Returns:
        {'styles': {panel: {'normal': ..., 'highlight': ...}},
         'reactions': {panel: {event: {shape_id: reaction}}}}
    """
    styles = {}
    reactions = {}
    for panel in panels:
        styles[panel.key] = {'normal': panel.shapes.normal_style, 'highlight': panel.shapes.highlight_style}
        by_kind = {}
        for kind, handler in panel.handlers.items():
            entries = {}
            for shape_id in panel.shapes.shape_ids:
                entry = _reaction_json(handler(ShapeEvent(kind, shape_id)))
                if entry is not None:
                    entries[shape_id] = entry
            by_kind[kind] = entries
        reactions[panel.key] = by_kind

    logger.debug(f"Exported reactions for {len(panels)} panels")
    return {'styles': styles, 'reactions': reactions}
