"""
Massachusetts Town Maps Module

Builds a single HTML page with three linked choropleth maps of Massachusetts towns:

- Map A: population in 1980
- Map B: population change from 1980 to 2010
- Map C: Gini index of income inequality (latest year of the town's county)

Key Features:
- Loads a TopoJSON town layer and an ACS Gini CSV concurrently (paths or URLs)
- All three maps share one Mercator fit, so towns line up across maps
- Hovering a town in map A or B outlines the same town in the other map
- Map C tooltips include a small trend chart of the county's Gini index
- Clicking a town in map C shows a summary box

Example Usage:
    result = create_town_maps(
        topology_location='data/towns.topojson',
        gini_location='data/gini_index.csv',
    )
    result['figure'].save('town_maps.html')

Command line:
    town-maps --topology data/towns.topojson --gini data/gini_index.csv --output town_maps.html
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import folium
import requests
from branca.element import Figure, MacroElement
from jinja2 import Template

from topology import MercatorProjection, fit_mercator
from town_data import TownDataset, TownFeature, load_sources
from town_interactions import MapPanel, bind_interactions, build_panels, export_reactions
from town_scales import ColorScale, change_scale, fill_colors, gini_scale, population_scale

logger = logging.getLogger(__name__)


class LinkedMaps(MacroElement):
    """
    Page element that wires the maps' town layers to the precomputed reactions.

    Adds the shared tooltip element, tags every map container with its class
    name and replays hover/click reactions in the browser.
    """

    _template = Template("""
        {% macro header(this, kwargs) %}
            <style>
                #tooltip {
                    position: absolute;
                    pointer-events: none;
                    opacity: 0;
                    z-index: 10000;
                    padding: 8px;
                    border-radius: 4px;
                    background: rgba(33, 33, 33, 0.9);
                    color: white;
                    font: 12px sans-serif;
                }
                {% for panel in this.panels %}.{{ panel.css_class }}{% if not loop.last %}, {% endif %}{% endfor %} {
                    display: inline-block;
                    vertical-align: top;
                    margin: 4px;
                }
            </style>
        {% endmacro %}

        {% macro html(this, kwargs) %}
            <div id="tooltip"></div>
        {% endmacro %}

        {% macro script(this, kwargs) %}
            (function() {
                var payload = {{ this.payload|tojson }};
                var tooltip = document.getElementById('tooltip');
                var layers = {
                {% for panel in this.panels %}
                    {{ panel.key|tojson }}: {{ panel.layer.get_name() }},
                {% endfor %}
                };
                {% for panel in this.panels %}
                document.getElementById({{ panel.map.get_name()|tojson }}).classList.add({{ panel.css_class|tojson }});
                {% endfor %}

                var shapes = {};
                Object.keys(layers).forEach(function(key) {
                    shapes[key] = {};
                    layers[key].eachLayer(function(shape) {
                        shapes[key][String(shape.feature.id)] = shape;
                    });
                });

                function applyStyle(ref, state) {
                    var shape = shapes[ref[0]][ref[1]];
                    if (!shape) { return; }
                    shape.setStyle(payload.styles[ref[0]][state]);
                    if (state === 'highlight') { shape.bringToFront(); }
                }

                function react(entry, e) {
                    if (!entry) { return; }
                    entry.restore.forEach(function(ref) { applyStyle(ref, 'normal'); });
                    entry.highlight.forEach(function(ref) { applyStyle(ref, 'highlight'); });
                    if (entry.tooltip) {
                        tooltip.innerHTML = entry.tooltip.html;
                        tooltip.style.transition = 'opacity ' + entry.tooltip.duration + 'ms';
                        tooltip.style.opacity = entry.tooltip.opacity;
                        tooltip.style.left = (e.originalEvent.pageX + entry.tooltip.dx) + 'px';
                        tooltip.style.top = (e.originalEvent.pageY + entry.tooltip.dy) + 'px';
                    } else if (entry.hide !== null) {
                        tooltip.style.transition = 'opacity ' + entry.hide + 'ms';
                        tooltip.style.opacity = 0;
                    }
                    if (entry.modal) { window.alert(entry.modal); }
                }

                var leafletEvents = {{ this.leaflet_events|tojson }};
                Object.keys(payload.reactions).forEach(function(key) {
                    var byKind = payload.reactions[key];
                    Object.keys(byKind).forEach(function(kind) {
                        layers[key].on(leafletEvents[kind], function(e) {
                            var shape = e.propagatedFrom || e.layer;
                            react(byKind[kind][String(shape.feature.id)], e);
                        });
                    });
                });
            })();
        {% endmacro %}
    """)

    # Handler event kinds to Leaflet event names
    LEAFLET_EVENTS = {'mouseenter': 'mouseover', 'mouseout': 'mouseout', 'click': 'click'}

    def __init__(self, panels: List['RenderedPanel'], payload: dict):
        super().__init__()
        self._name = 'LinkedMaps'
        self.panels = panels
        self.payload = payload
        self.leaflet_events = self.LEAFLET_EVENTS


class RenderedPanel:
    """A map panel together with the folium objects drawing it."""

    def __init__(self, panel: MapPanel, folium_map: folium.Map, layer: folium.GeoJson, css_class: str):
        self.key = panel.key
        self.map = folium_map
        self.layer = layer
        self.css_class = css_class


class TownMaps:
    """
    Renders the three linked town maps onto one page.

    Handles the shared projection, per-map coloring and the interaction
    wiring. Colors and outline styles are class constants.
    """

    COLORS = {
        'border': '#333',       # Town outline in the normal state
    }

    # Container class names of map A, B and C
    CONTAINER_CLASSES = ('fig1', 'fig2', 'fig3')

    FILL_OPACITY = 1.0

    def __init__(self, dataset: TownDataset, width: int = 640, height: int = 427):
        """
        Args:
            dataset: Joined towns and Gini data
            width: Width of each map in pixels
            height: Height of each map in pixels
        """
        self.dataset = dataset
        self.width = width
        self.height = height
        self.projection: MercatorProjection = fit_mercator(dataset.collection, width, height)
        self.scales: Dict[str, ColorScale] = {
            'population': population_scale(dataset),
            'change': change_scale(dataset),
            'gini': gini_scale(dataset),
        }

    def value_for(self, key: str, town: TownFeature) -> Optional[float]:
        """The value map `key` colors a town by."""
        if key == 'population':
            return town.pop1980
        if key == 'change':
            return self.dataset.changes.get(town.id)
        if key == 'gini':
            return self.dataset.latest_gini_for(town.id)
        raise ValueError(f"Unknown map: {key}")

    def create_map(self, key: str, title: str) -> Tuple[folium.Map, folium.GeoJson]:
        """
        Generate one choropleth map without a basemap.

        Returns:
            The folium map and its town layer
        """
        scale = self.scales[key]
        fills = fill_colors(self.dataset.towns, scale, lambda town: self.value_for(key, town))

        lat, lon = self.projection.center
        m = folium.Map(location=[lat, lon], zoom_start=self.projection.zoom,
                       tiles=None, width=self.width, height=self.height,
                       zoom_snap=0.1, zoom_control=False)

        # Define styling function for each town
        def get_style(feature):
            return {
                'fillColor': fills.get(str(feature.get('id')), scale.fallback),
                'color': self.COLORS['border'],
                'weight': 1,
                'fillOpacity': self.FILL_OPACITY,
            }

        # Deep copy so the three layers never share feature dicts
        geojson_copy = json.loads(json.dumps(self.dataset.collection))
        layer = folium.GeoJson(geojson_copy, style_function=get_style, name=title)
        layer.add_to(m)

        # Legend from the scale's colormap
        if not scale.degenerate:
            scale.colormap.add_to(m)

        return m, layer

    def render(self) -> Figure:
        """Build the page: three maps, the shared tooltip and the interaction script."""
        figure = Figure(title='Massachusetts Towns')

        panels = build_panels(self.dataset)
        bind_interactions(*panels, self.dataset)

        titles = {
            'population': 'Population (1980)',
            'change': 'Population change (1980-2010)',
            'gini': 'Gini index',
        }

        rendered = []
        for panel, css_class in zip(panels, self.CONTAINER_CLASSES):
            m, layer = self.create_map(panel.key, titles[panel.key])
            m.add_to(figure)
            rendered.append(RenderedPanel(panel, m, layer, css_class))

        figure.add_child(LinkedMaps(rendered, export_reactions(list(panels))))
        return figure


def create_town_maps(topology_location: Union[str, Path], gini_location: Union[str, Path],
                     width: int = 640, height: int = 427, layer: str = 'ma') -> Dict:
    """
    Convenience function to build the complete page from the two data sources.

    Args:
        topology_location: Path or URL of the TopoJSON town boundaries
        gini_location: Path or URL of the Gini index CSV
        width: Width of each map in pixels
        height: Height of each map in pixels
        layer: Name of the towns object inside the topology

    Returns:
        Dictionary containing:
            'figure': branca Figure ready for saving
            'dataset': The joined TownDataset
            'scales': Color scale per map
            'stats': Town count, towns with Gini data, largest absolute population change
    """
    topology, gini_frame = load_sources(topology_location, gini_location)
    dataset = TownDataset.from_sources(topology, gini_frame, layer)

    maps = TownMaps(dataset, width, height)
    figure = maps.render()

    matched = sum(1 for town in dataset.towns if dataset.latest_gini_for(town.id) is not None)
    change_domain = maps.scales['change'].domain
    return {
        'figure': figure,
        'dataset': dataset,
        'scales': maps.scales,
        'stats': {'towns': len(dataset.towns), 'with_gini': matched, 'max_abs_change': change_domain[1]},
    }


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Render linked choropleth maps of Massachusetts towns.")
    parser.add_argument('--topology', required=True, help="Path or URL of the towns TopoJSON file")
    parser.add_argument('--gini', required=True, help="Path or URL of the Gini index CSV file")
    parser.add_argument('--output', default='town_maps.html', help="HTML file to write")
    parser.add_argument('--width', type=int, default=640, help="Width of each map in pixels")
    parser.add_argument('--height', type=int, default=427, help="Height of each map in pixels")
    parser.add_argument('--layer', default='ma', help="Name of the towns object in the topology")
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        result = create_town_maps(args.topology, args.gini, args.width, args.height, args.layer)
        result['figure'].save(args.output)
    except requests.exceptions.RequestException as e:
        logger.error(f"ERROR: Failed to download data: {e}")
        sys.exit(1)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"ERROR: Could not build maps: {e}")
        sys.exit(1)

    stats = result['stats']
    logger.info(f"Saved {args.output} ({stats['towns']} towns, {stats['with_gini']} with Gini data)")


if __name__ == "__main__":
    main()
