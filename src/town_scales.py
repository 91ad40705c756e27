"""
Color scales for the three town maps.

Each map turns a per-town value into a fill color:

- population 1980: linear light-to-dark red
- population change 1980-2010: diverging red/blue centered at zero
- latest county Gini index: sequential plasma

Scales wrap branca LinearColormaps so the same object also draws the legend.
"""

import logging
import math
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from branca.colormap import LinearColormap, linear

from town_data import TownDataset, TownFeature

logger = logging.getLogger(__name__)

COLORS = {
    'no_data': '#cccccc',       # Towns without a value
    'population_low': '#fee5d9',
    'population_high': '#de2d26',
}

# ColorBrewer RdBu, 11 classes: red for loss, blue for growth
RDBU = list(linear.RdBu_11.colors)

PLASMA = list(linear.plasma.colors)


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def extent(values: Iterable[Optional[float]]) -> Optional[Tuple[float, float]]:
    """(min, max) of the non-missing values, None when there are none."""
    present = [v for v in values if not _is_missing(v)]
    if not present:
        return None
    return min(present), max(present)


class ColorScale:
    """
    Maps numbers to hex colors through a branca colormap.

    Missing values get the fallback color. Values outside the domain are
    clamped to the end colors. When the domain collapses to one value every
    value gets the middle color of the scale.
    """

    def __init__(self, colors: List, domain: Tuple[float, float], caption: str = '',
                 fallback: str = COLORS['no_data'], index: Optional[List[float]] = None):
        self.domain = domain
        self.fallback = fallback
        self.degenerate = domain[0] >= domain[1]
        self.degenerate_color = LinearColormap(colors=colors, vmin=0, vmax=1).rgb_hex_str(0.5)

        vmin, vmax = domain
        if self.degenerate:
            # branca needs an increasing index to build the legend
            vmax = vmin + 1
            index = None
        self.colormap = LinearColormap(colors=colors, index=index, vmin=vmin, vmax=vmax, caption=caption)

    def __call__(self, value: Optional[float]) -> str:
        if _is_missing(value):
            return self.fallback
        if self.degenerate:
            return self.degenerate_color
        return self.colormap.rgb_hex_str(value)


def population_scale(dataset: TownDataset) -> ColorScale:
    """Linear scale over the extent of 1980 population."""
    domain = extent(town.pop1980 for town in dataset.towns) or (0, 1)
    return ColorScale([COLORS['population_low'], COLORS['population_high']], domain,
                      caption='Population (1980)')


def max_abs_change(dataset: TownDataset) -> float:
    """Largest magnitude of population change: max(|min|, |max|) of its extent."""
    change_extent = extent(dataset.changes.values())
    if change_extent is None:
        return 0
    return max(abs(change_extent[0]), abs(change_extent[1]))


def change_scale(dataset: TownDataset) -> ColorScale:
    """
    Diverging scale over [-maxAbsChange, +maxAbsChange].

    The symmetric domain keeps zero on the neutral midpoint even when gains
    and losses are unbalanced.
    """
    bound = max_abs_change(dataset)
    steps = len(RDBU) - 1
    index = [-bound + 2 * bound * i / steps for i in range(len(RDBU))]
    return ColorScale(RDBU, (-bound, bound), caption='Population change (1980-2010)', index=index)


def gini_scale(dataset: TownDataset) -> ColorScale:
    """Sequential scale over the extent of the latest Gini values of all counties."""
    domain = extent(dataset.latest_gini.values()) or (0, 1)
    return ColorScale(PLASMA, domain, caption='Gini index (latest)')


def fill_colors(towns: List[TownFeature], scale: ColorScale,
                value_for: Callable[[TownFeature], Optional[float]]) -> Dict[str, str]:
    """Fill color per town id."""
    return {town.id: scale(value_for(town)) for town in towns}
