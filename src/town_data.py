"""
Data loading and joining for the Massachusetts town maps.

Loads the town topology and the county Gini table, and derives the per-town
values the maps are colored by:

- population in 1980 and 2010, straight from the town properties
- population change 2010 - 1980
- latest Gini index of the county the town joins to

Towns join to Gini rows on the last five characters of their identifiers
(the county FIPS code at the end of an ACS GEO_ID such as '0500000US25025').
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import pandas as pd

from common import download_csv_to_dataframe, download_json
from topology import topology_to_features

logger = logging.getLogger(__name__)

JOIN_KEY_LENGTH = 5


class TownFeature(NamedTuple):
    """One municipality: its GeoJSON feature plus the properties the maps use."""
    id: str
    name: str
    pop1980: Optional[int]
    pop2010: Optional[int]
    feature: dict


class GiniRecord(NamedTuple):
    county_id: str
    year: int
    gini: float
    area_name: str


class PopulationChange(NamedTuple):
    id: str
    change: Optional[int]


def join_key(value) -> str:
    """Key used to match towns with Gini groups: the last five characters of the id."""
    return str(value)[-JOIN_KEY_LENGTH:]


def _to_count(value) -> Optional[int]:
    """Convert a population property to int, None when missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return int(number)


def load_sources(topology_location: Union[str, Path],
                 gini_location: Union[str, Path]) -> Tuple[dict, pd.DataFrame]:
    """
    Fetch the topology and the Gini table concurrently.

    Returns only when both are available. A failure of either fetch is raised
    unchanged; there is no retry and no partial result.

    Args:
        topology_location: URL or path of the TopoJSON town boundaries
        gini_location: URL or path of the Gini index CSV

    Returns:
        Tuple of (parsed topology dict, raw Gini DataFrame)
    """
    with ThreadPoolExecutor(max_workers=2) as executor:
        topology_future = executor.submit(download_json, topology_location)
        gini_future = executor.submit(download_csv_to_dataframe, gini_location)
        topology = topology_future.result()
        gini_frame = gini_future.result()

    logger.info(f"Loaded topology and {len(gini_frame)} Gini rows")
    return topology, gini_frame


def load_towns(collection: dict) -> List[TownFeature]:
    """Build TownFeatures from a decoded FeatureCollection, in feature order."""
    towns = []
    for feature in collection.get('features', []):
        props = feature.get('properties', {})
        towns.append(TownFeature(
            id=str(feature.get('id')),
            name=props.get(TownDataset.NAME_PROPERTY, ''),
            pop1980=_to_count(props.get(TownDataset.POP1980_PROPERTY)),
            pop2010=_to_count(props.get(TownDataset.POP2010_PROPERTY)),
            feature=feature,
        ))
    return towns


def load_gini_records(frame: pd.DataFrame) -> List[GiniRecord]:
    """
    Normalize the raw Gini CSV into GiniRecords.

    Rows whose year or Gini estimate is not numeric are dropped with a warning.

    Raises:
        ValueError: A required column is missing
    """
    required = [TownDataset.GINI_ID_COLUMN, TownDataset.GINI_YEAR_COLUMN,
                TownDataset.GINI_VALUE_COLUMN, TownDataset.GINI_AREA_COLUMN]
    missing = [col for col in required if col not in frame.columns]
    if missing:
        raise ValueError(f"Gini data is missing columns: {', '.join(missing)}")

    df = frame.copy()
    df['county_id'] = df[TownDataset.GINI_ID_COLUMN].astype(str).apply(join_key)
    df['year'] = pd.to_numeric(df[TownDataset.GINI_YEAR_COLUMN], errors='coerce')
    df['gini'] = pd.to_numeric(df[TownDataset.GINI_VALUE_COLUMN], errors='coerce')
    df['area_name'] = df[TownDataset.GINI_AREA_COLUMN].fillna('')

    invalid = df['year'].isna() | df['gini'].isna()
    if invalid.any():
        logger.warning(f"Dropping {int(invalid.sum())} Gini rows with a non-numeric year or estimate")
        df = df[~invalid]

    return [
        GiniRecord(row.county_id, int(row.year), float(row.gini), str(row.area_name))
        for row in df[['county_id', 'year', 'gini', 'area_name']].itertuples(index=False)
    ]


def group_gini(records: List[GiniRecord]) -> Dict[str, List[GiniRecord]]:
    """
    Group Gini records by county, each group sorted by year.

    The sort is stable, so records sharing a year keep their load order.
    """
    groups: Dict[str, List[GiniRecord]] = {}
    for record in records:
        groups.setdefault(record.county_id, []).append(record)
    return {county_id: sorted(group, key=lambda r: r.year) for county_id, group in groups.items()}


def latest_record(group: List[GiniRecord], preferred_year: int = 2019) -> GiniRecord:
    """The record for preferred_year if present, else the last (most recent) record."""
    for record in group:
        if record.year == preferred_year:
            return record
    return group[-1]


def latest_gini(groups: Dict[str, List[GiniRecord]], preferred_year: int = 2019) -> Dict[str, float]:
    """Map each county id to its latest Gini value."""
    return {
        county_id: latest_record(group, preferred_year).gini
        for county_id, group in groups.items() if group
    }


def population_change(towns: List[TownFeature]) -> List[PopulationChange]:
    """Population change 1980 to 2010 per town, None when either count is missing."""
    changes = []
    for town in towns:
        if town.pop1980 is None or town.pop2010 is None:
            changes.append(PopulationChange(town.id, None))
        else:
            changes.append(PopulationChange(town.id, town.pop2010 - town.pop1980))
    return changes


class TownDataset:
    """
    Towns, Gini groups and the derived lookups, read-only after construction.
    """

    # Town properties in the topology
    NAME_PROPERTY = 'TOWN'
    POP1980_PROPERTY = 'POP1980'
    POP2010_PROPERTY = 'POP2010'

    # Columns of the ACS Gini table
    GINI_ID_COLUMN = 'id'
    GINI_YEAR_COLUMN = 'year'
    GINI_VALUE_COLUMN = 'Estimate!!Gini Index'
    GINI_AREA_COLUMN = 'Geographic Area Name'

    # Year shown as "latest" when a county has it
    LATEST_YEAR = 2019

    def __init__(self, collection: dict, gini_records: List[GiniRecord]):
        self.collection = collection
        self.towns = load_towns(collection)
        self.gini_groups = group_gini(gini_records)
        self.latest_gini = latest_gini(self.gini_groups, self.LATEST_YEAR)
        self.changes = {entry.id: entry.change for entry in population_change(self.towns)}

        unmatched = sum(1 for town in self.towns if join_key(town.id) not in self.gini_groups)
        if unmatched:
            logger.info(f"{unmatched} of {len(self.towns)} towns have no Gini data")

    @classmethod
    def from_sources(cls, topology: dict, gini_frame: pd.DataFrame, layer: str = 'ma') -> 'TownDataset':
        """Build a dataset from a parsed topology and the raw Gini DataFrame."""
        collection = topology_to_features(topology, layer)
        return cls(collection, load_gini_records(gini_frame))

    def gini_group(self, town_id: str) -> Optional[List[GiniRecord]]:
        """Year-sorted Gini records for a town's county, None when it has none."""
        return self.gini_groups.get(join_key(town_id))

    def latest_gini_for(self, town_id: str) -> Optional[float]:
        return self.latest_gini.get(join_key(town_id))

    def latest_record_for(self, town_id: str) -> Optional[GiniRecord]:
        group = self.gini_group(town_id)
        if not group:
            return None
        return latest_record(group, self.LATEST_YEAR)
