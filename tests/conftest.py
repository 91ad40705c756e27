import io
import json

import pandas as pd
import pytest

from town_data import TownDataset, load_gini_records
from topology import topology_to_features


def _square(x0):
    # Delta-encoded unit square starting at quantized (x0, 0)
    return [[x0, 0], [100, 0], [0, 100], [-100, 0], [0, -100]]


@pytest.fixture
def topology():
    """Quantized topology with three towns side by side, 0.1 degree each."""
    return {
        'type': 'Topology',
        'transform': {'scale': [0.001, 0.001], 'translate': [-71.2, 42.2]},
        'arcs': [_square(0), _square(100), _square(200)],
        'objects': {
            'ma': {
                'type': 'GeometryCollection',
                'geometries': [
                    {'type': 'Polygon', 'id': '25025', 'arcs': [[0]],
                     'properties': {'TOWN': 'BOSTON', 'POP1980': 562994, 'POP2010': 617594}},
                    {'type': 'Polygon', 'id': '25017', 'arcs': [[1]],
                     'properties': {'TOWN': 'CAMBRIDGE', 'POP1980': 95322, 'POP2010': 105162}},
                    {'type': 'MultiPolygon', 'id': '25005', 'arcs': [[[2]]],
                     'properties': {'TOWN': 'FALL RIVER', 'POP1980': 92574, 'POP2010': 88857}},
                ],
            }
        },
    }


GINI_CSV = """id,year,Estimate!!Gini Index,Geographic Area Name
0500000US25025,2015,0.53,"Suffolk County, Massachusetts"
0500000US25025,2019,0.55,"Suffolk County, Massachusetts"
0500000US25025,2017,0.54,"Suffolk County, Massachusetts"
0500000US25017,2015,0.46,"Middlesex County, Massachusetts"
0500000US25017,2017,0.47,"Middlesex County, Massachusetts"
"""


@pytest.fixture
def gini_csv_text():
    return GINI_CSV


@pytest.fixture
def gini_frame(gini_csv_text):
    return pd.read_csv(io.StringIO(gini_csv_text), dtype=str)


@pytest.fixture
def data_files(tmp_path, topology, gini_csv_text):
    topology_path = tmp_path / 'towns.topojson'
    gini_path = tmp_path / 'gini_index.csv'
    topology_path.write_text(json.dumps(topology), encoding='utf-8')
    gini_path.write_text(gini_csv_text, encoding='utf-8')
    return topology_path, gini_path


@pytest.fixture
def dataset(topology, gini_frame):
    return TownDataset(topology_to_features(topology, 'ma'), load_gini_records(gini_frame))
