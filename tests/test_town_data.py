import json

import pandas as pd
import pytest
import requests

from town_data import (GiniRecord, TownDataset, group_gini, join_key, latest_gini, latest_record,
                       load_gini_records, load_sources, load_towns, population_change)
from topology import topology_to_features


class FakeResponse:
    def __init__(self, text, status=200):
        self.content = text.encode('utf-8')
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


def test_load_sources_from_files(data_files):
    topology, gini_frame = load_sources(*data_files)

    assert 'ma' in topology['objects']
    assert len(gini_frame) == 5
    assert gini_frame['id'].iloc[0] == '0500000US25025'


def test_load_sources_from_urls(monkeypatch, topology, gini_csv_text):
    responses = {
        'https://example.org/towns.topojson': json.dumps(topology),
        'https://example.org/gini.csv': gini_csv_text,
    }
    monkeypatch.setattr(requests, 'get', lambda url, timeout: FakeResponse(responses[url]))

    loaded, gini_frame = load_sources('https://example.org/towns.topojson', 'https://example.org/gini.csv')

    assert loaded == topology
    assert list(gini_frame.columns)[:2] == ['id', 'year']


def test_failed_fetch_propagates(monkeypatch, data_files):
    monkeypatch.setattr(requests, 'get', lambda url, timeout: FakeResponse('', status=404))

    with pytest.raises(requests.exceptions.HTTPError):
        load_sources(data_files[0], 'https://example.org/missing.csv')


def test_missing_file_propagates(tmp_path, data_files):
    with pytest.raises(FileNotFoundError):
        load_sources(tmp_path / 'nope.topojson', data_files[1])


def test_join_key_takes_last_five_characters():
    assert join_key('0500000US25025') == '25025'
    assert join_key('25025') == '25025'
    assert join_key(17) == '17'


def test_gini_records_are_normalized(gini_frame):
    records = load_gini_records(gini_frame)

    assert records[0] == GiniRecord('25025', 2015, 0.53, 'Suffolk County, Massachusetts')
    assert {r.county_id for r in records} == {'25025', '25017'}


def test_non_numeric_gini_rows_are_dropped():
    frame = pd.DataFrame({
        'id': ['0500000US25025', '0500000US25025'],
        'year': ['2019', 'n/a'],
        'Estimate!!Gini Index': ['(X)', '0.5'],
        'Geographic Area Name': ['Suffolk', 'Suffolk'],
    })

    assert load_gini_records(frame) == []


def test_missing_gini_column():
    frame = pd.DataFrame({'id': ['0500000US25025'], 'year': ['2019']})

    with pytest.raises(ValueError, match="Estimate!!Gini Index"):
        load_gini_records(frame)


def test_groups_are_sorted_by_year(gini_frame):
    groups = group_gini(load_gini_records(gini_frame))

    assert [r.year for r in groups['25025']] == [2015, 2017, 2019]
    assert [r.year for r in groups['25017']] == [2015, 2017]


def test_sort_keeps_load_order_for_equal_years():
    records = [GiniRecord('1', 2019, 0.1, 'a'), GiniRecord('1', 2015, 0.2, 'b'), GiniRecord('1', 2019, 0.3, 'c')]

    assert [r.area_name for r in group_gini(records)['1']] == ['b', 'a', 'c']


def test_latest_prefers_2019(gini_frame):
    latest = latest_gini(group_gini(load_gini_records(gini_frame)))

    assert latest['25025'] == 0.55


def test_latest_falls_back_to_most_recent_year(gini_frame):
    groups = group_gini(load_gini_records(gini_frame))

    assert latest_record(groups['25017']).year == 2017
    assert latest_gini(groups)['25017'] == 0.47


def test_population_change(topology):
    towns = load_towns(topology_to_features(topology, 'ma'))
    changes = {entry.id: entry.change for entry in population_change(towns)}

    assert changes == {'25025': 54600, '25017': 9840, '25005': -3717}


def test_missing_population_gives_no_change():
    collection = {'features': [{'id': 'x', 'properties': {'TOWN': 'X', 'POP1980': None, 'POP2010': '12'}}]}
    towns = load_towns(collection)

    assert towns[0].pop1980 is None
    assert towns[0].pop2010 == 12
    assert population_change(towns)[0].change is None


def test_dataset_lookups(dataset):
    assert [town.name for town in dataset.towns] == ['BOSTON', 'CAMBRIDGE', 'FALL RIVER']
    assert dataset.latest_gini_for('25025') == 0.55
    assert dataset.latest_gini_for('25005') is None
    assert dataset.gini_group('25005') is None
    assert dataset.latest_record_for('25017').gini == 0.47
    assert dataset.changes['25025'] == 54600


def test_dataset_from_sources(topology, gini_frame):
    dataset = TownDataset.from_sources(topology, gini_frame, 'ma')

    assert len(dataset.towns) == 3
    assert set(dataset.latest_gini) == {'25025', '25017'}
