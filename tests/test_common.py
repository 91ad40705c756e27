import pytest
import requests

from common import SparklineStyle, download_csv_to_dataframe, download_json, fetch_text, is_url


class FakeResponse:
    def __init__(self, text, status=200):
        self.content = text.encode('utf-8')
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


def test_is_url():
    assert is_url('https://example.org/a.csv')
    assert is_url('HTTP://example.org/a.csv')
    assert not is_url('data/a.csv')


def test_fetch_text_reads_local_file(tmp_path):
    path = tmp_path / 'a.txt'
    path.write_text('hello', encoding='utf-8')

    assert fetch_text(path) == 'hello'


def test_fetch_text_raises_on_http_error(monkeypatch):
    monkeypatch.setattr(requests, 'get', lambda url, timeout: FakeResponse('', status=500))

    with pytest.raises(requests.exceptions.HTTPError):
        fetch_text('https://example.org/a.csv')


def test_csv_columns_stay_strings(tmp_path):
    path = tmp_path / 'a.csv'
    path.write_text('id,year\n0500000US25025,2019\n', encoding='utf-8')

    df = download_csv_to_dataframe(path)

    assert df['id'].iloc[0] == '0500000US25025'
    assert df['year'].iloc[0] == '2019'


def test_download_json(monkeypatch):
    monkeypatch.setattr(requests, 'get', lambda url, timeout: FakeResponse('{"type": "Topology"}'))

    assert download_json('https://example.org/t.json') == {'type': 'Topology'}


def test_sparkline_style_draws_white_lines():
    assert SparklineStyle.colors == ('#FFFFFF',)
    assert SparklineStyle.background == 'transparent'
