import logging

import pytest

from town_maps import TownMaps, create_town_maps, main


def test_render_page_has_three_tagged_maps_and_tooltip(dataset):
    html = TownMaps(dataset, width=600, height=400).render().render()

    assert '<div id="tooltip"></div>' in html
    for css_class in ('fig1', 'fig2', 'fig3'):
        assert css_class in html
    assert html.count('L.map(') == 3
    assert 'Population change (1980-2010)' in html


def test_maps_share_one_view(dataset):
    maps = TownMaps(dataset, width=600, height=400)

    first, _ = maps.create_map('population', 'A')
    second, _ = maps.create_map('gini', 'C')

    lat, lon = maps.projection.center
    assert first.location == second.location
    assert first.location == pytest.approx([lat, lon])


def test_value_for_each_map(dataset):
    maps = TownMaps(dataset)
    boston = dataset.towns[0]

    assert maps.value_for('population', boston) == 562994
    assert maps.value_for('change', boston) == 54600
    assert maps.value_for('gini', boston) == 0.55
    with pytest.raises(ValueError):
        maps.value_for('income', boston)


def test_create_town_maps(data_files):
    result = create_town_maps(*data_files, width=600, height=400)

    assert result['stats'] == {'towns': 3, 'with_gini': 2, 'max_abs_change': 54600}
    assert set(result['scales']) == {'population', 'change', 'gini'}


def test_main_writes_html(tmp_path, data_files):
    output = tmp_path / 'maps.html'

    main(['--topology', str(data_files[0]), '--gini', str(data_files[1]), '--output', str(output)])

    assert output.exists()
    assert 'tooltip' in output.read_text(encoding='utf-8')


def test_main_exits_on_missing_input(tmp_path, data_files, caplog):
    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as excinfo:
        main(['--topology', str(tmp_path / 'missing.topojson'), '--gini', str(data_files[1]),
              '--output', str(tmp_path / 'maps.html')])

    assert excinfo.value.code == 1
    assert 'Could not build maps' in caplog.text


def test_main_exits_when_output_cannot_be_written(tmp_path, data_files, caplog):
    output = tmp_path / 'no_such_dir' / 'maps.html'

    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as excinfo:
        main(['--topology', str(data_files[0]), '--gini', str(data_files[1]), '--output', str(output)])

    assert excinfo.value.code == 1
    assert 'Could not build maps' in caplog.text
    assert not output.exists()


def test_main_exits_on_wrong_layer(tmp_path, data_files):
    with pytest.raises(SystemExit):
        main(['--topology', str(data_files[0]), '--gini', str(data_files[1]), '--layer', 'towns',
              '--output', str(tmp_path / 'maps.html')])
