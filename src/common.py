import io
import json
import logging
from pathlib import Path
from typing import Union

import pandas as pd
import requests
from pygal.style import Style

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


# Style for the small Gini trend charts embedded in the map tooltip
class SparklineStyle(Style):
    """
    PyGal style for tooltip sparklines.
    Transparent background and a single white line, drawn on the dark tooltip box.
    """
    background = 'transparent'
    plot_background = 'transparent'
    foreground = '#FFFFFF'
    foreground_strong = '#FFFFFF'
    foreground_subtle = '#FFFFFF'

    colors = ('#FFFFFF',)

    font_family = 'sans-serif'

    # Thin line, no fill or hover animation inside a tooltip
    stroke_width = 1.5
    stroke_opacity = 1.0
    stroke_opacity_hover = 1.0
    opacity = 1.0
    opacity_hover = 1.0
    transition = '0s'


def is_url(location: Union[str, Path]) -> bool:
    """Whether a source location should be fetched over HTTP."""
    return isinstance(location, str) and location.lower().startswith(('http://', 'https://'))


def fetch_text(location: Union[str, Path]) -> str:
    """
    Read a text source from a URL or a local path.

    Args:
        location: http(s) URL or filesystem path.

    Returns:
        The decoded file content.

    Raises:
        requests.exceptions.RequestException: The download failed.
        FileNotFoundError: The local file does not exist.
    """
    if is_url(location):
        logger.info(f"Downloading {location}")
        response = requests.get(location, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()  # Raise an exception for bad status codes (4xx or 5xx)
        return response.content.decode('utf-8')

    logger.info(f"Reading {location}")
    with open(location, 'r', encoding='utf-8') as f:
        return f.read()


def download_json(location: Union[str, Path]) -> dict:
    """Load a JSON document (e.g. a TopoJSON topology) from a URL or path."""
    return json.loads(fetch_text(location))


def download_csv_to_dataframe(location: Union[str, Path]) -> pd.DataFrame:
    """
    Load a CSV file from a URL or path into a pandas DataFrame.

    All columns are read as strings; numeric conversion is left to the caller.
    """
    # Use io.StringIO to treat the text as a file
    return pd.read_csv(io.StringIO(fetch_text(location)), dtype=str)
