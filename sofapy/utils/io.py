import os
from typing import List, Optional, Union

import duckdb
import pandas as pd

from .config import get_config_or_params, SUPPORTED_FILETYPES
from .logging_config import get_logger

logger = get_logger('utils.io')


def _candidate_paths(data_directory: str, table_name: str, filetype: str) -> List[str]:
    """File names tried for a table, in order.

    MIMIC ships its tables upper-cased and gzip-compressed (``ICUSTAYS.csv.gz``)
    while concept views are usually exported lower-cased, so both are accepted.
    """
    names = [table_name, table_name.upper()]
    suffixes = [f'.{filetype}']
    if filetype == 'csv':
        suffixes.append('.csv.gz')
    return [
        os.path.join(data_directory, name + suffix)
        for name in dict.fromkeys(names)
        for suffix in suffixes
    ]


def resolve_table_path(table_name: str, data_directory: str, filetype: str) -> str:
    """
    Locate the file holding ``table_name`` in ``data_directory``.

    Raises
    ------
    FileNotFoundError
        If none of the candidate file names exist.
    """
    candidates = _candidate_paths(data_directory, table_name, filetype)
    for path in candidates:
        if os.path.exists(path):
            return path
    raise FileNotFoundError(
        f"No file for table '{table_name}' in {data_directory}. Tried: "
        + ", ".join(os.path.basename(p) for p in candidates)
    )


def load_data(
    table_name: str,
    config_path: Optional[str] = None,
    *,
    data_directory: Optional[str] = None,
    filetype: Optional[str] = None,
    columns: Optional[List[str]] = None,
    sample_size: Optional[int] = None,
    return_rel: bool = False,
    verbose: bool = False,
) -> Union[pd.DataFrame, duckdb.DuckDBPyRelation]:
    """
    Load a source table with the option to select specific columns.

    Parameters
    ----------
    table_name : str
        The name of the table to load, e.g. 'icustays' or 'pivoted_gcs'.
    config_path : str, optional
        Path to a sofapy config file. Ignored when both ``data_directory``
        and ``filetype`` are given.
    data_directory : str, optional
        Directory containing the data file. Overrides the config.
    filetype : str, optional
        'csv' or 'parquet'. Overrides the config.
    columns : list of str, optional
        List of column names to load.
    sample_size : int, optional
        Number of rows to load.
    return_rel : bool, default False
        If True, return a lazy DuckDB relation on the default connection so
        it can be combined with other relations in ``duckdb.sql`` queries.
    verbose : bool, default False
        If True, log the resolved file.

    Returns
    -------
    pd.DataFrame or duckdb.DuckDBPyRelation

    Examples
    --------
    >>> rel = load_data('pivoted_gcs', data_directory='/data/mimic', filetype='csv', return_rel=True)
    >>> rel.filter("gcs < 9").df()  # doctest: +SKIP
    """
    config = get_config_or_params(
        config_path=config_path,
        data_directory=data_directory,
        filetype=filetype,
    )
    table_format_type = config['filetype']
    if table_format_type not in SUPPORTED_FILETYPES:
        raise ValueError("Unsupported filetype. Only 'csv' and 'parquet' are supported.")

    file_path = resolve_table_path(table_name, config['data_directory'], table_format_type)
    if verbose:
        logger.info(f"Loading {table_name} from {os.path.basename(file_path)}" + (" (lazy)" if return_rel else ""))

    if table_format_type == 'csv':
        rel = duckdb.read_csv(file_path)
    else:
        rel = duckdb.read_parquet(file_path)

    if columns:
        rel = rel.project(", ".join(columns))

    if sample_size:
        rel = rel.limit(sample_size)

    if return_rel:
        return rel

    df = rel.df()
    if verbose:
        logger.info(f"Data loaded successfully: {len(df)} rows from {os.path.basename(file_path)}")
    return df


def save_data(
    result: Union[pd.DataFrame, duckdb.DuckDBPyRelation],
    table_name: str,
    output_directory: str,
    filetype: str = 'parquet',
) -> str:
    """
    Write a result table to ``<output_directory>/<table_name>.<filetype>``.

    Parameters
    ----------
    result : pd.DataFrame or duckdb.DuckDBPyRelation
        Table to write, e.g. the output of ``calculate_sofa_hourly``.
    table_name : str
        Base file name without extension.
    output_directory : str
        Created if it does not exist.
    filetype : str, default 'parquet'
        'csv' or 'parquet'.

    Returns
    -------
    str
        Path of the written file.
    """
    if filetype not in SUPPORTED_FILETYPES:
        raise ValueError(f"Unsupported filetype '{filetype}'. Supported filetypes are: {SUPPORTED_FILETYPES}")

    os.makedirs(output_directory, exist_ok=True)
    file_path = os.path.join(output_directory, f"{table_name}.{filetype}")

    rel = duckdb.from_df(result) if isinstance(result, pd.DataFrame) else result
    if filetype == 'csv':
        rel.write_csv(file_path)
    else:
        rel.write_parquet(file_path)

    logger.info(f"Saved {table_name} to {file_path}")
    return file_path
