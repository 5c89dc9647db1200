"""
Configuration loading utilities for sofapy.

This module provides functions to load the data-location configuration
(``sofa_config.json`` or a YAML equivalent) used when source tables are read
from disk, plus an optional ``sofa`` section holding scoring overrides.
"""

import os
import json
from typing import Dict, Any, Optional

import yaml

from .logging_config import get_logger

logger = get_logger('utils.config')

DEFAULT_CONFIG_NAME = 'sofa_config.json'
SUPPORTED_FILETYPES = ['csv', 'parquet']
REQUIRED_FIELDS = ['data_directory', 'filetype']


def _read_config_file(config_path: str) -> Dict[str, Any]:
    with open(config_path, 'r') as f:
        if config_path.endswith(('.yaml', '.yml')):
            config = yaml.safe_load(f)
        else:
            try:
                config = json.load(f)
            except json.JSONDecodeError as e:
                raise json.JSONDecodeError(
                    f"Invalid JSON in configuration file {config_path}: {str(e)}",
                    e.doc, e.pos
                )
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping at the top level")
    return config


def load_sofa_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load sofapy configuration from a JSON or YAML file.

    Parameters
    ----------
    config_path : str, optional
        Path to the configuration file. Files ending in ``.yaml``/``.yml``
        are parsed as YAML, everything else as JSON.
        If None, looks for 'sofa_config.json' in current directory.

    Returns
    -------
    dict
        Configuration dictionary with required fields validated

    Raises
    ------
    FileNotFoundError
        If config file doesn't exist
    ValueError
        If required fields are missing or invalid
    json.JSONDecodeError
        If a JSON config file is not valid JSON
    """
    if config_path is None:
        config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)

    if not os.path.exists(config_path):
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            "Please either:\n"
            f"  1. Create a {DEFAULT_CONFIG_NAME} file in the current directory\n"
            "  2. Provide config_path parameter pointing to your config file\n"
            "  3. Provide data_directory and filetype parameters directly"
        )

    config = _read_config_file(config_path)

    missing_fields = [field for field in REQUIRED_FIELDS if field not in config]
    if missing_fields:
        raise ValueError(
            f"Missing required fields in configuration file {config_path}: {missing_fields}\n"
            f"Required fields are: {REQUIRED_FIELDS}"
        )

    data_dir = config['data_directory']
    if not os.path.exists(data_dir):
        raise ValueError(
            f"Data directory specified in config does not exist: {data_dir}\n"
            f"Please check the 'data_directory' path in {config_path}"
        )

    if config['filetype'] not in SUPPORTED_FILETYPES:
        raise ValueError(
            f"Unsupported filetype '{config['filetype']}' in {config_path}\n"
            f"Supported filetypes are: {SUPPORTED_FILETYPES}"
        )

    sofa_section = config.get('sofa')
    if sofa_section is not None and not isinstance(sofa_section, dict):
        raise ValueError(f"'sofa' section in {config_path} must be a mapping")

    logger.info(f"Configuration loaded successfully from {config_path}")
    return config


def get_config_or_params(
    config_path: Optional[str] = None,
    data_directory: Optional[str] = None,
    filetype: Optional[str] = None,
    output_directory: Optional[str] = None
) -> Dict[str, Any]:
    """
    Get configuration from either config file or direct parameters.

    Loading priority:
    1. If all required params provided directly → use them
    2. If config_path provided → load from that path, allow param overrides
    3. If no params and no config_path → auto-detect sofa_config.json
    4. Parameters override config file values when both are provided

    Parameters
    ----------
    config_path : str, optional
        Path to configuration file
    data_directory : str, optional
        Direct parameter
    filetype : str, optional
        Direct parameter
    output_directory : str, optional
        Direct parameter

    Returns
    -------
    dict
        Final configuration dictionary

    Raises
    ------
    ValueError
        If neither config nor required params are provided
    """
    required_params = [data_directory, filetype]
    if all(param is not None for param in required_params):
        if filetype not in SUPPORTED_FILETYPES:
            raise ValueError(
                f"Unsupported filetype '{filetype}'. Supported filetypes are: {SUPPORTED_FILETYPES}"
            )
        config = {
            'data_directory': data_directory,
            'filetype': filetype,
        }
        if output_directory is not None:
            config['output_directory'] = output_directory
        logger.debug("Using directly provided parameters")
        return config

    try:
        config = load_sofa_config(config_path)
    except FileNotFoundError:
        if any(param is not None for param in required_params):
            missing = []
            if data_directory is None:
                missing.append('data_directory')
            if filetype is None:
                missing.append('filetype')
            raise ValueError(
                f"Incomplete parameters provided. Missing: {missing}\n"
                "Please either:\n"
                "  1. Provide all required parameters (data_directory, filetype)\n"
                f"  2. Create a {DEFAULT_CONFIG_NAME} file\n"
                "  3. Provide a config_path parameter"
            )
        else:
            raise

    if data_directory is not None:
        config['data_directory'] = data_directory
        logger.info(f"Overriding data_directory from config with: {data_directory}")

    if filetype is not None:
        config['filetype'] = filetype
        logger.info(f"Overriding filetype from config with: {filetype}")

    if output_directory is not None:
        config['output_directory'] = output_directory
        logger.info(f"Overriding output_directory from config with: {output_directory}")

    return config


def create_example_config(
    data_directory: str = "./data",
    filetype: str = "csv",
    output_directory: str = "./output",
    config_path: str = "./sofa_config.json"
) -> None:
    """
    Create an example configuration file.

    Parameters
    ----------
    data_directory : str
        Path to the directory holding the MIMIC tables and concept views
    filetype : str
        File type (csv or parquet)
    output_directory : str
        Output directory path
    config_path : str
        Where to save the config file
    """
    config = {
        "data_directory": data_directory,
        "filetype": filetype,
        "output_directory": output_directory,
        "sofa": {
            "score_window_hours": 24,
            "urine_window_hours": 24,
            "intime_rounding": "floor"
        }
    }

    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2)

    logger.info(f"Example configuration file created at: {config_path}")
