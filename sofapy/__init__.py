import logging

from .utils.sofa import calculate_sofa_hourly, SOFAConfig
from .utils import load_data, save_data, load_sofa_config, create_example_config, setup_logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Version info
__version__ = "0.1.0"

# Public API
__all__ = [
    "calculate_sofa_hourly",
    "SOFAConfig",
    "load_data",
    "save_data",
    "load_sofa_config",
    "create_example_config",
    "setup_logging",
]
