from .config import load_sofa_config, get_config_or_params, create_example_config
from .io import load_data, save_data
from .logging_config import get_logger, setup_logging

__all__ = [
      # io
      'load_data',
      'save_data',
      # config
      'load_sofa_config',
      'get_config_or_params',
      'create_example_config',
      # logging
      'get_logger',
      'setup_logging',
  ]
