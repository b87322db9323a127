"""
Logging Setup for the transcoding pipeline
Applies the packaged logging.yaml (dictConfig) with a colored console and
file handlers redirected into the requested logs directory
"""

import os
import logging
import logging.config
import yaml
from colorama import init, Fore, Style
from typing import Any, Dict, Optional

# Initialize colorama for Windows compatibility
init(autoreset=True)

ROOT_LOGGER_NAME = 'reelsqueeze'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'
CONSOLE_DATEFMT = '%H:%M:%S'
DETAILED_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


class ColoredFormatter(logging.Formatter):
    """Console formatter coloring the level name by severity"""

    LEVEL_COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record keep the plain level name
        color = self.LEVEL_COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{Style.RESET_ALL}"
        return super().format(colored)


def _file_handler(filename: str, level: str) -> Dict[str, Any]:
    return {'class': 'logging.FileHandler', 'level': level, 'formatter': 'detailed',
            'filename': filename, 'mode': 'a'}


def default_logging_config(logs_dir: str = "logs") -> dict:
    """Built-in configuration used when logging.yaml is missing or has no `logging` section"""
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'detailed': {'format': DETAILED_FORMAT, 'datefmt': '%Y-%m-%d %H:%M:%S'},
            'console': {'format': CONSOLE_FORMAT, 'datefmt': CONSOLE_DATEFMT},
        },
        'handlers': {
            'console': {'class': 'logging.StreamHandler', 'level': 'WARNING', 'formatter': 'console',
                        'stream': 'ext://sys.stdout'},
            'file': _file_handler(os.path.join(logs_dir, 'reelsqueeze.log'), 'DEBUG'),
            'error_file': _file_handler(os.path.join(logs_dir, 'errors.log'), 'ERROR'),
        },
        'root': {'level': 'DEBUG', 'handlers': ['console', 'file', 'error_file']},
    }


def _load_logging_config(config_path: str, logs_dir: str) -> Dict[str, Any]:
    if not os.path.exists(config_path):
        print(f"Warning: Logging config file not found at {config_path}, using default configuration")
        return default_logging_config(logs_dir)
    with open(config_path, 'r', encoding='utf-8') as file:
        config_data = yaml.safe_load(file) or {}
    return config_data.get('logging') or default_logging_config(logs_dir)


def _basic_fallback(reason: str) -> logging.Logger:
    logging.basicConfig(level=logging.INFO, format=CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT)
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.error(reason)
    logger.info("Using basic logging configuration as fallback")
    return logger


def setup_logging(config_path: Optional[str] = None, log_level: Optional[str] = None,
                  logs_dir: str = "logs") -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file (packaged logging.yaml when None)
        log_level: Override console/root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory receiving the file handlers' output
    """
    os.makedirs(logs_dir, exist_ok=True)
    if config_path is None:
        config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', 'logging.yaml')

    try:
        logging_config = _load_logging_config(config_path, logs_dir)
    except (OSError, yaml.YAMLError) as e:
        return _basic_fallback(f"Failed to load logging configuration: {e}")

    handlers = logging_config.get('handlers', {})
    for handler in handlers.values():
        if handler.get('filename'):
            handler['filename'] = os.path.join(logs_dir, os.path.basename(handler['filename']))

    if log_level:
        log_level = log_level.upper()
        logging_config.setdefault('root', {})['level'] = log_level
        if 'console' in handlers:
            handlers['console']['level'] = log_level

    try:
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        return _basic_fallback(f"Failed to apply logging configuration: {e}")

    # Colored output for the stdout console handler only
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler.stream, 'name', None) == '<stdout>':
            handler.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.info(f"Logging initialized (files in {logs_dir})")
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Logger below the package root, e.g. get_logger('cli') -> reelsqueeze.cli"""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}' if name else ROOT_LOGGER_NAME)
