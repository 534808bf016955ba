"""
Shared helper functions and utilities.

Logging setup and configuration loading used across the project.
"""

import copy
import json
import logging
import os


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging initialized")


DEFAULT_CONFIG = {
    # Video settings
    'camera_id': 0,
    'video_width': 1280,
    'video_height': 720,
    'video_fps': 30,
    'camera_backend_priority': None,
    'camera_init_attempts': 10,
    'video_file': None,

    # Marker detection
    'markers': {
        'dictionary': 'DICT_4X4_50',
        'allowed_ids': None,  # restrict to these IDs, None = any
        'lens_correction': {
            'enabled': False,
            'calibration_file': None,  # Optional JSON with camera_matrix/dist_coeffs
            'camera_matrix': None,
            'dist_coeffs': [0.0, 0.0, 0.0, 0.0, 0.0],
        },
    },

    # Calibration / homography validation
    'calibration': {
        'required_markers': 4,
        'allow_hull_fallback': False,  # best-effort path for more than 4 markers
        'snapshot_on_save': True,
        'min_ransac_threshold': 3.0,  # pixels
        'ransac_threshold_ratio': 0.01,  # of the marker bbox diagonal
        'colinear_area_ratio': 0.05,
        'max_side_ratio': 5.0,
        'min_determinant': 1e-10,
        'min_scale': 1e-4,
        'max_scale': 10.0,
        'max_shear_ratio': 10.0,
    },

    # Live projection
    'projection': {
        'enable_smoothing': True,
        'smoothing_alpha': 0.3,  # EMA factor (0 = max smooth, 1 = no smooth)
        'ransac_threshold': 5.0,
        'min_homography_markers': 4,
    },

    # Persistence
    'storage': {
        'path': 'racklocate_data',
    },

    # Display
    'display_width': 1280,
    'display_height': 720,
    'show_markers': True,
}

SECTIONS = ('markers', 'calibration', 'projection', 'storage')


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections present in the file are merged key by key over the defaults.

    Args:
        config_path: Path to configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
            return config

        for key, value in loaded_config.items():
            if key in SECTIONS and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value
        logging.info(f"Configuration loaded from {config_path}")

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except OSError as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    for key in ('camera_id',) + SECTIONS:
        if key not in config:
            logging.error(f"Missing required config key: {key}")
            return False

    alpha = config['projection'].get('smoothing_alpha', 0.3)
    if not 0.0 < alpha <= 1.0:
        logging.error("Smoothing alpha must be in (0, 1]")
        return False

    if config['calibration'].get('required_markers', 4) < 4:
        logging.error("Calibration needs at least 4 markers")
        return False

    logging.info("Configuration validated successfully")
    return True
