import os
import configparser
from pathlib import Path

DEFAULT_SETTINGS = {
    'DATABASE': {
        'url': 'sqlite:///pharmacy_inventory.db',
        'echo': 'False',
    },
    'LOGGING': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'directory': 'logs',
        'max_size_mb': '10',
        'backup_count': '5',
        'console_output': 'True',
        'file_output': 'True',
    },
    'INVENTORY': {
        'expiry_warning_days': '30',
        'low_stock_threshold': '10',
        'high_priority_days': '7',
        'medium_priority_days': '14',
    },
    'REORDER': {
        'skip_without_supplier_history': 'True',
        'tax_rate': '10.0',
        'default_delivery_days': '7',
    },
}


class Config:
    """Configuration manager for the Pharmacy Inventory core."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the configuration if not already initialized."""
        if self._initialized:
            return

        self._config_path = Path(
            os.environ.get('PHARMACY_INVENTORY_CONFIG', Path('config') / 'settings.ini')
        )
        self._config = configparser.ConfigParser(interpolation=None)
        self._config.read_dict(DEFAULT_SETTINGS)

        # Values in the settings file override the defaults
        if self._config_path.exists():
            self._config.read(self._config_path)

        self._initialized = True

    def save(self):
        """Save configuration to file."""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._config_path, 'w') as configfile:
            self._config.write(configfile)

    def reset(self):
        """Drop all overrides and return to the built-in defaults."""
        self._config = configparser.ConfigParser(interpolation=None)
        self._config.read_dict(DEFAULT_SETTINGS)

    def get(self, section, key, default=None):
        """Get configuration value."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def get_int(self, section, key, default=None):
        """Get configuration value as integer."""
        try:
            return self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_float(self, section, key, default=None):
        """Get configuration value as float."""
        try:
            return self._config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_boolean(self, section, key, default=None):
        """Get configuration value as boolean."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def set(self, section, key, value):
        """Set configuration value (in memory, call save() to persist)."""
        if not self._config.has_section(section):
            self._config.add_section(section)

        self._config.set(section, key, str(value))

    def get_db_url(self):
        """Get the SQLAlchemy database URL."""
        return os.environ.get(
            'PHARMACY_INVENTORY_DB_URL',
            self.get('DATABASE', 'url', 'sqlite:///pharmacy_inventory.db')
        )

    @property
    def log_config(self):
        """Get logging configuration."""
        return {
            'level': self.get('LOGGING', 'level', 'INFO'),
            'format': self.get('LOGGING', 'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            'directory': self.get('LOGGING', 'directory', 'logs'),
            'max_size_mb': self.get_int('LOGGING', 'max_size_mb', 10),
            'backup_count': self.get_int('LOGGING', 'backup_count', 5),
            'console_output': self.get_boolean('LOGGING', 'console_output', True),
            'file_output': self.get_boolean('LOGGING', 'file_output', True)
        }

    @property
    def inventory_rules(self):
        """Get expiry and low-stock configuration."""
        return {
            'expiry_warning_days': self.get_int('INVENTORY', 'expiry_warning_days', 30),
            'low_stock_threshold': self.get_int('INVENTORY', 'low_stock_threshold', 10),
            'high_priority_days': self.get_int('INVENTORY', 'high_priority_days', 7),
            'medium_priority_days': self.get_int('INVENTORY', 'medium_priority_days', 14)
        }

    @property
    def reorder_rules(self):
        """Get reorder suggestion configuration."""
        return {
            'skip_without_supplier_history': self.get_boolean('REORDER', 'skip_without_supplier_history', True),
            'tax_rate': self.get_float('REORDER', 'tax_rate', 10.0),
            'default_delivery_days': self.get_int('REORDER', 'default_delivery_days', 7)
        }

# Global config instance
config = Config()
