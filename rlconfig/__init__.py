"""Rate limit descriptor configuration, a config check command, and DogStatsD metric naming."""

__version__ = "0.1.0"
__all__ = ["config", "config_check", "dogstatsd", "mogrifier"]