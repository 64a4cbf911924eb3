"""
Django settings access for the replicator.

Remote directories are configured in ``settings.LDAP_REPLICAS``, a dictionary
mapping a replica name to the options for that directory::

    LDAP_REPLICAS = {
        "ufds": {
            "url": "ldaps://ufds.example.com",
            "queries": [
                "/ou=users, o=smartdc??sub?(objectclass=sdcperson)",
            ],
            "bindDN": "cn=root",
            "bindCredentials": "secret",
            "reconnect": {"maxDelay": 10000},
            "pollInterval": 1000,
            "queueSize": 50,
        }
    }

Package-wide defaults live in ``LDAPREPLICATOR_*`` settings.
"""

import copy
from typing import Any

from django.conf import settings

from .exceptions import ConfigError

#: Options every replica configuration must carry
REQUIRED_KEYS: tuple[str, ...] = ("url", "queries")


def get_setting(setting_name: str, default_value: Any) -> Any:
    """
    Get configuration value from Django settings with fallback.

    Args:
        setting_name: Name of the setting (without LDAPREPLICATOR_ prefix)
        default_value: Default value if setting not found

    Returns:
        Configuration value from settings or default

    """
    full_setting_name = f"LDAPREPLICATOR_{setting_name}"
    return getattr(settings, full_setting_name, default_value)


def get_default_poll_interval() -> int:
    """Get default poll interval in milliseconds from settings or use fallback."""
    return get_setting("POLL_INTERVAL", 1000)


def get_default_queue_size() -> int:
    """Get default poll window size from settings or use fallback."""
    return get_setting("QUEUE_SIZE", 50)


def get_default_reconnect_max_delay() -> int:
    """Get default reconnect delay ceiling in milliseconds from settings or use fallback."""
    return get_setting("RECONNECT_MAX_DELAY", 10000)


def validate_config(config: dict[str, Any], name: str = "<inline>") -> dict[str, Any]:
    """
    Check a replica configuration and fill in defaults.

    The passed dictionary is not modified.

    Args:
        config: the replica options
        name: the replica name, used in error messages

    Raises:
        ConfigError: a required key is missing or has the wrong type

    Returns:
        A new configuration dictionary with defaults applied.

    """
    if not isinstance(config, dict):
        msg = f"LDAP replica '{name}': configuration must be a dict"
        raise ConfigError(msg)
    for key in REQUIRED_KEYS:
        if key not in config:
            msg = f"LDAP replica '{name}': missing required key '{key}'"
            raise ConfigError(msg)
    if not isinstance(config["url"], str) or not config["url"]:
        msg = f"LDAP replica '{name}': 'url' must be a non-empty string"
        raise ConfigError(msg)
    queries = config["queries"]
    if not isinstance(queries, (list, tuple)) or not all(
        isinstance(q, str) for q in queries
    ):
        msg = f"LDAP replica '{name}': 'queries' must be a list of strings"
        raise ConfigError(msg)

    validated = copy.deepcopy(config)
    validated.setdefault("bindDN", None)
    validated.setdefault("bindCredentials", None)
    reconnect = validated.get("reconnect") or {}
    reconnect.setdefault("maxDelay", get_default_reconnect_max_delay())
    validated["reconnect"] = reconnect
    validated.setdefault("pollInterval", get_default_poll_interval())
    validated.setdefault("queueSize", get_default_queue_size())
    if int(validated["queueSize"]) <= 0:
        msg = f"LDAP replica '{name}': 'queueSize' ({validated['queueSize']}) must be positive"
        raise ConfigError(msg)
    return validated


def get_replica_config(name: str) -> dict[str, Any]:
    """
    Look up and validate ``settings.LDAP_REPLICAS[name]``.

    Args:
        name: the replica name

    Raises:
        ConfigError: the setting or the named replica does not exist, or the
            replica configuration is invalid

    Returns:
        The validated replica configuration.

    """
    try:
        replicas = settings.LDAP_REPLICAS
    except AttributeError as e:
        msg = "settings.LDAP_REPLICAS does not exist!"
        raise ConfigError(msg) from e
    try:
        config = replicas[name]
    except KeyError as e:
        msg = f"settings.LDAP_REPLICAS has no key '{name}'"
        raise ConfigError(msg) from e
    return validate_config(config, name=name)
