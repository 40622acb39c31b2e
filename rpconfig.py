#!/usr/bin/env python3
"""
rpda configuration - YAML config file and copy name identifiers

The config file is read once per invocation into an immutable Config
snapshot that is passed explicitly to the orchestrator.
"""

import logging
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from rpmodels import ConfigurationError, SelectionIntent

logger = logging.getLogger(__name__)

CONFIG_NAME = ".rpda.yaml"
DEFAULT_URL = "https://recoverpoint_fqdn/"
DEFAULT_USERNAME = "username"

TEMPLATE: Dict[str, Any] = {
    "api": {
        "url": DEFAULT_URL,
        "username": DEFAULT_USERNAME,
        "delay": 0,
        "polldelay": 3,
        "pollmax": 30,
        "verify_ssl": False,
        "authorized_only": False,
    },
    "identifiers": {
        "match": "regexp",
        "production_node": "_PN$",
        "copy_node": "_CN$",
        "test_node": "^TC_",
    },
}

ENV_OVERRIDES = {
    "RPDA_API_URL": "url",
    "RPDA_API_USERNAME": "username",
    "RPDA_API_PASSWORD": "password",
}


class SubstringMatcher:
    """Matches copy names containing a fixed string"""

    def __init__(self, pattern: str):
        self.pattern = pattern

    def matches(self, name: str) -> bool:
        return self.pattern in name

    def __repr__(self) -> str:
        return f"SubstringMatcher({self.pattern!r})"


class PatternMatcher:
    """Matches copy names against a regular expression (search, not fullmatch)"""

    def __init__(self, pattern: str):
        self.pattern = pattern
        try:
            self._regex = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid identifier regexp '{pattern}': {e}")

    def matches(self, name: str) -> bool:
        return self._regex.search(name) is not None

    def __repr__(self) -> str:
        return f"PatternMatcher({self.pattern!r})"


MATCHERS = {
    "regexp": PatternMatcher,
    "contains": SubstringMatcher,
}


@dataclass(frozen=True)
class Identifiers:
    production: Any
    dr: Any
    test: Any

    @classmethod
    def build(
        cls, production: str, dr: str, test: str, match: str = "regexp"
    ) -> "Identifiers":
        """
        Build the three copy name rules with the selected matching strategy.

        Args:
            production: Rule for production (primary) copies
            dr: Rule for disaster recovery copies
            test: Rule for test copies
            match: "regexp" or "contains"

        Raises:
            ConfigurationError: Unknown strategy, empty rule or invalid regexp
        """
        matcher_cls = MATCHERS.get(match)
        if matcher_cls is None:
            raise ConfigurationError(
                f"identifiers.match must be one of {sorted(MATCHERS)}, got '{match}'"
            )
        rules = {"production_node": production, "copy_node": dr, "test_node": test}
        empty = [key for key, value in rules.items() if not value]
        if empty:
            raise ConfigurationError(f"Empty identifier rule(s): {empty}")
        return cls(
            production=matcher_cls(production),
            dr=matcher_cls(dr),
            test=matcher_cls(test),
        )

    def for_role(self, role: str):
        return self.test if role == SelectionIntent.TEST else self.dr


@dataclass(frozen=True)
class Config:
    url: str
    username: str
    password: Optional[str]
    identifiers: Identifiers
    delay: float = 0
    poll_delay: float = 3
    poll_max: int = 30
    verify_ssl: bool = False
    authorized_only: bool = False
    check_mode: bool = False

    def with_overrides(self, **overrides) -> "Config":
        """Return a copy with the non-None overrides applied"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        config = replace(self, **changes)
        config.validate()
        return config

    def validate(self) -> None:
        if self.url.rstrip("/") == DEFAULT_URL.rstrip("/") or self.username == DEFAULT_USERNAME:
            raise ConfigurationError(
                "Sample configuration detected. Please update api.url and api.username"
            )
        if not self.url.startswith(("http://", "https://")):
            raise ConfigurationError(f"api.url must be an http(s) URL, got '{self.url}'")
        if self.delay < 0 or self.poll_delay < 0:
            raise ConfigurationError("api.delay and api.polldelay cannot be negative")
        if self.poll_max < 1:
            raise ConfigurationError("api.pollmax must be at least 1")


def default_config_path() -> Path:
    return Path.home() / CONFIG_NAME


def find_config(explicit: Optional[str] = None) -> Optional[Path]:
    """Locate the config file: explicit path, then home directory, then cwd"""
    if explicit:
        return Path(explicit)
    for candidate in (default_config_path(), Path.cwd() / CONFIG_NAME):
        if candidate.exists():
            return candidate
    return None


def write_template(path: Path) -> Path:
    with open(path, "w") as f:
        yaml.safe_dump(TEMPLATE, f, default_flow_style=False, sort_keys=False)
    logger.info(f"New configuration created. Please update: {path}")
    return path


def _flag(api: Dict[str, Any], key: str) -> bool:
    """YAML booleans only; a quoted "false" would otherwise read as True"""
    value = api.get(key, False)
    if not isinstance(value, bool):
        raise ConfigurationError(f"api.{key} must be true or false, got {value!r}")
    return value


def parse_config(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Config:
    """
    Convert a loaded YAML document into a validated Config.

    Args:
        data: Parsed YAML mapping
        environ: Environment used for RPDA_API_* overrides (default: os.environ)

    Raises:
        ConfigurationError: Missing sections, bad types or placeholder values
    """
    if environ is None:
        environ = os.environ
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    api = dict(data.get("api") or {})
    for env_key, api_key in ENV_OVERRIDES.items():
        if environ.get(env_key):
            api[api_key] = environ[env_key]

    ids = data.get("identifiers") or {}
    missing: List[str] = [key for key in ("url", "username") if not api.get(key)]
    if missing:
        raise ConfigurationError(f"Missing api setting(s): {missing}")

    identifiers = Identifiers.build(
        production=ids.get("production_node", ""),
        dr=ids.get("copy_node", ""),
        test=ids.get("test_node", ""),
        match=ids.get("match", "regexp"),
    )

    try:
        config = Config(
            url=str(api["url"]).rstrip("/"),
            username=str(api["username"]),
            password=api.get("password"),
            identifiers=identifiers,
            delay=float(api.get("delay", 0)),
            poll_delay=float(api.get("polldelay", 3)),
            poll_max=int(api.get("pollmax", 30)),
            verify_ssl=_flag(api, "verify_ssl"),
            authorized_only=_flag(api, "authorized_only"),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid api setting: {e}")

    config.validate()

    logger.debug(
        f"Config loaded: url={config.url} username={config.username} password=REDACTED "
        f"delay={config.delay} polldelay={config.poll_delay} pollmax={config.poll_max} "
        f"verify_ssl={config.verify_ssl} authorized_only={config.authorized_only}"
    )
    logger.debug(
        f"Identifiers: production={identifiers.production!r} "
        f"dr={identifiers.dr!r} test={identifiers.test!r}"
    )
    return config


def load_config(path: Path, environ: Optional[Dict[str, str]] = None) -> Config:
    logger.info(f"Using config file: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Unable to parse {path}: {e}")
    return parse_config(data, environ=environ)
