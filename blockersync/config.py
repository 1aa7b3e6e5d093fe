# blockersync/config.py
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from .errors import ConfigInvalid

VISIBILITIES = ('default', 'public', 'private')


@dataclass
class GoogleConfig:
    client_id: str
    client_secret: str

    def client_config(self) -> dict:
        """OAuth client description in the shape google-auth-oauthlib expects."""
        return {
            'installed': {
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'auth_uri': 'https://accounts.google.com/o/oauth2/auth',
                'token_uri': 'https://oauth2.googleapis.com/token',
                'redirect_uris': ['http://localhost'],
            }
        }


@dataclass
class CalDAVServer:
    url: str
    username: str
    password: str
    name: str = ''


@dataclass
class Config:
    database: Path
    google: Optional[GoogleConfig] = None
    caldav_servers: Dict[str, CalDAVServer] = field(default_factory=dict)
    disable_reminders: bool = False
    event_visibility: str = 'default'
    log_level: str = 'INFO'


def get_config_path() -> Path:
    """
    Locate the YAML config file:
      1. $BLOCKERSYNC_CONFIG
      2. $XDG_CONFIG_HOME/blockersync/config.yaml
      3. $HOME/.config/blockersync/config.yaml
    """
    if 'BLOCKERSYNC_CONFIG' in os.environ:
        return Path(os.environ['BLOCKERSYNC_CONFIG']).expanduser()
    xdg_cfg = Path(os.getenv('XDG_CONFIG_HOME', Path.home() / '.config'))
    return xdg_cfg / 'blockersync' / 'config.yaml'


def get_default_database() -> Path:
    """
    Default ledger location:
      1. $XDG_DATA_HOME/blockersync/blockersync.db
      2. $HOME/.local/share/blockersync/blockersync.db
    """
    xdg_data = Path(os.getenv('XDG_DATA_HOME', Path.home() / '.local' / 'share'))
    return xdg_data / 'blockersync' / 'blockersync.db'


def _parse_google(entry) -> Optional[GoogleConfig]:
    if entry is None:
        return None
    if not isinstance(entry, dict):
        raise ConfigInvalid("'google' must be a mapping")
    for key in ('client_id', 'client_secret'):
        if not entry.get(key):
            raise ConfigInvalid(f"Missing '{key}' in 'google' section")
    return GoogleConfig(client_id=entry['client_id'], client_secret=entry['client_secret'])


def _parse_caldav(entry) -> Dict[str, CalDAVServer]:
    if entry is None:
        return {}
    servers = entry.get('servers') if isinstance(entry, dict) else None
    if not isinstance(servers, dict):
        raise ConfigInvalid("'caldav.servers' must be a mapping of server name to settings")

    result = {}
    for name, params in servers.items():
        if not isinstance(params, dict):
            raise ConfigInvalid(f"CalDAV server '{name}' must be a mapping")
        for key in ('url', 'username'):
            if key not in params:
                raise ConfigInvalid(f"Missing '{key}' for CalDAV server '{name}'")
        # password or command
        if 'password_cmd' in params:
            try:
                pwd = subprocess.check_output(
                    params['password_cmd'], shell=True, text=True
                ).strip()
            except subprocess.CalledProcessError as e:
                raise ConfigInvalid(f"password_cmd for CalDAV server '{name}' failed: {e}") from e
        elif 'password' in params:
            pwd = params['password']
        else:
            raise ConfigInvalid(f"CalDAV server '{name}' needs 'password' or 'password_cmd'")
        result[str(name)] = CalDAVServer(
            url=params['url'],
            username=params['username'],
            password=pwd,
            name=params.get('name', ''),
        )
    return result


def parse_config(raw: dict) -> Config:
    """Validate a decoded YAML document and build a Config."""
    if not isinstance(raw, dict):
        raise ConfigInvalid("Config must be a YAML mapping")

    if raw.get('database'):
        database = Path(raw['database']).expanduser()
    else:
        database = get_default_database()

    visibility = raw.get('event_visibility', 'default')
    if visibility not in VISIBILITIES:
        raise ConfigInvalid(
            f"Unsupported event_visibility '{visibility}' (expected one of {', '.join(VISIBILITIES)})"
        )

    disable_reminders = raw.get('disable_reminders', False)
    if not isinstance(disable_reminders, bool):
        raise ConfigInvalid("'disable_reminders' must be true or false")

    return Config(
        database=database,
        google=_parse_google(raw.get('google')),
        caldav_servers=_parse_caldav(raw.get('caldav')),
        disable_reminders=disable_reminders,
        event_visibility=visibility,
        log_level=str(raw.get('log_level', 'INFO')),
    )


def load_config(path: Optional[Path] = None) -> Config:
    """Load and validate configuration."""
    cfg_path = Path(path).expanduser() if path else get_config_path()
    if not cfg_path.exists():
        raise ConfigInvalid(f"Config not found: {cfg_path}")
    try:
        raw = yaml.safe_load(cfg_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Cannot parse {cfg_path}: {e}") from e
    return parse_config(raw)
