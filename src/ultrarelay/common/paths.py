"""
Followed conventions:
 - https://specifications.freedesktop.org/basedir-spec/basedir-spec-latest.html
 - https://refspecs.linuxfoundation.org/FHS_3.0/fhs/ch03s15.html
"""

import os
import re
from pathlib import Path
from typing import List, Optional

API_SOCKET = 'ultrarelay.sock'
APP_DIR = 'ultrarelay'
CONFIG_FILE = 'ultrarelay.toml'
OVERRIDE_FILE = 'override.json'
DATA_LOG_FILE = 'ultrasonic_data.log'


class ConfigFileNotFoundError(FileNotFoundError):

    def __init__(self, file, search_path=()):
        self.file = file
        self.search_path = search_path

        if search_path:
            message = f"Config file `{file}` not found in the search path: {', '.join([str(dir_) for dir_ in search_path])}"
        else:
            message = f"Config file `{file}` not found"

        super().__init__(message)


def _is_root():
    return os.geteuid() == 0


def lookup_config_file() -> Path:
    return lookup_file_in_config_path(CONFIG_FILE)


def lookup_file_in_config_path(file) -> Path:
    """Returns config found in the search path
    :return: config file path
    :raise FileNotFoundError: when config lookup failed
    """
    search_path = service_config_file_search_path()
    for config_dir in search_path:
        config = config_dir / file
        if config.exists():
            return config

    raise ConfigFileNotFoundError(file, search_path)


def service_config_file_search_path() -> List[Path]:
    search_path = []

    if os.environ.get('ULTRARELAY_CONFIG_DIR'):
        search_path.append(Path(os.environ['ULTRARELAY_CONFIG_DIR']))

    base_search_path = config_file_search_path()
    # The working directory is searched as is, the others in their app subdirectory
    search_path += [base_search_path[0]] + [path / APP_DIR for path in base_search_path[1:]]

    return search_path


def config_file_search_path() -> List[Path]:
    """Sorted list of directories in which the program should look for configuration files:

    1. Current working directory
    2. ${XDG_CONFIG_HOME} or defaults to ${HOME}/.config
    3. ${XDG_CONFIG_DIRS} or defaults to /etc/xdg
    4. /etc

    :return: list of directories for configuration file lookup
    """
    search_path = [Path.cwd()]

    search_path.append(xdg_config_home())
    search_path += xdg_config_dirs()
    search_path.append(Path('/etc'))

    return search_path


def xdg_config_home() -> Path:
    if os.environ.get('XDG_CONFIG_HOME'):
        return Path(os.environ['XDG_CONFIG_HOME'])
    else:
        return Path.home() / '.config'


def xdg_config_dirs() -> List[Path]:
    if os.environ.get('XDG_CONFIG_DIRS'):
        return [Path(path) for path in re.split(r":", os.environ['XDG_CONFIG_DIRS'])]
    else:
        return [Path('/etc/xdg')]


def log_file_path(create: bool) -> Path:
    """
    1. Root user: /var/log/ultrarelay/{log-file}
    2. Non-root user: ${XDG_CACHE_HOME}/ultrarelay/{log-file} or default to ${HOME}/.cache/ultrarelay

    :param create: create path directories if not exist
    :return: log file path
    """

    if _is_root():
        path = Path('/var/log')
    else:
        if os.environ.get('XDG_CACHE_HOME'):
            path = Path(os.environ['XDG_CACHE_HOME'])
        else:
            home = Path.home()
            if os.path.exists(home):
                path = home / '.cache'
            else:
                # Fallback for system no-login user
                path = Path('/var/log')
                create = False

    if create:
        os.makedirs(path / APP_DIR, exist_ok=True)

    return path / APP_DIR / 'ultrarelay.log'


def state_dir() -> Path:
    """
    1. Root user: /var/lib/ultrarelay
    2. Non-root user: ${XDG_STATE_HOME}/ultrarelay or default to ${HOME}/.local/state/ultrarelay
    """

    if _is_root():
        return Path('/var/lib') / APP_DIR

    if os.environ.get('XDG_STATE_HOME'):
        return Path(os.environ['XDG_STATE_HOME']) / APP_DIR

    return Path.home() / '.local' / 'state' / APP_DIR


def override_file_path() -> Path:
    """Location of the persisted manual override record"""
    return state_dir() / OVERRIDE_FILE


def data_log_file_path() -> Path:
    """Default location of the CSV record of readings"""
    return state_dir() / DATA_LOG_FILE


def socket_dir() -> Path:
    """
    1. Root user: /run
    2. Non-root user: /tmp
    :return: directory path for unix domain sockets
    """

    if _is_root():
        path = Path('/run')
    else:
        path = Path("/tmp")

    return path


def socket_path(socket_name: str) -> Path:
    return socket_dir() / socket_name


def api_socket_path():
    return socket_path(API_SOCKET)


def search_api_socket() -> Optional[Path]:
    """
    Search for the API socket file in the following directories:
    1. Root user: /run/{socket-name}
    2. Non-root user: /tmp/{socket-name}

    :return: socket file path if found, None otherwise
    """
    root_path = Path('/run') / API_SOCKET
    if root_path.exists():
        return root_path

    non_root_path = Path('/tmp') / API_SOCKET
    if non_root_path.exists():
        return non_root_path

    return None
