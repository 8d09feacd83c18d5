"""
Configuration for repomem.

Two settings are required: the repository (owner/name) and an access
token. They come from environment variables, which MCP clients set per
server, or from a TOML file in the repomem home directory:

    [remote]
    repo = "owner/notes"
    token = "ghp_..."
    api_url = "https://api.github.com"   # optional

    [queue]
    path = "/somewhere/queue.json"       # optional

Environment variables take precedence over the file.
"""

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

# tomli_w for writing TOML (tomllib is read-only)
import tomli_w


CONFIG_FILENAME = "repomem.toml"
QUEUE_FILENAME = "queue.json"
DEFAULT_API_URL = "https://api.github.com"

ENV_HOME = "REPOMEM_HOME"
ENV_REPO = "REPOMEM_REPO"
ENV_TOKEN = "REPOMEM_TOKEN"
ENV_API_URL = "REPOMEM_API_URL"
ENV_QUEUE_PATH = "REPOMEM_QUEUE_PATH"

_REPO_RE = re.compile(r"^[^/\s]+/[^/\s]+$")


class ConfigError(ValueError):
    """Missing or invalid configuration."""


def parse_repo(repo: str) -> tuple[str, str]:
    """Split "owner/name". Raises ConfigError for anything else."""
    if not repo or not _REPO_RE.match(repo):
        raise ConfigError(f'Invalid repo format: "{repo}". Expected "owner/repo".')
    owner, name = repo.split("/")
    return owner, name


def get_home_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Directory for config, queue and logs ($REPOMEM_HOME or ~/.repomem)."""
    env = os.environ if env is None else env
    home = env.get(ENV_HOME)
    if home:
        return Path(home).expanduser()
    return Path.home() / ".repomem"


@dataclass
class Config:
    """Resolved configuration."""
    home: Path
    repo: str = ""
    token: str = field(default="", repr=False)
    api_url: str = DEFAULT_API_URL
    queue_path: Optional[Path] = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.home / CONFIG_FILENAME

    @property
    def resolved_queue_path(self) -> Path:
        return self.queue_path or (self.home / QUEUE_FILENAME)

    def validate(self) -> None:
        """Check the required settings are present and well-formed.

        Raises:
            ConfigError: naming the offending setting
        """
        if not self.repo:
            raise ConfigError(
                f"Repository not configured. Set {ENV_REPO}=owner/repo "
                f"or [remote] repo in {self.config_path}."
            )
        if not self.token:
            raise ConfigError(
                f"Access token not configured. Set {ENV_TOKEN} "
                f"or [remote] token in {self.config_path}."
            )
        parse_repo(self.repo)

    def describe(self) -> dict:
        """Config as a plain dict, token masked."""
        return {
            "file": str(self.config_path),
            "repo": self.repo or None,
            "token": mask_token(self.token),
            "api_url": self.api_url,
            "queue": str(self.resolved_queue_path),
        }


def mask_token(token: str) -> Optional[str]:
    if not token:
        return None
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def load_config(
    home: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Config:
    """
    Load configuration from the TOML file (if any) and the environment.

    Does not validate; call ``Config.validate()`` before connecting.

    Raises:
        ConfigError: If the TOML file exists but cannot be parsed
    """
    env = os.environ if env is None else env
    home = home if home is not None else get_home_dir(env)
    config = Config(home=home)

    if config.config_path.exists():
        try:
            with open(config.config_path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            raise ConfigError(f"Cannot read {config.config_path}: {e}") from e
        remote = data.get("remote", {})
        config.repo = str(remote.get("repo", ""))
        config.token = str(remote.get("token", ""))
        config.api_url = str(remote.get("api_url", DEFAULT_API_URL))
        queue_path = data.get("queue", {}).get("path")
        if queue_path:
            config.queue_path = Path(queue_path).expanduser()

    if env.get(ENV_REPO):
        config.repo = env[ENV_REPO].strip()
    if env.get(ENV_TOKEN):
        config.token = env[ENV_TOKEN].strip()
    if env.get(ENV_API_URL):
        config.api_url = env[ENV_API_URL].strip()
    if env.get(ENV_QUEUE_PATH):
        config.queue_path = Path(env[ENV_QUEUE_PATH]).expanduser()

    return config


def save_config(config: Config) -> None:
    """
    Write the config file.

    Creates the home directory if needed. The file holds a credential,
    so it is created readable by the owner only.
    """
    config.home.mkdir(parents=True, exist_ok=True)

    remote = {"repo": config.repo, "token": config.token}
    if config.api_url != DEFAULT_API_URL:
        remote["api_url"] = config.api_url
    data: dict = {"remote": remote}
    if config.queue_path is not None:
        data["queue"] = {"path": str(config.queue_path)}

    fd = os.open(config.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        tomli_w.dump(data, f)
