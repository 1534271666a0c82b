"""mcp_probe.config.loader

Chargement de la configuration TOML.

Note d'architecture:
- Le package `config/` est consommé par la couche services.
- Aucun cache global: chaque appel relit le fichier, la racine de composition
  garde l'instance de `ClientSettings` qu'elle construit.
"""
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.constants import CONFIG_PATH_ENV
from ..core.exceptions import ConfigurationError

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(obj: Any) -> Any:
    """
    Récursivement étend les variables d'environnement ${VAR} dans la config.

    Les variables absentes sont laissées telles quelles.
    """
    if isinstance(obj, str):
        def replace_env_var(match):
            var_name = match.group(1)
            return os.environ.get(var_name, match.group(0))
        return _ENV_VAR_PATTERN.sub(replace_env_var, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def resolve_config_path(config_path: Optional[str] = None) -> Optional[Path]:
    """Chemin explicite, sinon la variable MCP_PROBE_CONFIG, sinon aucun."""
    raw = config_path or os.environ.get(CONFIG_PATH_ENV)
    if not raw:
        return None
    return Path(raw).expanduser()


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Charge la configuration depuis un fichier TOML.

    Args:
        config_path: Chemin vers le fichier config (optionnel)

    Returns:
        Dictionnaire de configuration (vide si aucun fichier n'est désigné)

    Raises:
        ConfigurationError: Si le fichier n'existe pas ou est invalide
    """
    path = resolve_config_path(config_path)
    if path is None:
        return {}

    if not path.exists():
        raise ConfigurationError(
            message=f"Fichier de configuration non trouvé: {path}",
            config_key="config_path",
        )

    try:
        import tomllib
    except ImportError:
        try:
            import tomli as tomllib
        except ImportError:
            raise ConfigurationError(
                message="tomllib ou tomli requis pour charger la configuration",
                config_key="dependencies",
            )

    try:
        with open(path, "rb") as f:
            raw_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            message=f"Configuration TOML invalide ({path}): {e}",
            config_key="config_path",
        ) from e

    return _expand_env_vars(raw_config)
