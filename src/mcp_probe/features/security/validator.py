"""mcp_probe.features.security.validator

Validation des commandes stdio avant tout lancement de processus.

Règles:
- La commande (exécutable) ne doit contenir aucun métacaractère shell.
- Les arguments sont transmis tels quels en argv (jamais via un shell): on y
  refuse les séquences de substitution/chaînage, pas la ponctuation ordinaire
  (`python -c "print('x'); exit(1)"` reste valide). Le mode strict applique
  aux arguments le même jeu que pour la commande.
- Tout chemin qui remonte au-dessus de son point de départ (`..`) est refusé;
  si une racine est configurée, les chemins doivent rester dedans.

Validation tout-ou-rien, sans effet de bord.
"""
from __future__ import annotations

import logging
import os
import posixpath
from typing import Iterable, Optional, Sequence

from ...core.exceptions import ValidationError

logger = logging.getLogger(__name__)

COMMAND_FORBIDDEN_TOKENS: tuple[str, ...] = (";", "&", "|", "`", "$", ">", "<", "\n", "\r", "\x00")

ARGUMENT_FORBIDDEN_TOKENS: tuple[str, ...] = ("`", "$(", "${", "&&", "||", "|", "\n", "\r", "\x00")


def _first_token(value: str, tokens: Iterable[str]) -> Optional[str]:
    for token in tokens:
        if token in value:
            return token
    return None


def _describe(token: str) -> str:
    return {"\n": "\\n", "\r": "\\r", "\x00": "\\0"}.get(token, token)


def _looks_like_path(value: str) -> bool:
    if "://" in value:
        return False
    return (
        value.startswith(".")
        or value.startswith("~")
        or os.path.isabs(value)
        or "/" in value
        or os.sep in value
    )


def _path_candidates(arg: str) -> list[str]:
    """Extrait les valeurs de type chemin d'un argument (`--root=../x` compris)."""
    candidates = [arg]
    if arg.startswith("-") and "=" in arg:
        candidates.append(arg.split("=", 1)[1])
    return [c for c in candidates if c and _looks_like_path(c)]


def _escapes_upward(path: str) -> bool:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return normalized == ".." or normalized.startswith("../") or "/../" in normalized


class CommandValidator:
    """Refuse les commandes dangereuses avant `ProcessSupervisor.spawn`."""

    def __init__(self, allowed_root: Optional[str] = None, strict_arguments: bool = False):
        self._allowed_root = os.path.abspath(os.path.expanduser(allowed_root)) if allowed_root else None
        self._argument_tokens = COMMAND_FORBIDDEN_TOKENS if strict_arguments else ARGUMENT_FORBIDDEN_TOKENS

    @property
    def allowed_root(self) -> Optional[str]:
        return self._allowed_root

    def validate(self, command: str, args: Sequence[str] = ()) -> None:
        """
        Valide la commande et ses arguments.

        Raises:
            ValidationError: au premier élément refusé (token identifié)
        """
        if not command or not command.strip():
            raise ValidationError("Commande vide", token="", value=command or "")

        token = _first_token(command, COMMAND_FORBIDDEN_TOKENS)
        if token is not None:
            logger.warning(f"🚫 Commande refusée (métacaractère {_describe(token)!r}): {command[:80]}")
            raise ValidationError(
                f"Métacaractère shell interdit dans la commande: {_describe(token)!r}",
                token=token,
                value=command,
            )

        if _escapes_upward(command):
            raise ValidationError("Traversée de répertoire dans la commande", token="..", value=command)

        for index, arg in enumerate(args):
            self._validate_argument(index, str(arg))

    def is_safe(self, command: str, args: Sequence[str] = ()) -> bool:
        try:
            self.validate(command, args)
        except ValidationError:
            return False
        return True

    def _validate_argument(self, index: int, arg: str) -> None:
        token = _first_token(arg, self._argument_tokens)
        if token is not None:
            logger.warning(f"🚫 Argument #{index} refusé (métacaractère {_describe(token)!r})")
            raise ValidationError(
                f"Séquence shell interdite dans l'argument #{index}: {_describe(token)!r}",
                token=token,
                value=arg,
            )

        for candidate in _path_candidates(arg):
            if _escapes_upward(candidate):
                raise ValidationError(
                    f"Traversée de répertoire dans l'argument #{index}",
                    token="..",
                    value=arg,
                )
            if self._allowed_root and not self._inside_root(candidate):
                raise ValidationError(
                    f"Chemin hors de la racine autorisée dans l'argument #{index}",
                    token=candidate,
                    value=arg,
                )

    def _inside_root(self, candidate: str) -> bool:
        root = self._allowed_root
        expanded = os.path.expanduser(candidate)
        if not os.path.isabs(expanded):
            expanded = os.path.join(root, expanded)
        resolved = os.path.normpath(expanded)
        try:
            return os.path.commonpath([root, resolved]) == root
        except ValueError:
            # Lecteurs différents sous Windows
            return False
