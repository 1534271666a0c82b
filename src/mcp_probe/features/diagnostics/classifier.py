"""mcp_probe.features.diagnostics.classifier

Classification heuristique des échecs de démarrage d'un serveur MCP stdio.

Entrée: code de sortie (None si le processus vit encore) et sortie capturée
avant tout trafic JSON-RPC valide. Sortie: une `ErrorClassification`.

Ordre des règles (la première qui correspond gagne):
1. variable d'environnement manquante
2. erreur d'usage / arguments
3. paquet ou module introuvable
4. commande introuvable (sortie non nulle uniquement)
5. message "serveur prêt" → none
6. générique (sortie non nulle + texte d'erreur)
7. none

Fonction pure: aucune I/O. L'appelant ne l'invoque que si aucun message
JSON-RPC valide n'a été vu.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Pattern, Sequence

from ...core.constants import EVIDENCE_MAX_CHARS
from ...core.models import ErrorClassification, StartupCategory

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

# ============================================================================
# VARIABLES D'ENVIRONNEMENT
# ============================================================================
_REQUIRED_WORDS = r"(?i:required|not set|missing|must be set|is not defined|undefined|empty)"

_ENV_VAR_NAMED: tuple[Pattern[str], ...] = (
    # "BRAVE_API_KEY environment variable is required"
    re.compile(r"\b([A-Z][A-Z0-9_]*)\s+(?i:env(?:ironment)?\s+var(?:iable)?)\b[^\n]*?" + _REQUIRED_WORDS),
    # "environment variable BRAVE_API_KEY is not set"
    re.compile(r"(?i:env(?:ironment)?\s+var(?:iable)?)\s+['\"`]?([A-Z][A-Z0-9_]*)['\"`]?[^\n]*?" + _REQUIRED_WORDS),
    # "Missing environment variable: BRAVE_API_KEY"
    re.compile(r"(?i:missing|required)\s+(?i:env(?:ironment)?\s+var(?:iable)?s?):?\s+['\"`]?([A-Z][A-Z0-9_]*)"),
    # "BRAVE_API_KEY is required" / "BRAVE_API_KEY not set"
    re.compile(r"\b([A-Z][A-Z0-9]*_[A-Z0-9_]+)\s+(?i:is\s+)?(?i:required|not set|must be set)\b"),
)

_ENV_VAR_ANONYMOUS = re.compile(r"(?i)environment\s+variable[^\n]*(?:required|not set|missing)")

# ============================================================================
# USAGE
# ============================================================================
_USAGE_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"(?im)^\s*(?:error:\s*)?usage:\s*\S+"),
    re.compile(r"(?i)the following arguments are required"),
    re.compile(r"(?i)\bmissing\b[^\n]*\bargument"),
    re.compile(r"(?i)\b(?:unrecognized|unknown|invalid)\s+(?:argument|option)"),
)

# ============================================================================
# PAQUETS / MODULES
# ============================================================================
_PACKAGE_RULES: tuple[tuple[Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)\bnpm\s+(?:error|ERR!)\s+(?:code\s+)?E?404\b|\bE404\b|\b404\s+not\s+found\b"),
        "Le paquet du serveur MCP est introuvable dans le registre: vérifiez son nom ou installez-le.",
    ),
    (
        re.compile(r"(?i)is not in (?:this|the npm) registry|\bpackage\b[^\n]*\bnot found\b"),
        "Le paquet du serveur MCP est introuvable dans le registre: vérifiez son nom ou installez-le.",
    ),
    (
        re.compile(r"(?i)cannot find module|\bmodule not found\b|ERR_MODULE_NOT_FOUND"),
        "Installez les dépendances Node.js du serveur (npm install).",
    ),
    (
        re.compile(r"ModuleNotFoundError|No module named|(?i:no matching distribution found)"),
        "Installez le paquet Python requis par le serveur (pip install ...).",
    ),
)

# ============================================================================
# COMMANDE INTROUVABLE
# ============================================================================
_COMMAND_NOT_FOUND: tuple[Pattern[str], ...] = (
    re.compile(r"(?i)executable file not found"),
    re.compile(r"(?i)command not found"),
    re.compile(r"(?im):\s*not found\s*$"),
    re.compile(r"(?i)(?:exec|spawn)\S*[^\n]*(?:ENOENT|no such file or directory)"),
)
_SHELL_COMMAND_NOT_FOUND_EXIT = 127

# ============================================================================
# SERVEUR PRÊT / ERREURS GÉNÉRIQUES
# ============================================================================
READY_PATTERNS: tuple[str, ...] = (
    "mcp server running",
    "server running on stdio",
    "server started",
    "listening on stdio",
    "ready for connections",
    "initialized successfully",
)

ERROR_INDICATORS: tuple[str, ...] = (
    "error:",
    "err:",
    "err!",
    "failed",
    "exception",
    "traceback",
    "fatal",
    "panic:",
    "invalid",
    "missing",
    "not found",
    "required",
    "permission denied",
)


def _clean(output: str) -> str:
    return _ANSI_ESCAPE.sub("", output or "")


def _excerpt(text: str, position: int) -> str:
    """Ligne complète contenant `position`, tronquée."""
    start = text.rfind("\n", 0, position) + 1
    end = text.find("\n", position)
    line = text[start:] if end == -1 else text[start:end]
    line = line.strip()
    if len(line) > EVIDENCE_MAX_CHARS:
        line = line[: EVIDENCE_MAX_CHARS - 3] + "..."
    return line


def is_ready_message(output: str) -> bool:
    lower = _clean(output).lower()
    return any(pattern in lower for pattern in READY_PATTERNS)


def looks_like_error(text: str) -> bool:
    lower = _clean(text).lower()
    return any(indicator in lower for indicator in ERROR_INDICATORS)


def _first_error_line(output: str) -> str:
    for line in output.splitlines():
        if looks_like_error(line):
            return _excerpt(line, 0)
    lines = [line for line in output.splitlines() if line.strip()]
    return _excerpt(lines[-1], 0) if lines else ""


def _failed(exit_code: Optional[int]) -> bool:
    return exit_code is not None and exit_code != 0


@dataclass(frozen=True)
class _Rule:
    name: str
    apply: Callable[[Optional[int], str], Optional[ErrorClassification]]


class StartupErrorClassifier:
    """Liste ordonnée de règles → catégorie, preuve, remédiation."""

    def __init__(self):
        self._rules: Sequence[_Rule] = (
            _Rule("missing_env_var", self._missing_env_var),
            _Rule("usage_error", self._usage_error),
            _Rule("package_not_found", self._package_not_found),
            _Rule("command_not_found", self._command_not_found),
            _Rule("ready", self._ready),
            _Rule("generic", self._generic),
        )

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def classify(self, exit_code: Optional[int], early_output: str) -> ErrorClassification:
        output = _clean(early_output)
        for rule in self._rules:
            result = rule.apply(exit_code, output)
            if result is not None:
                return result
        return ErrorClassification.none()

    # ------------------------------------------------------------------

    @staticmethod
    def _missing_env_var(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        for pattern in _ENV_VAR_NAMED:
            match = pattern.search(output)
            if match:
                name = match.group(1)
                return ErrorClassification(
                    category=StartupCategory.MISSING_ENV_VAR,
                    evidence=_excerpt(output, match.start()),
                    remediation=(
                        f"Définissez la variable d'environnement {name} avant de démarrer le serveur "
                        f"(ex: export {name}=... ou section env de la configuration)."
                    ),
                )
        match = _ENV_VAR_ANONYMOUS.search(output)
        if match:
            return ErrorClassification(
                category=StartupCategory.MISSING_ENV_VAR,
                evidence=_excerpt(output, match.start()),
                remediation="Définissez la variable d'environnement requise avant de démarrer le serveur.",
            )
        return None

    @staticmethod
    def _usage_error(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        for pattern in _USAGE_PATTERNS:
            match = pattern.search(output)
            if match:
                evidence = _excerpt(output, match.start())
                return ErrorClassification(
                    category=StartupCategory.USAGE_ERROR,
                    evidence=evidence,
                    remediation=(
                        "Vérifiez les arguments de la commande: le serveur attend des paramètres "
                        f"supplémentaires ({evidence})."
                    ),
                )
        return None

    @staticmethod
    def _package_not_found(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        for pattern, remediation in _PACKAGE_RULES:
            match = pattern.search(output)
            if match:
                return ErrorClassification(
                    category=StartupCategory.PACKAGE_NOT_FOUND,
                    evidence=_excerpt(output, match.start()),
                    remediation=remediation,
                )
        return None

    @staticmethod
    def _command_not_found(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        if not _failed(exit_code):
            return None
        for pattern in _COMMAND_NOT_FOUND:
            match = pattern.search(output)
            if match:
                return ErrorClassification(
                    category=StartupCategory.COMMAND_NOT_FOUND,
                    evidence=_excerpt(output, match.start()),
                    remediation="Installez la commande requise ou vérifiez qu'elle est dans le PATH.",
                )
        if exit_code == _SHELL_COMMAND_NOT_FOUND_EXIT:
            return ErrorClassification(
                category=StartupCategory.COMMAND_NOT_FOUND,
                evidence=_first_error_line(output) or f"exit status {exit_code}",
                remediation="Installez la commande requise ou vérifiez qu'elle est dans le PATH.",
            )
        return None

    @staticmethod
    def _ready(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        if is_ready_message(output):
            return ErrorClassification.none()
        return None

    @staticmethod
    def _generic(exit_code: Optional[int], output: str) -> Optional[ErrorClassification]:
        if not _failed(exit_code) or not looks_like_error(output):
            return None
        if "permission denied" in output.lower():
            remediation = "Vérifiez les permissions des fichiers ou lancez avec les droits appropriés."
        else:
            remediation = (
                "Consultez la sortie d'erreur ci-dessus et la documentation du serveur "
                "pour ses prérequis d'installation."
            )
        return ErrorClassification(
            category=StartupCategory.GENERIC,
            evidence=_first_error_line(output),
            remediation=remediation,
        )
