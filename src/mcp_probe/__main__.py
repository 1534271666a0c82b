"""
Point d'entrée pour `python -m mcp_probe`.

Exemples:
    mcp-probe tools -- npx -y @modelcontextprotocol/server-everything
    mcp-probe --transport http --url http://localhost:3000/mcp call echo --arg message=hello
    mcp-probe --config probe.toml --server brave --debug tools
"""
import asyncio
import json
import logging
import re
import sys
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import ClientSettings
from .core import ConfigurationError, ConnectionConfig, McpProbeError, TransportKind
from .services import (
    ConnectionService,
    create_connection_service,
    install_signal_handlers,
    remove_signal_handlers,
)

_ARG_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")


def split_server_command(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Sépare les options du client de la commande serveur placée après `--`."""
    argv = list(argv)
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def parse_cli_arguments(pairs: Optional[Sequence[str]]) -> Dict[str, Any]:
    """
    Convertit des `clé=valeur` en dictionnaire d'arguments.

    La valeur est décodée en JSON quand c'est possible (nombres, booléens,
    tableaux), sinon conservée comme chaîne.

    Raises:
        ValueError: paire sans '=' ou clé invalide
    """
    arguments: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"Argument attendu sous la forme clé=valeur: {pair!r}")
        if not _ARG_KEY.match(key):
            raise ValueError(f"Nom d'argument invalide: {key!r}")
        try:
            arguments[key] = json.loads(raw)
        except json.JSONDecodeError:
            arguments[key] = raw
    return arguments


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="mcp-probe",
        description="Client de diagnostic MCP (commande serveur stdio après `--`)",
    )
    parser.add_argument(
        "--transport",
        default="stdio",
        help="Type de transport: stdio, sse, http (défaut: stdio)",
    )
    parser.add_argument("--url", default="", help="URL du serveur (sse/http)")
    parser.add_argument("--timeout", type=float, default=None, help="Délai de connexion en secondes")
    parser.add_argument("--config", default=None, help="Fichier TOML de configuration")
    parser.add_argument("--server", default=None, help="Serveur nommé dans la configuration")
    parser.add_argument("--debug", action="store_true", help="Affiche le journal du trafic protocolaire")
    parser.add_argument("--debug-export", default=None, help="Exporte le journal du trafic en JSONL")
    parser.add_argument("--verbose", action="store_true", help="Logs détaillés")

    actions = parser.add_subparsers(dest="action", required=True)
    actions.add_parser("tools", help="Liste les outils")
    actions.add_parser("resources", help="Liste les ressources")
    actions.add_parser("prompts", help="Liste les prompts")
    actions.add_parser("ping", help="Vérifie que le serveur répond")
    actions.add_parser("health", help="État de la connexion")

    call = actions.add_parser("call", help="Appelle un outil")
    call.add_argument("name")
    call.add_argument("--arg", action="append", default=[], metavar="CLÉ=VALEUR")

    read = actions.add_parser("read", help="Lit une ressource")
    read.add_argument("uri")

    prompt = actions.add_parser("prompt", help="Récupère un prompt")
    prompt.add_argument("name")
    prompt.add_argument("--arg", action="append", default=[], metavar="CLÉ=VALEUR")
    return parser


def build_connection_config(args, command: List[str], settings: ClientSettings) -> ConnectionConfig:
    """Configuration issue d'un serveur nommé, ou des options de la ligne de commande."""
    if args.server:
        config = settings.server(args.server)
        if args.timeout is None:
            return config
        data = config.to_dict()
        data.update(env=dict(config.env), headers=dict(config.headers), timeout=args.timeout)
        return ConnectionConfig.from_dict(data)

    timeout = args.timeout if args.timeout is not None else settings.connect_timeout
    kind = TransportKind.parse(args.transport)
    if kind is TransportKind.STDIO:
        if not command:
            raise ConfigurationError("Commande serveur manquante (à placer après `--`)")
        return ConnectionConfig(transport=kind, command=command[0], args=tuple(command[1:]), timeout=timeout)
    if not args.url:
        raise ConfigurationError(f"--url requis pour le transport {kind.value}", config_key="url")
    return ConnectionConfig(transport=kind, url=args.url, timeout=timeout)


async def run_action(service: ConnectionService, args) -> Any:
    if args.action == "tools":
        return [tool.to_dict() for tool in await service.list_tools()]
    if args.action == "resources":
        return [resource.to_dict() for resource in await service.list_resources()]
    if args.action == "prompts":
        return [prompt.to_dict() for prompt in await service.list_prompts()]
    if args.action == "ping":
        await service.ping()
        return {"ok": True}
    if args.action == "health":
        return service.health().to_dict()
    if args.action == "call":
        # Le schéma d'entrée est nécessaire pour normaliser les tableaux vides
        await service.list_tools()
        result = await service.call_tool(args.name, parse_cli_arguments(args.arg))
        return result.to_dict()
    if args.action == "read":
        return [contents.to_dict() for contents in await service.read_resource(args.uri)]
    if args.action == "prompt":
        result = await service.get_prompt(args.name, parse_cli_arguments(args.arg))
        return result.to_dict()
    raise ConfigurationError(f"Action inconnue: {args.action}")


def print_error(error: McpProbeError) -> None:
    print(f"❌ {error.message}", file=sys.stderr)
    if error.evidence and error.evidence not in error.message:
        print(f"   ↳ {error.evidence}", file=sys.stderr)
    if error.remediation:
        print(f"💡 {error.remediation}", file=sys.stderr)


async def run(args, command: List[str]) -> int:
    try:
        settings = ClientSettings.load(args.config)
        config = build_connection_config(args, command, settings)
    except (McpProbeError, ValueError) as e:
        print(f"❌ {getattr(e, 'message', e)}", file=sys.stderr)
        return 2

    service = create_connection_service(settings)
    loop = asyncio.get_running_loop()
    install_signal_handlers(service, loop)
    try:
        await service.connect(config)
        result = await run_action(service, args)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0
    except McpProbeError as e:
        print_error(e)
        return 1
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    finally:
        await service.close()
        remove_signal_handlers(loop)
        if args.debug:
            stats = service.instrumentation.stats()
            print(f"\n🔍 Trafic protocolaire ({stats['total']} entrées, {stats['evicted']} évincées)", file=sys.stderr)
            for line in service.instrumentation.format_lines():
                print(line, file=sys.stderr)
        if args.debug_export:
            await service.instrumentation.export_jsonl(args.debug_export)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Fonction principale."""
    client_argv, command = split_server_command(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(client_argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return asyncio.run(run(args, command))


if __name__ == "__main__":
    sys.exit(main())
