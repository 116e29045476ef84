"""Core launcher logic for dummyfiles.

Turns a command line of the form ``<flags> <application> [<options>...]``
into a call to one of the registered sub-applications and returns the
integer status the process should exit with.

The entry module (`dummyfiles.py`) is a thin layer over `run` defined here;
nothing in this module terminates the process, so every decision below can
be exercised directly from tests.
"""
from __future__ import annotations
import os, sys, json, uuid, argparse, importlib
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional, Callable, Iterable, List, Dict, Tuple, Any

import yaml

__version__ = "1.0.0"

# ---------------- Exit Codes & Schema ----------------
# Reserved statuses owned by the launcher. Anything else comes from a handler.
SCHEMA_VERSION = 1
EXIT_SUCCESS = 0
NO_APP_SPECIFIED = 20
UNKNOWN_APP_SPECIFIED = 21
NO_PARSE_CMD_LINE = 22
EXIT_CONFIG_ERROR = 23

Handler = Callable[[List[str]], int]

# Built-in applications, in lookup order. Targets are resolved lazily so that
# importing the core does not pull in the handlers.
DEFAULT_APPLICATIONS: Tuple[Tuple[str, str], ...] = (
    ("mirror", "dummyfiles_apps:mirror_main"),
    ("restore", "dummyfiles_apps:restore_main"),
    ("report", "dummyfiles_apps:report_main"),
)

__all__ = [
    "__version__",
    "ApplicationRequest",
    "ApplicationRegistry",
    "Diagnostics",
    "ConsoleDiagnostics",
    "CommandLineParser",
    "split_arguments",
    "dispatch",
    "build_registry",
    "run",
    "NO_APP_SPECIFIED",
    "UNKNOWN_APP_SPECIFIED",
    "NO_PARSE_CMD_LINE",
    "EXIT_CONFIG_ERROR",
]


class CommandLineError(Exception):
    """Raised by CommandLineParser instead of exiting on a usage error."""


class CommandLineExit(Exception):
    """Raised by CommandLineParser when argparse wants to exit (help/version)."""
    def __init__(self, status: int = 0, message: Optional[str] = None):
        super().__init__(message or '')
        self.status = status


class RegistryError(Exception):
    """Duplicate application name or an application target that cannot be loaded."""


# ---------------- Diagnostics -----------------
class Diagnostics:
    """Interface for launcher diagnostics (all optional, silent by default)."""
    def info(self, message: str, **data): ...
    def warn(self, message: str, **data): ...


class ConsoleDiagnostics(Diagnostics):
    """Console binding: bracketed lines on stderr, or JSON lines with an envelope.

    When an events file is given each record is also appended there as NDJSON.
    """
    def __init__(self, json_logs: bool = False, events_file: Optional[str] = None,
                 quiet: bool = False, stream=None):
        self.json_logs = json_logs
        self.events_file = events_file
        self.quiet = quiet
        self.stream = stream
        self.run_id = uuid.uuid4().hex
        self._seq = 0

    def info(self, message: str, **data):
        self._emit('info', message, data)

    def warn(self, message: str, **data):
        self._emit('warn', message, data)

    def _emit(self, level: str, message: str, data: Dict[str, Any]):
        stream = self.stream or sys.stderr
        show = not (level == 'info' and self.quiet)
        if not self.json_logs and not self.events_file:
            if show:
                print(f"[{level}] {message}", file=stream)
            return
        self._seq += 1
        payload = {
            'event': data.pop('event', 'diagnostic'),
            'level': level,
            'message': message,
            'ts': datetime.now(timezone.utc).isoformat(),
            'seq': self._seq,
            'run_id': self.run_id,
            'schema_version': SCHEMA_VERSION,
            'tool_version': __version__,
            **data
        }
        line = json.dumps(payload, default=str)
        if show:
            print(line if self.json_logs else f"[{level}] {message}", file=stream)
        if self.events_file:
            try:
                with open(self.events_file, 'a', encoding='utf-8') as ef:
                    ef.write(line + '\n')
            except OSError as e:
                print(f"[warn] could not write events file {self.events_file}: {e}", file=stream)


# ---------------- Command line -----------------
class CommandLineParser(argparse.ArgumentParser):
    """argparse parser that raises instead of terminating the process."""
    def error(self, message: str):
        raise CommandLineError(message)

    def exit(self, status: int = 0, message: Optional[str] = None):
        if message:
            print(message, file=sys.stderr, end='')
        raise CommandLineExit(status, message)


def build_parser() -> CommandLineParser:
    parser = CommandLineParser(
        prog='dummyfiles',
        description='Create, restore and report on dummy-file mirrors of directory trees.',
        epilog='Applications: ' + ', '.join(name for name, _ in DEFAULT_APPLICATIONS)
               + '. Run "dummyfiles <application> --help" for application options.')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', default=None, help='Optional config file (JSON/YAML)')
    parser.add_argument('--json-logs', action='store_true', help='Emit machine-readable JSON diagnostic lines')
    parser.add_argument('--events-file', default=None, help='Also append diagnostics to this NDJSON file')
    parser.add_argument('--quiet', action='store_true', help='Suppress informational diagnostics')
    parser.add_argument('tokens', nargs=argparse.REMAINDER, metavar='APPLICATION',
                        help='Application name followed by its own options')
    return parser


def _load_config_file(path: str) -> dict:
    if not path or not os.path.exists(path): return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.lower().endswith(('.yml', '.yaml')):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError, yaml.YAMLError):
        return {}


def _merge_config(parser: argparse.ArgumentParser, args: argparse.Namespace, cfg_file: dict):
    # Config fills only flags still at their defaults; the command line wins.
    defaults = {a.dest: a.default for a in parser._actions if hasattr(a, 'dest')}
    for k, v in cfg_file.items():
        k = str(k).replace('-', '_')
        if k in ('tokens', 'config', 'help', 'version') or not hasattr(args, k):
            continue
        cur = getattr(args, k)
        if cur == defaults.get(k) or cur in (None, ''):
            setattr(args, k, v)


# ---------------- Splitter -----------------
@dataclass(frozen=True)
class ApplicationRequest:
    """An application name and the options meant for that application.

    Both fields are None when no application was named on the command line.
    """
    app_name: Optional[str]
    app_options: Optional[List[str]]


def split_arguments(tokens) -> ApplicationRequest:
    """Split the non-flag tokens into the application name and its options.

    The caller's sequence is read, never modified.
    """
    if len(tokens) == 0:
        return ApplicationRequest(None, None)
    return ApplicationRequest(tokens[0], list(tokens[1:]))


# ---------------- Registry -----------------
class ApplicationRegistry:
    """Read-only mapping of application name to handler.

    Names match exactly (case-sensitive). Iteration follows registration order.
    """
    def __init__(self, entries: Iterable[Tuple[str, Handler]]):
        self._handlers: Dict[str, Handler] = {}
        for name, handler in entries:
            if name in self._handlers:
                raise RegistryError(f"duplicate application name: {name}")
            if not callable(handler):
                raise RegistryError(f"handler for {name!r} is not callable")
            self._handlers[name] = handler

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(name)

    def names(self) -> List[str]:
        return list(self._handlers)

    def __contains__(self, name) -> bool:
        return name in self._handlers

    def __iter__(self):
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"ApplicationRegistry({self.names()!r})"


def _resolve_target(name: str, target) -> Handler:
    if callable(target):
        return target
    if not isinstance(target, str) or ':' not in target:
        raise RegistryError(f"application {name!r}: target must look like 'module:function', got {target!r}")
    mod_name, _, attr = target.partition(':')
    try:
        mod = importlib.import_module(mod_name)
    except ImportError as e:
        raise RegistryError(f"application {name!r}: cannot import {mod_name}: {e}") from e
    fn = getattr(mod, attr, None)
    if not callable(fn):
        raise RegistryError(f"application {name!r}: {target} is not a callable")
    return fn


def _lazy_handler(name: str, target: str) -> Handler:
    def handler(options: List[str]) -> int:
        return _resolve_target(name, target)(options)
    handler.__name__ = f"{name}_handler"
    handler.__qualname__ = handler.__name__
    return handler


def build_registry(extra: Optional[Dict[str, Any]] = None) -> ApplicationRegistry:
    """Built-in applications followed by any configured extras.

    Extra targets are imported eagerly so a bad config is reported before
    anything is dispatched.
    """
    entries: List[Tuple[str, Handler]] = [(n, _lazy_handler(n, t)) for n, t in DEFAULT_APPLICATIONS]
    if extra:
        if not isinstance(extra, dict):
            raise RegistryError("'applications' must be a mapping of name to 'module:function'")
        for name, target in extra.items():
            entries.append((str(name), _resolve_target(str(name), target)))
    return ApplicationRegistry(entries)


# ---------------- Dispatcher -----------------
def dispatch(request: ApplicationRequest, registry: ApplicationRegistry,
             diagnostics: Optional[Diagnostics] = None) -> int:
    """Run the requested application and return its status unchanged.

    Exceptions raised by the handler are not caught here.
    """
    if request.app_name is None:
        return NO_APP_SPECIFIED
    handler = registry.get(request.app_name)
    if handler is None:
        (diagnostics or Diagnostics()).warn(
            f"unknown application specified: {request.app_name}",
            event='unknown_application', app_name=request.app_name, known=registry.names())
        return UNKNOWN_APP_SPECIFIED
    return handler(request.app_options)


def _fail(error: CommandLineError, diagnostics: Diagnostics) -> int:
    diagnostics.warn(f"Command-line parsing failed: {error}", event='parse_failed', error=str(error))
    return NO_PARSE_CMD_LINE


def run(argv: List[str], registry: Optional[ApplicationRegistry] = None,
        diagnostics: Optional[Diagnostics] = None) -> int:
    """Parse argv, pick the application and return the status to exit with."""
    parser = build_parser()
    try:
        args = parser.parse_args(list(argv))
    except CommandLineExit as e:
        return e.status
    except CommandLineError as e:
        return _fail(e, diagnostics or ConsoleDiagnostics())
    cfg_file = _load_config_file(args.config) if args.config else {}
    _merge_config(parser, args, cfg_file)
    if diagnostics is None:
        diagnostics = ConsoleDiagnostics(json_logs=bool(args.json_logs), events_file=args.events_file,
                                         quiet=bool(args.quiet))
    if registry is None:
        try:
            registry = build_registry(cfg_file.get('applications'))
        except RegistryError as e:
            diagnostics.warn(f"configuration error: {e}", event='config_error', config=args.config)
            return EXIT_CONFIG_ERROR
    tokens = list(args.tokens or [])
    # REMAINDER keeps the end-of-flags marker; it is not part of the application's tokens.
    if tokens[:1] == ['--']:
        tokens = tokens[1:]
    request = split_arguments(tokens)
    if request.app_name is None:
        diagnostics.info(f"must specify an application (one of: {', '.join(registry.names())})",
                         event='no_application')
        return NO_APP_SPECIFIED
    return dispatch(request, registry, diagnostics)
