"""Applications launched by dummyfiles: mirror, restore and report.

Each application is a plain function taking the option list that followed
its name on the command line and returning an exit status. They parse their
own options (argparse) and print progress lines prefixed with the
application name.

A mirror is a copy of a directory tree in which every file is replaced by an
empty placeholder with an opaque name (``<token>.dummy``). The mapping back
to the original names is kept in ``.dummyfiles/manifest.json`` at the root
of the mirror so `restore` can undo the renaming later.
"""
from __future__ import annotations
import os, sys, json, hashlib, argparse, posixpath
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from dummyfiles_core import __version__, SCHEMA_VERSION, EXIT_SUCCESS

# ---------------- Exit Codes -----------------
EXIT_GENERIC_FAILURE = 1
EXIT_PATH_MISSING = 12
EXIT_MANIFEST_MISSING = 13
EXIT_RESTORE_INCOMPLETE = 14
EXIT_DEST_NOT_EMPTY = 15

STATE_DIR = '.dummyfiles'
MANIFEST_NAME = 'manifest.json'
DUMMY_SUFFIX = '.dummy'
LIST_LIMIT = 25

__all__ = [
    'mirror_main', 'restore_main', 'report_main', 'build_report', 'snapshot_tree', 'dummy_token',
    'hash_file', 'load_manifest', 'manifest_path', 'EXIT_GENERIC_FAILURE', 'EXIT_PATH_MISSING',
    'EXIT_MANIFEST_MISSING', 'EXIT_RESTORE_INCOMPLETE', 'EXIT_DEST_NOT_EMPTY',
]


def _utc_now() -> str: return datetime.now(timezone.utc).isoformat()


def hash_file(path: str, chunk_size: int = 65536) -> str:
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            h.update(chunk)
    return h.hexdigest()


def dummy_token(rel: str) -> str:
    """Opaque, stable name for the file at POSIX relative path ``rel``."""
    return hashlib.sha256(rel.encode('utf-8')).hexdigest()[:16]


def _walk(base: str):
    # Sorted for stable output; the mirror's own state dir is never part of the tree.
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d != STATE_DIR)
        yield root, dirs, sorted(files)


def _rel(path: str, base: str) -> str:
    return os.path.relpath(path, base).replace(os.sep, '/')


def _native(base: str, rel: str) -> str:
    return os.path.join(base, *rel.split('/'))


def _inside(base: str, path: str) -> bool:
    base = os.path.abspath(base)
    return os.path.abspath(path).startswith(base + os.sep)


def snapshot_tree(base: str, checksums: bool = False) -> Dict[str, Dict[str, Any]]:
    """Snapshot all regular files under base with size, mtime (and sha256 on request).

    Keys are POSIX relative paths.
    """
    result = {}
    for root, _, files in _walk(base):
        for fn in files:
            p = os.path.join(root, fn)
            if not os.path.isfile(p):
                continue
            st = os.stat(p)
            meta = {'size': st.st_size, 'mtime': int(st.st_mtime)}
            if checksums:
                meta['sha256'] = hash_file(p)
            result[_rel(p, base)] = meta
    return result


def manifest_path(mirror_root: str) -> str:
    return os.path.join(mirror_root, STATE_DIR, MANIFEST_NAME)


def load_manifest(mirror_root: str) -> Optional[dict]:
    path = manifest_path(mirror_root)
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _save_manifest(mirror_root: str, manifest: dict):
    os.makedirs(os.path.join(mirror_root, STATE_DIR), exist_ok=True)
    with open(manifest_path(mirror_root), 'w', encoding='utf-8') as f:
        json.dump(manifest, f, indent=2)


def _print_list(title: str, items: List[str]):
    if not items:
        return
    print(f"\n{title}:")
    for m in items[:LIST_LIMIT]:
        print('  ', m)
    if len(items) > LIST_LIMIT:
        print(f"  ... (+{len(items)-LIST_LIMIT} more)")


# ---------------- mirror -----------------
def mirror_main(options: List[str]) -> int:
    p = argparse.ArgumentParser(prog='dummyfiles mirror', description='Create a dummy-file mirror of a directory tree')
    p.add_argument('source', help='Directory tree to mirror')
    p.add_argument('dest', help='Directory that receives the dummy files')
    p.add_argument('--keep-size', action='store_true', help='Give each dummy file the size of its original (sparse)')
    p.add_argument('--checksums', action='store_true', help='Record SHA256 of every original file in the manifest')
    p.add_argument('--force', action='store_true', help='Write into a non-empty destination')
    args = p.parse_args(options)

    source = os.path.abspath(args.source)
    dest = os.path.abspath(args.dest)
    if not os.path.isdir(source):
        print(f"[mirror] source not found: {args.source}")
        return EXIT_PATH_MISSING
    if dest == source or _inside(source, dest):
        print(f"[mirror] destination must be outside the source tree: {args.dest}")
        return EXIT_GENERIC_FAILURE
    if os.path.isdir(dest) and os.listdir(dest) and not args.force:
        print(f"[mirror] destination is not empty (use --force): {args.dest}")
        return EXIT_DEST_NOT_EMPTY

    if os.path.exists(dest) and not os.path.isdir(dest):
        print(f"[mirror] destination exists and is not a directory: {args.dest}")
        return EXIT_GENERIC_FAILURE
    os.makedirs(dest, exist_ok=True)
    previous = load_manifest(dest)
    if previous:
        # --force over an older mirror: drop its dummies so the new manifest covers the whole tree.
        stale = 0
        for dummy_rel in (previous.get('entries') or {}):
            old = _native(dest, dummy_rel)
            if _inside(dest, old) and os.path.isfile(old):
                os.remove(old)
                stale += 1
        print(f"[mirror] removed {stale} dummy files from the previous mirror")
    pending = []
    for root, dirs, files in _walk(source):
        for d in dirs:
            os.makedirs(_native(dest, _rel(os.path.join(root, d), source)), exist_ok=True)
        pending.extend(os.path.join(root, fn) for fn in files if os.path.isfile(os.path.join(root, fn)))

    entries: Dict[str, Dict[str, Any]] = {}
    total = len(pending)
    for idx, path in enumerate(pending, 1):
        rel = _rel(path, source)
        dummy_rel = posixpath.join(posixpath.dirname(rel), dummy_token(rel) + DUMMY_SUFFIX)
        target = _native(dest, dummy_rel)
        st = os.stat(path)
        with open(target, 'wb') as f:
            if args.keep_size and st.st_size:
                f.truncate(st.st_size)
        os.utime(target, (st.st_atime, st.st_mtime))
        entry = {'original': rel, 'size': st.st_size, 'mtime': int(st.st_mtime)}
        if args.checksums:
            entry['sha256'] = hash_file(path)
        entries[dummy_rel] = entry
        if idx == 1 or idx == total or idx % 200 == 0:
            print(f"[mirror] {idx}/{total} ({int(idx * 100 / total)}%)")

    _save_manifest(dest, {
        'schema_version': SCHEMA_VERSION,
        'tool_version': __version__,
        'created_utc': _utc_now(),
        'source': source,
        'restored': False,
        'entries': entries,
    })
    print(f"[mirror] {total} files mirrored into {dest}")
    return EXIT_SUCCESS


# ---------------- restore -----------------
def restore_main(options: List[str]) -> int:
    p = argparse.ArgumentParser(prog='dummyfiles restore', description='Rename dummy files in a mirror back to their original names')
    p.add_argument('mirror', help='Root of a tree created by "dummyfiles mirror"')
    p.add_argument('--dry-run', action='store_true', help='Show planned renames without changing anything')
    args = p.parse_args(options)

    root = os.path.abspath(args.mirror)
    if not os.path.isdir(root):
        print(f"[restore] mirror not found: {args.mirror}")
        return EXIT_PATH_MISSING
    manifest = load_manifest(root)
    if manifest is None:
        print(f"[restore] no manifest at {manifest_path(root)}")
        return EXIT_MANIFEST_MISSING
    if manifest.get('restored'):
        print(f"[restore] already restored ({manifest.get('restored_utc') or 'unknown time'})")
        return EXIT_SUCCESS

    entries = manifest.get('entries') or {}
    missing = []; conflicts = []; done = 0
    for dummy_rel, meta in entries.items():
        original = meta.get('original') or ''
        src = _native(root, dummy_rel); dst = _native(root, original)
        if not original or not _inside(root, dst) or not _inside(root, src):
            conflicts.append(f"{dummy_rel} -> {original!r} (outside mirror)")
            continue
        if not os.path.exists(src):
            if os.path.exists(dst):
                done += 1  # renamed by an earlier, interrupted run
            else:
                missing.append(dummy_rel)
            continue
        if os.path.exists(dst):
            conflicts.append(original)
            continue
        if args.dry_run:
            print(f"[restore] {dummy_rel} -> {original}")
        else:
            os.rename(src, dst)
        done += 1

    total = len(entries)
    print(f"[restore] OK={done} Missing={len(missing)} Conflicts={len(conflicts)} Total={total}")
    _print_list('Missing dummy files', missing)
    _print_list('Conflicts', conflicts)
    if missing or conflicts:
        return EXIT_RESTORE_INCOMPLETE
    if not args.dry_run:
        manifest['restored'] = True
        manifest['restored_utc'] = _utc_now()
        _save_manifest(root, manifest)
    return EXIT_SUCCESS


# ---------------- report -----------------
def build_report(path: str, top: int = 5, verbose: bool = False) -> Dict[str, Any]:
    """Summarize the files under path; includes mirror details when a manifest exists."""
    root = os.path.abspath(path)
    files = snapshot_tree(root)
    manifest = load_manifest(root)
    entries = (manifest or {}).get('entries') or {}
    by_ext: Dict[str, int] = {}
    for rel in files:
        ext = posixpath.splitext(rel)[1].lower() or '(none)'
        by_ext[ext] = by_ext.get(ext, 0) + 1
    largest = sorted(files.items(), key=lambda kv: (-kv[1]['size'], kv[0]))[:max(0, top)]
    summary: Dict[str, Any] = {
        'path': root,
        'files': len(files),
        'total_bytes': sum(m['size'] for m in files.values()),
        'extensions': dict(sorted(by_ext.items())),
        'largest': [{'path': rel, 'size': m['size']} for rel, m in largest],
    }
    if manifest is not None:
        summary['mirror'] = {
            'source': manifest.get('source'),
            'created_utc': manifest.get('created_utc'),
            'entries': len(entries),
            'original_bytes': sum((m or {}).get('size') or 0 for m in entries.values()),
            'restored': bool(manifest.get('restored')),
        }
    if verbose:
        summary['listing'] = [
            {'path': rel, 'size': m['size'], 'original': (entries.get(rel) or {}).get('original')}
            for rel, m in files.items()
        ]
    return summary


def _render_text(reports: List[Dict[str, Any]]) -> str:
    lines = []
    for r in reports:
        lines.append(f"Report: {r['path']}")
        lines.append(f"  Files: {r['files']}  Total bytes: {r['total_bytes']}")
        if r['extensions']:
            lines.append('  Extensions: ' + ', '.join(f"{k}={v}" for k, v in r['extensions'].items()))
        if r['largest']:
            lines.append('  Largest:')
            lines.extend(f"    - {x['path']} ({x['size']} bytes)" for x in r['largest'])
        if 'mirror' in r:
            m = r['mirror']
            lines.append(f"  Mirror: {m['entries']} entries from {m['source']} (restored: {'yes' if m['restored'] else 'no'})")
        if 'listing' in r:
            lines.append('  Files:')
            for x in r['listing']:
                suffix = f"  <- {x['original']}" if x['original'] else ''
                lines.append(f"    - {x['path']} ({x['size']} bytes){suffix}")
        lines.append('')
    return '\n'.join(lines)


def _render_md(reports: List[Dict[str, Any]]) -> str:
    def _section(title: str):
        return f"\n## {title}\n"
    lines = ["# File Report\n", "\nGenerated: " + _utc_now() + "\n"]
    for r in reports:
        lines.append(_section(r['path']))
        lines.append(f"Files: {r['files']}\nTotal Bytes: {r['total_bytes']}\n")
        if r['extensions']:
            lines.append("\n| Extension | Files |\n| --- | --- |\n")
            for k, v in r['extensions'].items():
                lines.append(f"| {k} | {v} |\n")
        if r['largest']:
            lines.append("\nLargest:\n")
            for x in r['largest']:
                lines.append(f"- `{x['path']}` ({x['size']} bytes)\n")
        if 'mirror' in r:
            m = r['mirror']
            lines.append(f"\nMirror: {m['entries']} entries from `{m['source']}`, restored: {m['restored']}\n")
        if 'listing' in r:
            lines.append("\nListing:\n")
            for x in r['listing']:
                suffix = f" (original `{x['original']}`)" if x['original'] else ''
                lines.append(f"- `{x['path']}` {x['size']} bytes{suffix}\n")
    return ''.join(lines)


def _render_rich(reports: List[Dict[str, Any]], file=None):
    from rich.console import Console
    from rich.table import Table
    console = Console(file=file) if file is not None else Console()
    for r in reports:
        table = Table(title=r['path'], show_header=True)
        table.add_column('Extension', style='cyan')
        table.add_column('Files', justify='right')
        for k, v in r['extensions'].items():
            table.add_row(k, str(v))
        console.print(table)
        console.print(f"Files: [bold]{r['files']}[/]  Total bytes: [bold]{r['total_bytes']}[/]")
        if 'mirror' in r:
            m = r['mirror']
            console.print(f"Mirror: {m['entries']} entries from {m['source']} (restored: {m['restored']})")
        if 'listing' in r:
            listing = Table(show_header=True)
            listing.add_column('Path')
            listing.add_column('Size', justify='right')
            listing.add_column('Original', style='green')
            for x in r['listing']:
                listing.add_row(x['path'], str(x['size']), x['original'] or '')
            console.print(listing)


def report_main(options: List[str]) -> int:
    p = argparse.ArgumentParser(prog='dummyfiles report', description='Report on the files under one or more directories')
    p.add_argument('paths', nargs='+', help='Directories to report on')
    p.add_argument('--format', choices=['text', 'json', 'md', 'rich'], default='text')
    p.add_argument('--output', default=None, help='Write the report to this file instead of stdout')
    p.add_argument('--verbose', action='store_true', help='List every file')
    p.add_argument('--top', type=int, default=5, help='Number of largest files to show')
    args = p.parse_args(options)

    reports = []; missing = []
    for path in args.paths:
        if not os.path.isdir(path):
            missing.append(path)
            print(f"[report] path not found: {path}", file=sys.stderr)
            continue
        reports.append(build_report(path, top=args.top, verbose=args.verbose))

    if args.format == 'rich':
        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                _render_rich(reports, file=f)
        else:
            _render_rich(reports)
    else:
        if args.format == 'json':
            text = json.dumps({'generated_utc': _utc_now(), 'reports': reports, 'missing': missing}, indent=2) + '\n'
        elif args.format == 'md':
            text = _render_md(reports)
        else:
            text = _render_text(reports)
        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                f.write(text)
        else:
            sys.stdout.write(text)
    if args.output:
        print(f"[report] generated {args.output}", file=sys.stderr)
    return EXIT_PATH_MISSING if missing else EXIT_SUCCESS
