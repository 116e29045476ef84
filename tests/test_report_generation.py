import os, sys, json, tempfile, shutil
import pytest

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)

from dummyfiles_apps import report_main, build_report, mirror_main, dummy_token, EXIT_PATH_MISSING  # type: ignore
from dummyfiles_core import run, ApplicationRegistry  # type: ignore


@pytest.fixture
def tree():
    tmp = tempfile.mkdtemp(prefix='dummyfiles_rep_')
    site = os.path.join(tmp, 'dir1')
    os.makedirs(os.path.join(site, 'sub'))
    for rel, data in {'a.txt': 'aaaa', 'b.TXT': 'bb', 'sub/c.json': '{}' * 10, 'Makefile': 'all:'}.items():
        with open(os.path.join(site, *rel.split('/')), 'w', encoding='utf-8') as f:
            f.write(data)
    try:
        yield tmp, site
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_build_report_counts(tree):
    _, site = tree
    r = build_report(site, top=2)
    assert r['files'] == 4
    assert r['total_bytes'] == 4 + 2 + 20 + 4
    assert r['extensions'] == {'(none)': 1, '.json': 1, '.txt': 2}
    assert [x['path'] for x in r['largest']] == ['sub/c.json', 'Makefile']
    assert 'mirror' not in r and 'listing' not in r


def test_build_report_for_mirror(tree):
    tmp, site = tree
    mirror = os.path.join(tmp, 'mirror')
    assert mirror_main([site, mirror]) == 0
    r = build_report(mirror, verbose=True)
    assert r['mirror']['entries'] == 4
    assert r['mirror']['original_bytes'] == 30
    assert r['mirror']['restored'] is False
    originals = {x['original'] for x in r['listing']}
    assert originals == {'a.txt', 'b.TXT', 'sub/c.json', 'Makefile'}
    assert r['extensions'] == {'.dummy': 4}


def test_report_verbose_scenario_through_launcher(tree, capsys):
    _, site = tree
    assert run(['report', '--verbose', site]) == 0
    out = capsys.readouterr().out
    assert f"Report: {site}" in out
    assert 'sub/c.json' in out and 'Largest:' in out


def test_report_handler_receives_options_verbatim(tree):
    _, site = tree
    seen = []
    reg = ApplicationRegistry([('report', lambda options: seen.append(options) or report_main(options))])
    assert run(['report', '--verbose', site], registry=reg) == 0
    assert seen == [['--verbose', site]]


def test_report_json_output_file(tree):
    tmp, site = tree
    out_path = os.path.join(tmp, 'report.json')
    missing = os.path.join(tmp, 'missing')
    rc = report_main([site, missing, '--format', 'json', '--output', out_path])
    assert rc == EXIT_PATH_MISSING
    with open(out_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    assert data['missing'] == [missing]
    assert len(data['reports']) == 1 and data['reports'][0]['files'] == 4


def test_report_markdown(tree, capsys):
    tmp, site = tree
    mirror = os.path.join(tmp, 'mirror')
    mirror_main([site, mirror])
    capsys.readouterr()
    assert report_main([mirror, '--format', 'md', '--verbose']) == 0
    text = capsys.readouterr().out
    assert text.startswith('# File Report')
    assert '| .dummy | 4 |' in text
    assert 'Mirror: 4 entries' in text
    assert f"`{dummy_token('a.txt')}.dummy` 0 bytes (original `a.txt`)" in text


def test_report_rich_output_file(tree):
    tmp, site = tree
    out_path = os.path.join(tmp, 'report.txt')
    assert report_main([site, '--format', 'rich', '--output', out_path]) == 0
    with open(out_path, 'r', encoding='utf-8') as f:
        text = f.read()
    assert 'Extension' in text and '.json' in text
    assert 'Files: 4' in text


def test_report_with_corrupt_manifest(tree, capsys):
    tmp, site = tree
    mirror = os.path.join(tmp, 'mirror')
    assert mirror_main([site, mirror]) == 0
    with open(os.path.join(mirror, '.dummyfiles', 'manifest.json'), 'w', encoding='utf-8') as f:
        f.write('{oops')
    r = build_report(mirror)
    assert r['files'] == 4 and 'mirror' not in r
    capsys.readouterr()
    assert report_main([mirror]) == 0
    assert f"Report: {mirror}" in capsys.readouterr().out


def test_report_usage_error_propagates():
    with pytest.raises(SystemExit):
        report_main(['--format', 'xml', '.'])
